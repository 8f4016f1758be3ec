import logging
from pathlib import Path

import duckdb
import pandas as pd

from rides_etl.constants import STAGING_COLUMNS
from rides_etl.core.errors import SchemaMismatchError, WarehouseUnavailableError
from rides_etl.core.utils import to_sql_frame
from rides_etl.specs.dimensions import DIMENSIONS, DimensionSpec
from rides_etl.specs.facts import (
    BUSINESS_KEY,
    FACT_COLUMNS,
    FACT_KEY,
    FACT_ROW_COLUMNS,
    FACT_TABLE,
)

logger = logging.getLogger(__name__)

DEFAULT_TABLES: dict[str, str] = {
    "staging": "bookings",
    "customers": "customers",
    "vehicles": "vehicles",
    "locations": "locations",
    "payment_methods": "payment_methods",
    "fact_bookings": "fact_bookings",
}

DIM_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    {key_name} BIGINT PRIMARY KEY,
    {natural_key} VARCHAR NOT NULL UNIQUE,
    created_at TIMESTAMP NOT NULL
)
"""

FACT_DDL = """
CREATE TABLE IF NOT EXISTS {table} (
    fact_booking_key BIGINT PRIMARY KEY,
    booking_id VARCHAR NOT NULL UNIQUE,
    booking_status VARCHAR,
    booking_datetime TIMESTAMP NOT NULL,
    customer_key BIGINT NOT NULL,
    vehicle_key BIGINT NOT NULL,
    pickup_location_key BIGINT NOT NULL,
    drop_location_key BIGINT NOT NULL,
    payment_method_key BIGINT NOT NULL,
    booking_value DECIMAL(12,2),
    ride_distance DECIMAL(12,2),
    driver_ratings DECIMAL(3,2),
    customer_rating DECIMAL(3,2),
    is_cancelled BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
)
"""

# concurrent writers conflict on the unique columns; each retry re-reads the committed state
MAX_WRITE_ATTEMPTS = 5

DECIMAL_TYPES: dict[str, str] = {
    "booking_value": "DECIMAL(12,2)",
    "ride_distance": "DECIMAL(12,2)",
    "driver_ratings": "DECIMAL(3,2)",
    "customer_rating": "DECIMAL(3,2)",
}


def _select_expr(col: str) -> str:
    decimal = DECIMAL_TYPES.get(col)
    if decimal is None:
        return f"i.{col}"
    # a float NaN must land as NULL, not fail the cast
    return f"CAST(CASE WHEN isnan(i.{col}) THEN NULL ELSE i.{col} END AS {decimal})"


class DuckDBWarehouse:
    """Embedded warehouse. Every operation runs on its own cursor so dimension
    builds can share one database across threads."""

    def __init__(self, path: str = ":memory:", tables: dict[str, str] | None = None) -> None:
        self.path = str(path)
        self.tables = {**DEFAULT_TABLES, **(tables or {})}
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.con = duckdb.connect(self.path)
        except duckdb.Error as e:
            raise WarehouseUnavailableError(
                f"Could not open DuckDB database {self.path}", {"error": str(e)}
            ) from e

    def table_ref(self, table_key: str) -> str:
        return f'"{self.tables[table_key]}"'

    def _run(self, sql: str, params: list | None = None) -> pd.DataFrame:
        cur = self.con.cursor()
        try:
            return cur.execute(sql, params or []).df()
        except duckdb.CatalogException as e:
            raise SchemaMismatchError(str(e)) from e
        except duckdb.Error as e:
            raise WarehouseUnavailableError(f"DuckDB query failed: {e}") from e
        finally:
            cur.close()

    def _columns(self, table_key: str) -> list[str] | None:
        df = self._run(
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_name = ? ORDER BY ordinal_position",
            [self.tables[table_key]],
        )
        return df["column_name"].tolist() or None

    def ensure_schema(self) -> None:
        cur = self.con.cursor()
        try:
            for spec in DIMENSIONS:
                cur.execute(
                    DIM_DDL.format(
                        table=self.table_ref(spec.table_key),
                        key_name=spec.key_name,
                        natural_key=spec.natural_key,
                    )
                )
            cur.execute(FACT_DDL.format(table=self.table_ref(FACT_TABLE)))
        except duckdb.Error as e:
            raise WarehouseUnavailableError(f"Could not create schema: {e}") from e
        finally:
            cur.close()

        for spec in DIMENSIONS:
            self._check_columns(
                spec.table_key, [spec.key_name, spec.natural_key, "created_at"]
            )
        self._check_columns(FACT_TABLE, FACT_COLUMNS)

    def _check_columns(self, table_key: str, expected: list[str]) -> None:
        columns = self._columns(table_key)
        if columns is None:
            raise SchemaMismatchError(
                f"Table {self.tables[table_key]} does not exist", {"table": table_key}
            )
        missing = [c for c in expected if c not in columns]
        if missing:
            raise SchemaMismatchError(
                f"Table {self.tables[table_key]} is missing columns",
                {"table": table_key, "missing": missing},
            )

    def read_staging(self) -> pd.DataFrame:
        self._check_columns("staging", STAGING_COLUMNS)
        return self._run(f"SELECT * FROM {self.table_ref('staging')}")

    def write_staging(self, df: pd.DataFrame) -> None:
        cur = self.con.cursor()
        try:
            cur.register("incoming_staging", to_sql_frame(df))
            cur.execute(
                f"CREATE OR REPLACE TABLE {self.table_ref('staging')} AS "
                "SELECT * FROM incoming_staging"
            )
            cur.unregister("incoming_staging")
        except duckdb.Error as e:
            raise WarehouseUnavailableError(f"Could not write staging table: {e}") from e
        finally:
            cur.close()
        logger.info("Staged %d rows into %s", len(df), self.tables["staging"])

    def read_table(self, table_key: str, columns: list[str] | None = None) -> pd.DataFrame:
        cols = ", ".join(columns) if columns else "*"
        return self._run(f"SELECT {cols} FROM {self.table_ref(table_key)}")

    def _insert_if_absent(
        self,
        table_key: str,
        rows: pd.DataFrame,
        key_col: str,
        columns: list[str],
        unique_col: str,
    ) -> int:
        """Insert rows whose ``unique_col`` is not yet present; returns the count.

        Surrogate keys are numbered inside the statement from the table's
        committed maximum, in row order. A write-write conflict with another
        transaction is retried from scratch, so rows it already inserted
        become no-ops.
        """
        if rows.empty:
            return 0

        table = self.table_ref(table_key)
        view = f"incoming_{self.tables[table_key]}"
        select = ", ".join(
            [
                f"(SELECT COALESCE(MAX({key_col}), 0) FROM {table}) "
                "+ row_number() OVER (ORDER BY i.row_order)",
                *(_select_expr(c) for c in columns),
            ]
        )
        insert_sql = (
            f"INSERT INTO {table} ({', '.join([key_col, *columns])}) "
            f"SELECT {select} FROM {view} i "
            f"WHERE NOT EXISTS (SELECT 1 FROM {table} t WHERE t.{unique_col} = i.{unique_col})"
        )
        count_sql = f"SELECT COUNT(*) FROM {table}"
        incoming = to_sql_frame(rows[columns]).assign(row_order=range(len(rows)))

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            cur = self.con.cursor()
            in_transaction = False
            try:
                cur.register(view, incoming)
                cur.begin()
                in_transaction = True
                before = cur.execute(count_sql).fetchone()[0]
                cur.execute(insert_sql)
                after = cur.execute(count_sql).fetchone()[0]
                # a failed commit has already ended the transaction
                in_transaction = False
                cur.commit()
                return int(after - before)
            except (duckdb.TransactionException, duckdb.ConstraintException) as e:
                if in_transaction:
                    cur.rollback()
                if attempt == MAX_WRITE_ATTEMPTS:
                    raise WarehouseUnavailableError(
                        f"Insert into {self.tables[table_key]} kept conflicting",
                        {"attempts": attempt, "error": str(e)},
                    ) from e
                logger.debug(
                    "Write conflict on %s (attempt %d): %s", self.tables[table_key], attempt, e
                )
            except duckdb.Error as e:
                if in_transaction:
                    cur.rollback()
                raise WarehouseUnavailableError(
                    f"Insert into {self.tables[table_key]} failed: {e}"
                ) from e
            finally:
                cur.close()
        return 0

    def insert_dimension(self, spec: DimensionSpec, rows: pd.DataFrame) -> int:
        return self._insert_if_absent(
            spec.table_key, rows, spec.key_name, [spec.natural_key, "created_at"], spec.natural_key
        )

    def insert_facts(self, rows: pd.DataFrame) -> int:
        return self._insert_if_absent(FACT_TABLE, rows, FACT_KEY, FACT_ROW_COLUMNS, BUSINESS_KEY)

    def query(self, sql: str) -> pd.DataFrame:
        return self._run(sql)

    def close(self) -> None:
        self.con.close()
