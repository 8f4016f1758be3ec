import logging
import uuid
from decimal import Decimal

import pandas as pd
from google.api_core import exceptions as gexc
from google.auth.exceptions import DefaultCredentialsError
from google.cloud import bigquery

from rides_config import BQConfig
from rides_etl.constants import STAGING_COLUMNS
from rides_etl.core.errors import SchemaMismatchError, WarehouseUnavailableError
from rides_etl.specs.dimensions import DIMENSIONS, DimensionSpec
from rides_etl.specs.facts import BUSINESS_KEY, FACT_KEY, FACT_ROW_COLUMNS, FACT_TABLE

logger = logging.getLogger(__name__)


def dim_schema(spec: DimensionSpec) -> list[bigquery.SchemaField]:
    return [
        bigquery.SchemaField(spec.key_name, "INT64", mode="REQUIRED"),
        bigquery.SchemaField(spec.natural_key, "STRING", mode="REQUIRED"),
        bigquery.SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
    ]


FACT_SCHEMA: list[bigquery.SchemaField] = [
    bigquery.SchemaField("fact_booking_key", "INT64", mode="REQUIRED"),
    bigquery.SchemaField("booking_id", "STRING", mode="REQUIRED"),
    bigquery.SchemaField("booking_status", "STRING"),
    bigquery.SchemaField("booking_datetime", "TIMESTAMP", mode="REQUIRED"),
    bigquery.SchemaField("customer_key", "INT64", mode="REQUIRED"),
    bigquery.SchemaField("vehicle_key", "INT64", mode="REQUIRED"),
    bigquery.SchemaField("pickup_location_key", "INT64", mode="REQUIRED"),
    bigquery.SchemaField("drop_location_key", "INT64", mode="REQUIRED"),
    bigquery.SchemaField("payment_method_key", "INT64", mode="REQUIRED"),
    bigquery.SchemaField("booking_value", "NUMERIC", precision=12, scale=2),
    bigquery.SchemaField("ride_distance", "NUMERIC", precision=12, scale=2),
    bigquery.SchemaField("driver_ratings", "NUMERIC", precision=3, scale=2),
    bigquery.SchemaField("customer_rating", "NUMERIC", precision=3, scale=2),
    bigquery.SchemaField("is_cancelled", "BOOL", mode="REQUIRED"),
    bigquery.SchemaField("created_at", "TIMESTAMP", mode="REQUIRED"),
    bigquery.SchemaField("updated_at", "TIMESTAMP", mode="REQUIRED"),
]

# Surrogate keys are numbered inside the statement from the target's maximum,
# so no key is read before the write.
MERGE_SQL = """
MERGE `{target}` T
USING (
  SELECT
    (SELECT IFNULL(MAX({key_col}), 0) FROM `{target}`)
      + ROW_NUMBER() OVER (ORDER BY I.row_order) AS {key_col},
    {source_columns}
  FROM `{scratch}` I
  WHERE NOT EXISTS (SELECT 1 FROM `{target}` X WHERE X.{unique_col} = I.{unique_col})
) S
ON T.{unique_col} = S.{unique_col}
WHEN NOT MATCHED THEN
  INSERT ({columns}) VALUES ({values})
"""

ROW_ORDER_FIELD = bigquery.SchemaField("row_order", "INT64", mode="REQUIRED")



def make_table_id(cfg: BQConfig, name: str) -> str:
    return f"{cfg['project_id']}.{cfg['dataset']}.{name}"


class BigQueryWarehouse:
    """Hosted warehouse. BigQuery does not enforce keys, so uniqueness comes
    from MERGE-ing each batch from a scratch table. Concurrent MERGEs are not
    guaranteed to serialise; run hosted loads as a single writer."""

    def __init__(
        self,
        cfg: BQConfig,
        tables: dict[str, str],
        client: bigquery.Client | None = None,
    ) -> None:
        self.cfg = cfg
        self.tables = tables
        try:
            self.client = client or bigquery.Client(
                project=cfg["project_id"], location=cfg.get("location")
            )
        except DefaultCredentialsError as e:
            raise WarehouseUnavailableError(
                "No Google Cloud credentials available", {"error": str(e)}
            ) from e

    def table_id(self, table_key: str) -> str:
        return make_table_id(self.cfg, self.tables[table_key])

    def table_ref(self, table_key: str) -> str:
        return f"`{self.table_id(table_key)}`"

    def ensure_schema(self) -> None:
        dataset_id = f"{self.cfg['project_id']}.{self.cfg['dataset']}"
        try:
            self.client.create_dataset(dataset_id, exists_ok=True)
            for spec in DIMENSIONS:
                self._ensure_table(spec.table_key, dim_schema(spec))
            self._ensure_table(FACT_TABLE, FACT_SCHEMA)
        except gexc.GoogleAPIError as e:
            raise WarehouseUnavailableError(f"Could not create schema: {e}") from e

    def _ensure_table(self, table_key: str, schema: list[bigquery.SchemaField]) -> None:
        table = self.client.create_table(
            bigquery.Table(self.table_id(table_key), schema=schema), exists_ok=True
        )
        self._check_fields(table_key, table, [f.name for f in schema])

    def _check_fields(self, table_key: str, table: bigquery.Table, expected: list[str]) -> None:
        existing = {f.name for f in table.schema}
        missing = [c for c in expected if c not in existing]
        if missing:
            raise SchemaMismatchError(
                f"Table {self.table_id(table_key)} is missing columns",
                {"table": table_key, "missing": missing},
            )

    def read_staging(self) -> pd.DataFrame:
        try:
            table = self.client.get_table(self.table_id("staging"))
        except gexc.NotFound as e:
            raise SchemaMismatchError(
                f"Staging table {self.table_id('staging')} does not exist"
            ) from e
        self._check_fields("staging", table, STAGING_COLUMNS)
        return self.query(f"SELECT * FROM {self.table_ref('staging')}")

    def write_staging(self, df: pd.DataFrame) -> None:
        self._load(df, self.table_id("staging"), "WRITE_TRUNCATE")

    def _load(
        self,
        df: pd.DataFrame,
        table_id: str,
        disposition: str,
        schema: list[bigquery.SchemaField] | None = None,
    ) -> None:
        job_config = bigquery.LoadJobConfig(write_disposition=disposition)
        if schema is not None:
            job_config.schema = schema
        try:
            job = self.client.load_table_from_dataframe(df, table_id, job_config=job_config)
            job.result()
        except gexc.GoogleAPIError as e:
            raise WarehouseUnavailableError(f"Load into {table_id} failed: {e}") from e
        logger.info("Loaded %d rows to %s", df.shape[0], table_id)

    def read_table(self, table_key: str, columns: list[str] | None = None) -> pd.DataFrame:
        cols = ", ".join(columns) if columns else "*"
        return self.query(f"SELECT {cols} FROM {self.table_ref(table_key)}")

    def _merge(
        self,
        table_key: str,
        rows: pd.DataFrame,
        key_col: str,
        columns: list[str],
        unique_col: str,
        schema: list[bigquery.SchemaField],
    ) -> int:
        if rows.empty:
            return 0

        target = self.table_id(table_key)
        scratch = f"{target}__incoming_{uuid.uuid4().hex[:8]}"
        scratch_schema = [f for f in schema if f.name in columns] + [ROW_ORDER_FIELD]
        incoming = rows[columns].assign(row_order=range(len(rows)))
        insert_columns = [key_col, *columns]
        sql = MERGE_SQL.format(
            target=target,
            scratch=scratch,
            key_col=key_col,
            unique_col=unique_col,
            source_columns=", ".join(f"I.{c}" for c in columns),
            columns=", ".join(insert_columns),
            values=", ".join(f"S.{c}" for c in insert_columns),
        )
        try:
            self._load(incoming, scratch, "WRITE_TRUNCATE", schema=scratch_schema)
            job = self.client.query(sql)
            job.result()
            return int(job.num_dml_affected_rows or 0)
        except gexc.GoogleAPIError as e:
            raise WarehouseUnavailableError(f"MERGE into {target} failed: {e}") from e
        finally:
            self.client.delete_table(scratch, not_found_ok=True)

    def insert_dimension(self, spec: DimensionSpec, rows: pd.DataFrame) -> int:
        return self._merge(
            spec.table_key,
            rows,
            spec.key_name,
            [spec.natural_key, "created_at"],
            spec.natural_key,
            dim_schema(spec),
        )

    def insert_facts(self, rows: pd.DataFrame) -> int:
        rows = rows.copy()
        # NUMERIC columns load from Decimal objects; floats would be rejected
        for field in FACT_SCHEMA:
            if field.field_type == "NUMERIC":
                rows[field.name] = rows[field.name].map(
                    lambda v: None if pd.isna(v) else Decimal(f"{v:.2f}")
                )
        return self._merge(FACT_TABLE, rows, FACT_KEY, FACT_ROW_COLUMNS, BUSINESS_KEY, FACT_SCHEMA)

    def query(self, sql: str) -> pd.DataFrame:
        try:
            return self.client.query(sql).result().to_dataframe()
        except gexc.NotFound as e:
            raise SchemaMismatchError(str(e)) from e
        except gexc.GoogleAPIError as e:
            raise WarehouseUnavailableError(f"BigQuery query failed: {e}") from e

    def close(self) -> None:
        self.client.close()
