from typing import Protocol

import pandas as pd

from rides_config import Config
from rides_etl.specs.dimensions import DimensionSpec


class Warehouse(Protocol):
    """Storage seam shared by the DuckDB and BigQuery backends."""

    tables: dict[str, str]

    def table_ref(self, table_key: str) -> str: ...
    def ensure_schema(self) -> None: ...
    def read_staging(self) -> pd.DataFrame: ...
    def write_staging(self, df: pd.DataFrame) -> None: ...
    def read_table(self, table_key: str, columns: list[str] | None = None) -> pd.DataFrame: ...
    def insert_dimension(self, spec: DimensionSpec, rows: pd.DataFrame) -> int: ...
    def insert_facts(self, rows: pd.DataFrame) -> int: ...
    def query(self, sql: str) -> pd.DataFrame: ...
    def close(self) -> None: ...


def make_warehouse(cfg: Config) -> Warehouse:
    backend = cfg["warehouse"]["backend"]
    if backend == "bigquery":
        from rides_etl.core.bq_warehouse import BigQueryWarehouse

        return BigQueryWarehouse(cfg["bigquery"], cfg["tables"])

    from rides_etl.core.duckdb_warehouse import DuckDBWarehouse

    return DuckDBWarehouse(cfg["duckdb"]["path"], cfg["tables"])
