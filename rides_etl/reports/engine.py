import logging
from typing import Any, Callable

import pandas as pd

from rides_etl.core.warehouse import Warehouse
from rides_etl.reports import diagnostics, queries

logger = logging.getLogger(__name__)


class ReportingEngine:
    """Named, read-only queries over the fact and dimension tables.

    Every report is a single SQL statement, so it sees one consistent
    snapshot even while a load is running. Rankings break ties on the
    natural key, ascending.
    """

    def __init__(self, warehouse: Warehouse, top_n: int = 10, failure_sample_limit: int = 10) -> None:
        self.warehouse = warehouse
        self.top_n = top_n
        self.failure_sample_limit = failure_sample_limit
        self._catalog: dict[str, Callable[..., pd.DataFrame]] = {
            "overall_metrics": self.overall_metrics,
            "cancellation_rate": self.cancellation_rate,
            "top_pickup_locations": self.top_pickup_locations,
            "revenue_by_vehicle_type": self.revenue_by_vehicle_type,
            "top_customers": self.top_customers,
            "daily_trend": self.daily_trend,
            "hourly_pattern": self.hourly_pattern,
            "payment_method_analysis": self.payment_method_analysis,
        }
        self._diagnostics: dict[str, Callable[..., pd.DataFrame]] = {
            "staging_vs_fact_counts": self.staging_vs_fact_counts,
            "staging_duplicates": self.staging_duplicates,
            "missing_foreign_keys": self.missing_foreign_keys,
            "records_not_loaded": self.records_not_loaded,
            "orphaned_fact_keys": self.orphaned_fact_keys,
            "dimension_counts": self.dimension_counts,
        }

    def available_reports(self) -> list[str]:
        return list(self._catalog)

    def available_diagnostics(self) -> list[str]:
        return list(self._diagnostics)

    def run(self, name: str, **params: Any) -> pd.DataFrame:
        report = self._catalog.get(name) or self._diagnostics.get(name)
        if report is None:
            raise KeyError(f"Unknown report {name!r}")
        return report(**params)

    def _sql(self, template: str, cancelled: bool | None = None, limit: int | None = None) -> pd.DataFrame:
        where = ""
        if cancelled is not None:
            where = f"WHERE f.is_cancelled = {'TRUE' if cancelled else 'FALSE'}"
        refs = {
            "fact": self.warehouse.table_ref("fact_bookings"),
            "staging": self.warehouse.table_ref("staging"),
            "customers": self.warehouse.table_ref("customers"),
            "vehicles": self.warehouse.table_ref("vehicles"),
            "locations": self.warehouse.table_ref("locations"),
            "payment_methods": self.warehouse.table_ref("payment_methods"),
        }
        sql = template.format(where=where, limit=int(limit or 0), **refs)
        logger.debug("Running report SQL: %s", sql)
        return self.warehouse.query(sql)

    # business queries

    def overall_metrics(self, cancelled: bool | None = None) -> pd.DataFrame:
        return self._sql(queries.OVERALL_METRICS, cancelled=cancelled)

    def cancellation_rate(self) -> pd.DataFrame:
        return self._sql(queries.CANCELLATION_RATE)

    def top_pickup_locations(self, n: int | None = None) -> pd.DataFrame:
        return self._sql(queries.TOP_PICKUP_LOCATIONS, limit=n or self.top_n)

    def revenue_by_vehicle_type(self, cancelled: bool | None = None) -> pd.DataFrame:
        return self._sql(queries.REVENUE_BY_VEHICLE_TYPE, cancelled=cancelled)

    def top_customers(self, n: int | None = None) -> pd.DataFrame:
        return self._sql(queries.TOP_CUSTOMERS, limit=n or self.top_n)

    def daily_trend(self, cancelled: bool | None = None) -> pd.DataFrame:
        return self._sql(queries.DAILY_TREND, cancelled=cancelled)

    def hourly_pattern(self, cancelled: bool | None = None) -> pd.DataFrame:
        return self._sql(queries.HOURLY_PATTERN, cancelled=cancelled)

    def payment_method_analysis(self, cancelled: bool | None = None) -> pd.DataFrame:
        return self._sql(queries.PAYMENT_METHOD_ANALYSIS, cancelled=cancelled)

    # diagnostics

    def staging_vs_fact_counts(self) -> pd.DataFrame:
        return self._sql(diagnostics.STAGING_VS_FACT_COUNTS)

    def staging_duplicates(self) -> pd.DataFrame:
        return self._sql(diagnostics.STAGING_DUPLICATES)

    def missing_foreign_keys(self) -> pd.DataFrame:
        return self._sql(diagnostics.MISSING_FOREIGN_KEYS)

    def records_not_loaded(self, limit: int | None = None) -> pd.DataFrame:
        return self._sql(diagnostics.RECORDS_NOT_LOADED, limit=limit or self.failure_sample_limit)

    def orphaned_fact_keys(self) -> pd.DataFrame:
        return self._sql(diagnostics.ORPHANED_FACT_KEYS)

    def dimension_counts(self) -> pd.DataFrame:
        return self._sql(diagnostics.DIMENSION_COUNTS)
