"""Shared fixtures for pipeline tests."""

import itertools

import pandas as pd
import pytest

from rides_etl.constants import STAGING_COLUMNS
from rides_etl.core.duckdb_warehouse import DuckDBWarehouse


@pytest.fixture
def warehouse():
    """In-memory DuckDB warehouse with the star schema created."""
    wh = DuckDBWarehouse(":memory:")
    wh.ensure_schema()
    yield wh
    wh.close()


@pytest.fixture
def make_booking():
    """Factory for one clean staging row; override any field by keyword."""
    counter = itertools.count(1)

    def _make(booking_id: str | None = None, **overrides) -> dict:
        n = next(counter)
        row = {
            "booking_id": booking_id if booking_id is not None else f"CNR{n:07d}",
            "booking_status": "Completed",
            "booking_datetime": "2024-03-01 08:15:00",
            "customer_id": "CID1001",
            "vehicle_type": "Auto",
            "pickup_location": "Palam Vihar",
            "drop_location": "Jhilmil",
            "payment_method": "UPI",
            "booking_value": 250.0,
            "ride_distance": 12.5,
            "driver_ratings": 4.5,
            "customer_rating": 4.8,
            "is_cancelled": False,
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture
def staging_frame():
    """Build a staging DataFrame with the full column set."""

    def _frame(rows: list[dict]) -> pd.DataFrame:
        return pd.DataFrame(rows, columns=STAGING_COLUMNS)

    return _frame
