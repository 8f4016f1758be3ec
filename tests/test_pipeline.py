"""End-to-end load through the DuckDB warehouse."""

import pandas as pd
import pytest

from rides_etl.core.errors import SchemaMismatchError
from rides_etl.pipeline import run_pipeline
from rides_etl.reports.engine import ReportingEngine


def _snapshot(warehouse, table_key, key):
    return warehouse.read_table(table_key).sort_values(key).reset_index(drop=True)


def test_row_with_empty_pickup_is_skipped(warehouse, staging_frame, make_booking):
    df = staging_frame(
        [
            make_booking("B1", pickup_location="Saket", drop_location="Dwarka"),
            make_booking("B2", pickup_location="", drop_location="Dwarka"),
            make_booking("B3", pickup_location="Dwarka", drop_location="Saket"),
        ]
    )

    result = run_pipeline(warehouse, df)

    fact = warehouse.read_table("fact_bookings")
    assert sorted(fact["booking_id"]) == ["B1", "B3"]
    assert result.facts.inserted == 2
    assert result.facts.failed_rows == 1
    locations = warehouse.read_table("locations")
    assert sorted(locations["location_name"]) == ["Dwarka", "Saket"]

    missing = ReportingEngine(warehouse).missing_foreign_keys().iloc[0]
    assert missing["missing_pickup"] == 1
    assert missing["missing_drop"] == 0
    assert missing["missing_customers"] == 0


def test_rerun_leaves_warehouse_unchanged(warehouse, staging_frame, make_booking):
    df = staging_frame(
        [
            make_booking("B1", customer_id="CID1", payment_method="Cash"),
            make_booking("B2", customer_id="CID2", vehicle_type="Bike"),
            make_booking("B3", customer_id="CID1", drop_location="Saket"),
        ]
    )
    run_pipeline(warehouse, df)
    tables = {
        "fact_bookings": "fact_booking_key",
        "customers": "customer_key",
        "vehicles": "vehicle_key",
        "locations": "location_key",
        "payment_methods": "payment_method_key",
    }
    before = {t: _snapshot(warehouse, t, k) for t, k in tables.items()}

    second = run_pipeline(warehouse)

    assert second.facts.inserted == 0
    assert second.facts.already_present == 3
    assert all(r.inserted == 0 for r in second.dimensions.values())
    for table, key in tables.items():
        pd.testing.assert_frame_equal(before[table], _snapshot(warehouse, table, key))


def test_fact_count_matches_unique_resolvable_bookings(warehouse, staging_frame, make_booking):
    df = staging_frame(
        [
            make_booking("B1"),
            make_booking("B1"),
            make_booking("B2"),
            make_booking("B3", customer_id=""),
            make_booking("B4", booking_datetime="31/31/2024"),
        ]
    )

    result = run_pipeline(warehouse, df)

    counts = ReportingEngine(warehouse).staging_vs_fact_counts().set_index("source")
    assert counts.loc["Staging Table", "total_rows"] == 5
    assert counts.loc["Staging Table", "unique_bookings"] == 4
    assert counts.loc["Fact Table", "total_rows"] == 2
    assert result.staging_rows == 5
    assert result.facts.duplicates_in_staging == 1


def test_no_orphaned_keys_after_load(warehouse, staging_frame, make_booking):
    df = staging_frame(
        [make_booking(customer_id=f"CID{i}", pickup_location=f"P{i % 3}") for i in range(12)]
    )

    run_pipeline(warehouse, df, max_workers=2, batch_size=5)

    orphans = ReportingEngine(warehouse).orphaned_fact_keys().iloc[0]
    assert orphans.sum() == 0


def test_staging_missing_a_column_aborts(warehouse, staging_frame, make_booking):
    df = staging_frame([make_booking("B1")]).drop(columns=["payment_method"])
    warehouse.write_staging(df)

    with pytest.raises(SchemaMismatchError) as exc:
        run_pipeline(warehouse)

    assert "payment_method" in exc.value.details["missing"]
    assert warehouse.read_table("fact_bookings").empty


def test_staging_headers_are_normalized(warehouse, staging_frame, make_booking):
    df = staging_frame([make_booking("B1")])
    df.columns = [c.replace("_", " ").title() for c in df.columns]

    result = run_pipeline(warehouse, df)

    assert result.facts.inserted == 1
