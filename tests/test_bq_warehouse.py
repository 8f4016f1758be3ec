"""BigQuery backend against a mocked client."""

from decimal import Decimal
from unittest.mock import MagicMock

import pandas as pd
import pytest
from google.api_core import exceptions as gexc
from google.cloud import bigquery

from rides_etl.core.bq_warehouse import BigQueryWarehouse
from rides_etl.core.duckdb_warehouse import DEFAULT_TABLES
from rides_etl.core.errors import SchemaMismatchError, WarehouseUnavailableError
from rides_etl.specs.dimensions import CUSTOMER_DIM
from rides_etl.specs.facts import FACT_COLUMNS

CFG = {"project_id": "proj", "dataset": "rides", "location": "US"}


@pytest.fixture
def client():
    return MagicMock()


@pytest.fixture
def bq(client):
    return BigQueryWarehouse(CFG, DEFAULT_TABLES, client=client)


def _customers(n=2):
    return pd.DataFrame(
        {
            "customer_key": range(1, n + 1),
            "customer_id": [f"CID{i}" for i in range(n)],
            "created_at": pd.Timestamp("2024-03-01"),
        }
    )


def _fact_rows():
    row = {c: 1 for c in FACT_COLUMNS}
    row.update(
        booking_id="B1",
        booking_status="Completed",
        booking_datetime=pd.Timestamp("2024-03-01 08:00"),
        booking_value=250.456,
        ride_distance=float("nan"),
        driver_ratings=4.5,
        customer_rating=None,
        is_cancelled=False,
        created_at=pd.Timestamp("2024-03-01"),
        updated_at=pd.Timestamp("2024-03-01"),
    )
    return pd.DataFrame([row], columns=FACT_COLUMNS)


def test_table_ref_is_fully_qualified(bq):
    assert bq.table_ref("fact_bookings") == "`proj.rides.fact_bookings`"
    assert bq.table_ref("staging") == "`proj.rides.bookings`"


def test_insert_dimension_merges_from_scratch_table(bq, client):
    client.query.return_value.num_dml_affected_rows = 2

    inserted = bq.insert_dimension(CUSTOMER_DIM, _customers())

    assert inserted == 2
    sent, scratch = client.load_table_from_dataframe.call_args.args[:2]
    assert scratch.startswith("proj.rides.customers__incoming_")
    assert list(sent.columns) == ["customer_id", "created_at", "row_order"]
    assert sent["row_order"].tolist() == [0, 1]
    sql = client.query.call_args.args[0]
    assert "MERGE `proj.rides.customers`" in sql
    assert "ON T.customer_id = S.customer_id" in sql
    assert "WHEN NOT MATCHED" in sql
    client.delete_table.assert_called_once_with(scratch, not_found_ok=True)


def test_surrogate_keys_are_numbered_inside_the_merge(bq, client):
    bq.insert_dimension(CUSTOMER_DIM, _customers())

    sql = client.query.call_args.args[0]
    assert "(SELECT IFNULL(MAX(customer_key), 0) FROM `proj.rides.customers`)" in sql
    assert "ROW_NUMBER() OVER (ORDER BY I.row_order) AS customer_key" in sql
    assert "INSERT (customer_key, customer_id, created_at)" in sql
    client.query.assert_called_once()


def test_empty_insert_does_nothing(bq, client):
    assert bq.insert_dimension(CUSTOMER_DIM, _customers(0)) == 0

    client.load_table_from_dataframe.assert_not_called()
    client.query.assert_not_called()


def test_failed_merge_is_wrapped_and_cleaned_up(bq, client):
    client.query.side_effect = gexc.BadRequest("bad merge")

    with pytest.raises(WarehouseUnavailableError):
        bq.insert_dimension(CUSTOMER_DIM, _customers())

    client.delete_table.assert_called_once()


def test_failed_load_is_wrapped(bq, client):
    client.load_table_from_dataframe.side_effect = gexc.Forbidden("denied")

    with pytest.raises(WarehouseUnavailableError):
        bq.write_staging(pd.DataFrame({"booking_id": ["B1"]}))


def test_insert_facts_sends_numeric_as_decimal(bq, client):
    client.query.return_value.num_dml_affected_rows = 1

    assert bq.insert_facts(_fact_rows()) == 1

    sent = client.load_table_from_dataframe.call_args.args[0]
    assert "fact_booking_key" not in sent.columns
    assert sent["booking_value"].tolist() == [Decimal("250.46")]
    assert sent["driver_ratings"].tolist() == [Decimal("4.50")]
    assert sent["ride_distance"].tolist() == [None]
    assert sent["customer_rating"].tolist() == [None]


def test_read_staging_checks_columns(bq, client):
    client.get_table.return_value = bigquery.Table(
        "proj.rides.bookings", schema=[bigquery.SchemaField("booking_id", "STRING")]
    )

    with pytest.raises(SchemaMismatchError) as exc:
        bq.read_staging()

    assert "customer_id" in exc.value.details["missing"]
    client.query.assert_not_called()


def test_read_staging_missing_table(bq, client):
    client.get_table.side_effect = gexc.NotFound("no table")

    with pytest.raises(SchemaMismatchError):
        bq.read_staging()


def test_ensure_schema_creates_every_table(bq, client):
    client.create_table.side_effect = lambda table, exists_ok: table

    bq.ensure_schema()

    client.create_dataset.assert_called_once_with("proj.rides", exists_ok=True)
    created = [c.args[0].table_id for c in client.create_table.call_args_list]
    assert created == ["customers", "vehicles", "locations", "payment_methods", "fact_bookings"]


def test_ensure_schema_rejects_drifted_table(bq, client):
    client.create_table.side_effect = lambda table, exists_ok: bigquery.Table(
        table.reference, schema=table.schema[:1]
    )

    with pytest.raises(SchemaMismatchError):
        bq.ensure_schema()

