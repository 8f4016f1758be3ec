import logging
from dataclasses import dataclass, field

import pandas as pd

from rides_etl.constants import FALSE_VALUES, TRUE_VALUES
from rides_etl.core.column_spec import ColumnSpec
from rides_etl.core.errors import IssueKind
from rides_etl.core.key_mapper import FAILURE_COLUMNS, KeyResolution
from rides_etl.core.utils import clean_natural_keys, utc_now
from rides_etl.core.warehouse import Warehouse
from rides_etl.specs.facts import (
    BUSINESS_KEY,
    FACT_BOOKING_COLUMNS,
    FACT_KEY_COLUMNS,
    FACT_ROW_COLUMNS,
    FACT_TABLE,
)

logger = logging.getLogger(__name__)

INSERTED = "inserted"
ALREADY_PRESENT = "already_present"
FAILED = "failed"


def _empty_issues() -> pd.DataFrame:
    return pd.DataFrame(columns=FAILURE_COLUMNS)


@dataclass
class FactLoadResult:
    inserted: int = 0
    already_present: int = 0
    duplicates_in_staging: int = 0
    # rows that were not loaded, one entry per failing field
    failures: pd.DataFrame = field(default_factory=_empty_issues)
    # measures nulled out under the best-effort policy; rows still loaded
    measure_issues: pd.DataFrame = field(default_factory=_empty_issues)
    # one row per staging row: booking_id, state
    outcomes: pd.DataFrame = field(
        default_factory=lambda: pd.DataFrame(columns=["booking_id", "state"])
    )

    @property
    def malformed_measures(self) -> int:
        return len(self.measure_issues)

    @property
    def failed_rows(self) -> int:
        return int((self.outcomes["state"] == FAILED).sum())

    def issue_counts(self) -> dict[str, int]:
        counts = self.failures["issue"].value_counts().to_dict() if not self.failures.empty else {}
        counts[IssueKind.MALFORMED_MEASURE.value] = self.malformed_measures
        counts[IssueKind.DUPLICATE_BOOKING_ID.value] = (
            self.already_present + self.duplicates_in_staging
        )
        return counts


def parse_bool(value: object) -> bool | None:
    """True/False for recognizable flags, None when the value is unusable."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value in (0, 1):
            return bool(value)
        return None
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def _present(raw: pd.Series) -> pd.Series:
    return raw.notna() & (raw.astype(str).str.strip() != "")


def normalize_data(
    df: pd.DataFrame, specs: list[ColumnSpec] = FACT_BOOKING_COLUMNS
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Coerce staging columns to fact types.

    Bad measures are nulled rather than rejecting the row; each one is
    reported as a malformed_measure issue. A missing cancellation flag
    becomes False.
    """
    df = df.copy()
    issues: list[pd.DataFrame] = []

    for spec in specs:
        col = spec.name
        if col not in df.columns:
            df[col] = pd.NA
        raw = df[col]

        if spec.dtype == "string":
            df[col] = clean_natural_keys(raw)

        elif spec.dtype == "datetime":
            df[col] = pd.to_datetime(
                raw, errors="coerce", format="mixed", utc=True
            ).dt.tz_localize(None)

        elif spec.dtype == "decimal":
            values = pd.to_numeric(raw, errors="coerce").astype("float64")
            if spec.lower is not None:
                values = values.mask(values < spec.lower)
            if spec.upper is not None:
                values = values.mask(values > spec.upper)
            df[col] = values.round(spec.scale)
            bad = _present(raw) & values.isna()
            if bad.any():
                issues.append(_issue_frame(df, bad, col, IssueKind.MALFORMED_MEASURE, raw))

        elif spec.dtype == "boolean":
            parsed = raw.map(lambda v: None if pd.isna(v) else parse_bool(v))
            bad = raw.notna() & parsed.isna()
            if bad.any():
                issues.append(_issue_frame(df, bad, col, IssueKind.MALFORMED_MEASURE, raw))
            df[col] = parsed.fillna(False).astype(bool)

        else:
            raise ValueError(f"Unknown dtype {spec.dtype!r} for column {col!r}")

    issue_df = pd.concat(issues) if issues else _empty_issues()
    return df, issue_df


def _issue_frame(
    df: pd.DataFrame, mask: pd.Series, col: str, kind: IssueKind, raw: pd.Series
) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "booking_id": df.loc[mask, BUSINESS_KEY],
            "field": col,
            "issue": kind.value,
            "value": raw[mask],
        }
    )


class FactLoader:
    def __init__(
        self,
        warehouse: Warehouse,
        specs: list[ColumnSpec] = FACT_BOOKING_COLUMNS,
        batch_size: int = 50_000,
    ) -> None:
        self.warehouse = warehouse
        self.specs = specs
        self.batch_size = batch_size

    def run(self, resolution: KeyResolution) -> FactLoadResult:
        raw = resolution.frame
        df, measure_issues = normalize_data(raw, self.specs)
        failures = [resolution.failures]

        missing_id = df[BUSINESS_KEY].isna()
        if missing_id.any():
            failures.append(
                _issue_frame(df, missing_id, BUSINESS_KEY, IssueKind.MISSING_BOOKING_ID, raw[BUSINESS_KEY])
            )
        bad_datetime = df["booking_datetime"].isna()
        if bad_datetime.any():
            failures.append(
                _issue_frame(
                    df,
                    bad_datetime,
                    "booking_datetime",
                    IssueKind.INVALID_BOOKING_DATETIME,
                    raw["booking_datetime"],
                )
            )

        eligible = ~missing_id & ~bad_datetime & resolution.resolved_mask
        state = pd.Series(FAILED, index=df.index)

        candidates = df[eligible]
        in_staging_dup = candidates[BUSINESS_KEY].duplicated(keep="first")
        state.loc[candidates.index[in_staging_dup.to_numpy()]] = ALREADY_PRESENT
        candidates = candidates[~in_staging_dup]

        loaded_ids = self.warehouse.read_table(FACT_TABLE, [BUSINESS_KEY])[BUSINESS_KEY]
        present = candidates[BUSINESS_KEY].astype(str).isin(set(loaded_ids.astype(str)))
        state.loc[candidates.index[present.to_numpy()]] = ALREADY_PRESENT
        new = candidates[~present]
        state.loc[new.index] = INSERTED

        inserted = self._insert(new)
        skipped_on_write = len(new) - inserted
        if skipped_on_write:
            # another writer got there between our read and the insert
            logger.warning("%d bookings were inserted concurrently and skipped", skipped_on_write)

        failures = [f for f in failures if not f.empty]
        failure_df = pd.concat(failures) if failures else _empty_issues()

        result = FactLoadResult(
            inserted=inserted,
            already_present=int(present.sum()) + skipped_on_write,
            duplicates_in_staging=int(in_staging_dup.sum()),
            failures=failure_df,
            measure_issues=measure_issues,
            outcomes=pd.DataFrame({"booking_id": df[BUSINESS_KEY], "state": state}),
        )
        logger.info(
            "Fact load: %d inserted, %d already present, %d duplicate in staging, "
            "%d rows failed, %d malformed measures",
            result.inserted,
            result.already_present,
            result.duplicates_in_staging,
            result.failed_rows,
            result.malformed_measures,
        )
        return result

    def build_rows(self, new: pd.DataFrame) -> pd.DataFrame:
        rows = new.copy()
        for key in FACT_KEY_COLUMNS:
            rows[key] = rows[key].astype("int64")
        now = utc_now()
        rows["created_at"] = now
        rows["updated_at"] = now
        return rows[FACT_ROW_COLUMNS].reset_index(drop=True)

    def _insert(self, new: pd.DataFrame) -> int:
        if new.empty:
            return 0
        rows = self.build_rows(new)

        inserted = 0
        for start in range(0, len(rows), self.batch_size):
            batch = rows.iloc[start : start + self.batch_size]
            inserted += self.warehouse.insert_facts(batch)
            logger.debug("Inserted fact batch %d-%d", start, start + len(batch))
        return inserted
