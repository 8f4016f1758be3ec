import logging
from dataclasses import dataclass

import pandas as pd

from rides_etl.core.errors import IssueKind
from rides_etl.core.utils import clean_natural_keys
from rides_etl.specs.facts import BUSINESS_KEY, FACT_BOOKING_FK_MAP

logger = logging.getLogger(__name__)

FAILURE_COLUMNS = ["booking_id", "field", "issue", "value"]


@dataclass
class KeyResolution:
    # every staging row, with one nullable Int64 column per foreign key
    frame: pd.DataFrame
    failures: pd.DataFrame
    key_columns: list[str]

    @property
    def resolved_mask(self) -> pd.Series:
        return self.frame[self.key_columns].notna().all(axis=1)


def build_lookup(dim_df: pd.DataFrame, natural_key: str, key_name: str) -> pd.Series:
    """Natural key -> surrogate key for one dimension."""
    if dim_df.empty:
        return pd.Series(dtype="int64")
    lookup = pd.Series(
        dim_df[key_name].astype("int64").to_numpy(),
        index=dim_df[natural_key].astype(str).to_numpy(),
    )
    return lookup[~lookup.index.duplicated(keep="first")]


def assign_keys(
    fact_df: pd.DataFrame, lookup: pd.Series, source_column: str, key_name: str
) -> pd.DataFrame:
    """Left lookup: rows keep their place even when no key is found."""
    fact_df = fact_df.copy()
    if source_column not in fact_df.columns:
        logger.warning("Skipping key assignment for %s: %s not in staging", key_name, source_column)
        fact_df[key_name] = pd.array([pd.NA] * len(fact_df), dtype="Int64")
        return fact_df

    natural = clean_natural_keys(fact_df[source_column])
    mapped = natural.astype(object).map(lookup)
    fact_df[key_name] = pd.to_numeric(mapped, errors="coerce").astype("Int64")
    return fact_df


def resolve_keys(
    staging: pd.DataFrame,
    lookups: dict[str, pd.Series],
    fk_map: list[tuple[str, str, str]] = FACT_BOOKING_FK_MAP,
) -> KeyResolution:
    frame = staging.copy()
    failures: list[pd.DataFrame] = []

    for source_column, dim_name, key_name in fk_map:
        frame = assign_keys(frame, lookups[dim_name], source_column, key_name)

        missing = frame[key_name].isna()
        if not missing.any():
            continue

        if source_column in frame.columns:
            natural = clean_natural_keys(frame[source_column])
            raw = frame.loc[missing, source_column]
        else:
            natural = pd.Series(pd.NA, index=frame.index, dtype="string")
            raw = pd.Series(pd.NA, index=frame.index[missing])
        issue = natural[missing].isna().map(
            {
                True: IssueKind.MISSING_NATURAL_KEY.value,
                False: IssueKind.UNRESOLVED_FOREIGN_KEY.value,
            }
        )
        failures.append(
            pd.DataFrame(
                {
                    "booking_id": frame.loc[missing, BUSINESS_KEY],
                    "field": source_column,
                    "issue": issue,
                    "value": raw,
                }
            )
        )

    failure_df = (
        pd.concat(failures) if failures else pd.DataFrame(columns=FAILURE_COLUMNS)
    )
    key_columns = [key for _, _, key in fk_map]
    resolution = KeyResolution(frame, failure_df, key_columns)
    logger.info(
        "Resolved keys for %d of %d staging rows (%d key failures)",
        int(resolution.resolved_mask.sum()),
        len(frame),
        len(failure_df),
    )
    return resolution
