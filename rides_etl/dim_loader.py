import logging
from dataclasses import dataclass

import pandas as pd

from rides_etl.core.key_mapper import build_lookup
from rides_etl.core.utils import clean_natural_keys, utc_now
from rides_etl.core.warehouse import Warehouse
from rides_etl.specs.dimensions import DimensionSpec

logger = logging.getLogger(__name__)


@dataclass
class DimensionLoadResult:
    name: str
    candidates: int
    inserted: int
    lookup: pd.Series


class GenericDimLoader:
    """Upserts the distinct natural keys of one dimension.

    Existing rows keep their surrogate keys. New values get ``max + 1``
    onwards in order of first appearance in staging, numbered by the
    warehouse inside the insert so concurrent loaders never share a key.
    """

    def __init__(self, spec: DimensionSpec, warehouse: Warehouse) -> None:
        self.spec = spec
        self.name = spec.name
        self.warehouse = warehouse

    def extract(self, df: pd.DataFrame) -> pd.Series:
        # stack source columns in order so pickup values come before drop values
        present = [c for c in self.spec.source_columns if c in df.columns]
        missing = set(self.spec.source_columns) - set(present)
        if missing:
            logger.warning("Dimension '%s' missing staging columns: %s", self.name, sorted(missing))
        if not present:
            return pd.Series(dtype="string", name=self.spec.natural_key)

        values = pd.concat(
            [clean_natural_keys(df[col]) for col in present], ignore_index=True
        )
        values = values.dropna().drop_duplicates().reset_index(drop=True)
        return values.rename(self.spec.natural_key)

    def transform(self, values: pd.Series, existing: pd.DataFrame) -> pd.DataFrame:
        """New values only, in first-appearance order; the warehouse numbers them on insert."""
        known = set(existing[self.spec.natural_key].astype(str)) if not existing.empty else set()
        new_values = values[~values.astype(str).isin(known)].reset_index(drop=True)
        return pd.DataFrame(
            {
                self.spec.natural_key: new_values.astype(str).to_numpy(),
                "created_at": utc_now(),
            }
        )

    def load(self, rows: pd.DataFrame) -> int:
        if rows.empty:
            return 0
        return self.warehouse.insert_dimension(self.spec, rows)

    def run(self, df: pd.DataFrame) -> DimensionLoadResult:
        values = self.extract(df)
        existing = self.warehouse.read_table(
            self.spec.table_key, [self.spec.key_name, self.spec.natural_key]
        )
        rows = self.transform(values, existing)
        inserted = self.load(rows)
        if inserted < len(rows):
            logger.warning(
                "Dimension '%s': %d of %d new values were already present",
                self.name,
                len(rows) - inserted,
                len(rows),
            )

        # read back so the lookup reflects what was actually committed
        current = self.warehouse.read_table(
            self.spec.table_key, [self.spec.key_name, self.spec.natural_key]
        )
        lookup = build_lookup(current, self.spec.natural_key, self.spec.key_name)
        logger.info(
            "Dimension '%s': %d distinct values, %d inserted, %d total",
            self.name,
            len(values),
            inserted,
            len(lookup),
        )
        return DimensionLoadResult(self.name, len(values), inserted, lookup)
