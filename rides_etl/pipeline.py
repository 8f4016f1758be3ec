import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import pandas as pd

from rides_etl.core.key_mapper import KeyResolution, resolve_keys
from rides_etl.core.utils import normalize_columns
from rides_etl.core.warehouse import Warehouse
from rides_etl.dim_loader import DimensionLoadResult, GenericDimLoader
from rides_etl.fact_loader import FactLoader, FactLoadResult
from rides_etl.specs.dimensions import DIMENSIONS, DimensionSpec

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    staging_rows: int
    dimensions: dict[str, DimensionLoadResult]
    resolution: KeyResolution
    facts: FactLoadResult


def load_dimensions(
    warehouse: Warehouse,
    staging: pd.DataFrame,
    specs: list[DimensionSpec] = DIMENSIONS,
    max_workers: int = 4,
) -> dict[str, DimensionLoadResult]:
    """Build every dimension; returns only once all builds have finished."""
    loaders = [GenericDimLoader(spec, warehouse) for spec in specs]
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dim") as pool:
        futures = {loader.name: pool.submit(loader.run, staging) for loader in loaders}
        # result() re-raises the first storage error from any worker
        return {name: future.result() for name, future in futures.items()}


def run_pipeline(
    warehouse: Warehouse,
    staging: pd.DataFrame | None = None,
    max_workers: int = 4,
    batch_size: int = 50_000,
) -> PipelineResult:
    warehouse.ensure_schema()

    if staging is not None:
        warehouse.write_staging(normalize_columns(staging))
    staging = normalize_columns(warehouse.read_staging()).reset_index(drop=True)
    logger.info("Read %d staging rows", len(staging))

    dimensions = load_dimensions(warehouse, staging, max_workers=max_workers)

    lookups = {name: result.lookup for name, result in dimensions.items()}
    resolution = resolve_keys(staging, lookups)
    facts = FactLoader(warehouse, batch_size=batch_size).run(resolution)

    for issue, count in sorted(facts.issue_counts().items()):
        if count:
            logger.info("Data quality: %s = %d", issue, count)

    return PipelineResult(len(staging), dimensions, resolution, facts)
