from pathlib import Path
from typing import TypedDict

import tomllib

from rides_config.env import env_overrides
from rides_etl.core.errors import ConfigurationError

SETTINGS_PATH = Path(__file__).parent / "settings.toml"
BACKENDS = ("duckdb", "bigquery")


class WarehouseConfig(TypedDict):
    backend: str

class DuckDBConfig(TypedDict):
    path: str

class BQConfig(TypedDict):
    project_id: str
    dataset: str
    location: str

class TableConfig(TypedDict):
    staging: str
    customers: str
    vehicles: str
    locations: str
    payment_methods: str
    fact_bookings: str

class PipelineConfig(TypedDict):
    max_workers: int
    batch_size: int

class ReportsConfig(TypedDict):
    top_n: int
    failure_sample_limit: int

class LoggingConfig(TypedDict):
    level: str

class Config(TypedDict):
    warehouse: WarehouseConfig
    duckdb: DuckDBConfig
    bigquery: BQConfig
    tables: dict[str, str]
    pipeline: PipelineConfig
    reports: ReportsConfig
    logging: LoggingConfig


REQUIRED_TABLES = tuple(TableConfig.__annotations__)


def load_config(path: str | Path | None = None) -> Config:
    settings = Path(path) if path else SETTINGS_PATH
    try:
        with open(settings, "rb") as f:
            cfg = tomllib.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Settings file not found: {settings}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid settings file {settings}: {e}") from e

    for (section, option), value in env_overrides().items():
        cfg.setdefault(section, {})[option] = value

    validate_config(cfg)
    return cfg  # type: ignore


def validate_config(cfg: dict) -> None:
    backend = cfg.get("warehouse", {}).get("backend")
    if backend not in BACKENDS:
        raise ConfigurationError(
            f"Unknown warehouse backend {backend!r}", {"allowed": list(BACKENDS)}
        )

    missing = [t for t in REQUIRED_TABLES if t not in cfg.get("tables", {})]
    if missing:
        raise ConfigurationError(
            "Missing table names in [tables]", {"missing": missing}
        )

    pipeline = cfg.setdefault("pipeline", {})
    pipeline.setdefault("max_workers", 4)
    pipeline.setdefault("batch_size", 50_000)
    if int(pipeline["max_workers"]) < 1 or int(pipeline["batch_size"]) < 1:
        raise ConfigurationError("pipeline.max_workers and batch_size must be >= 1")

    reports = cfg.setdefault("reports", {})
    reports.setdefault("top_n", 10)
    reports.setdefault("failure_sample_limit", 10)
    cfg.setdefault("logging", {}).setdefault("level", "INFO")
