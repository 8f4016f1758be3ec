import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

# env var -> (section, option) in settings.toml
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "RIDES_WAREHOUSE_BACKEND": ("warehouse", "backend"),
    "RIDES_DUCKDB_PATH": ("duckdb", "path"),
    "GCP_PROJECT_ID": ("bigquery", "project_id"),
    "RIDES_BQ_DATASET": ("bigquery", "dataset"),
    "RIDES_LOG_LEVEL": ("logging", "level"),
}


def env_overrides() -> dict[tuple[str, str], str]:
    """Read overrides at call time so a changed environment is picked up."""
    found: dict[tuple[str, str], str] = {}
    for var, target in ENV_OVERRIDES.items():
        value = os.getenv(var)
        if value:
            found[target] = value
    return found
