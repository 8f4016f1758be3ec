import pytest

from rides_config import REQUIRED_TABLES, load_config
from rides_config.env import ENV_OVERRIDES
from rides_etl.core.errors import ConfigurationError

TABLES = "\n".join(f'{t} = "{t}"' for t in REQUIRED_TABLES)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ENV_OVERRIDES:
        monkeypatch.delenv(var, raising=False)


def _write(tmp_path, body):
    path = tmp_path / "settings.toml"
    path.write_text(body)
    return path


def test_packaged_defaults():
    cfg = load_config()

    assert cfg["warehouse"]["backend"] == "duckdb"
    assert cfg["tables"]["staging"] == "bookings"
    assert cfg["pipeline"]["max_workers"] == 4
    assert cfg["reports"]["top_n"] == 10


def test_env_overrides_settings(monkeypatch):
    monkeypatch.setenv("RIDES_WAREHOUSE_BACKEND", "bigquery")
    monkeypatch.setenv("GCP_PROJECT_ID", "my-project")
    monkeypatch.setenv("RIDES_LOG_LEVEL", "DEBUG")

    cfg = load_config()

    assert cfg["warehouse"]["backend"] == "bigquery"
    assert cfg["bigquery"]["project_id"] == "my-project"
    assert cfg["bigquery"]["dataset"] == "rides_dw"
    assert cfg["logging"]["level"] == "DEBUG"


def test_minimal_file_gets_defaults(tmp_path):
    path = _write(tmp_path, f'[warehouse]\nbackend = "duckdb"\n\n[tables]\n{TABLES}\n')

    cfg = load_config(path)

    assert cfg["pipeline"] == {"max_workers": 4, "batch_size": 50_000}
    assert cfg["reports"]["failure_sample_limit"] == 10
    assert cfg["logging"]["level"] == "INFO"


def test_unknown_backend(tmp_path):
    path = _write(tmp_path, f'[warehouse]\nbackend = "mysql"\n\n[tables]\n{TABLES}\n')

    with pytest.raises(ConfigurationError, match="backend"):
        load_config(path)


def test_missing_tables(tmp_path):
    path = _write(tmp_path, '[warehouse]\nbackend = "duckdb"\n\n[tables]\nstaging = "bookings"\n')

    with pytest.raises(ConfigurationError) as exc:
        load_config(path)

    assert "fact_bookings" in exc.value.details["missing"]


def test_invalid_worker_count(tmp_path):
    path = _write(
        tmp_path,
        f'[warehouse]\nbackend = "duckdb"\n\n[tables]\n{TABLES}\n\n[pipeline]\nmax_workers = 0\n',
    )

    with pytest.raises(ConfigurationError):
        load_config(path)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "nope.toml")


def test_malformed_file(tmp_path):
    path = _write(tmp_path, "[warehouse\nbackend = duckdb")

    with pytest.raises(ConfigurationError, match="Invalid"):
        load_config(path)
