# config/base.py
import os


def _coerce_bool(value, default=False):
    """Convert environment-style truthy/falsey values to bool."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    if value_str in {"1", "true", "yes", "on"}:
        return True
    if value_str in {"0", "false", "no", "off"}:
        return False
    return default


def _coerce_int(value, default, *, minimum=None, maximum=None):
    """Parse an integer setting, falling back to ``default`` when invalid or out of bounds."""
    if value is None or str(value).strip() == "":
        return default
    try:
        number = int(str(value).strip())
    except ValueError:
        return default
    if minimum is not None and number < minimum:
        return default
    if maximum is not None and number > maximum:
        return default
    return number


def _coerce_choice(value, choices, default):
    """Return ``value`` lower-cased when it is one of ``choices``; otherwise ``default``."""
    if value is None:
        return default
    normalized = str(value).strip().lower()
    return normalized if normalized in choices else default


DELTA_LOOKBACK_CHOICES = ("exact", "nearest")


class Config:
    _config_dir = os.path.dirname(os.path.abspath(__file__))

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {}

    # Ingest configuration
    INGEST_ENABLED = _coerce_bool(os.environ.get("INGEST_ENABLED"), default=True)
    INGEST_SOURCES_PATH = os.environ.get("INGEST_SOURCES_PATH", os.path.join(_config_dir, "sources.yaml"))
    INGEST_USER_AGENT = os.environ.get("INGEST_USER_AGENT", "UK-Asylum-Dashboard/1.0 (Research)")
    INGEST_FETCH_TIMEOUT_SECONDS = _coerce_int(os.environ.get("INGEST_FETCH_TIMEOUT_SECONDS"), 60, minimum=1)
    INGEST_UPSERT_CHUNK_SIZE = _coerce_int(os.environ.get("INGEST_UPSERT_CHUNK_SIZE"), 100, minimum=1)
    INGEST_FUZZY_MIN_SCORE = _coerce_int(os.environ.get("INGEST_FUZZY_MIN_SCORE"), 85, minimum=1, maximum=100)
    INGEST_DELTA_LOOKBACK = _coerce_choice(os.environ.get("INGEST_DELTA_LOOKBACK"), DELTA_LOOKBACK_CHOICES, "exact")
    INGEST_TASK_TIME_LIMIT = _coerce_int(os.environ.get("INGEST_TASK_TIME_LIMIT"), 30 * 60, minimum=1)
    INGEST_TASK_SOFT_TIME_LIMIT = _coerce_int(os.environ.get("INGEST_TASK_SOFT_TIME_LIMIT"), 25 * 60, minimum=1)

    # Background worker
    INGEST_WORKER_ENABLED = _coerce_bool(os.environ.get("INGEST_WORKER_ENABLED"), default=False)
    CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND")
    CELERY_SQLITE_PATH = os.environ.get("CELERY_SQLITE_PATH")
    CELERY_CONFIG = os.environ.get("CELERY_CONFIG")


class DevelopmentConfig(Config):
    DEBUG = True
    # Get the project root directory (parent of config directory)
    _project_root = os.path.dirname(Config._config_dir)
    instance_path = os.path.join(_project_root, "instance")

    if not os.path.exists(instance_path):
        os.makedirs(instance_path, exist_ok=True)

    # SQLite URI needs forward slashes, also on Windows
    db_path = os.path.join(instance_path, "dashboard_dev.db").replace("\\", "/")
    db_uri = f"sqlite:///{db_path}"

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", db_uri)
    SQLALCHEMY_ECHO = _coerce_bool(os.environ.get("SQLALCHEMY_ECHO"), default=False)
    if SQLALCHEMY_DATABASE_URI.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": 5,
            }
        }
    else:
        SQLALCHEMY_ENGINE_OPTIONS = {}


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"  # Schema is rebuilt per test in conftest.py
    SQLALCHEMY_ECHO = False
    INGEST_ENABLED = True
    INGEST_WORKER_ENABLED = False
    INGEST_DELTA_LOOKBACK = "exact"
    SQLALCHEMY_ENGINE_OPTIONS = {
        "connect_args": {
            "check_same_thread": False,
            "timeout": 5,
        }
    }


class ProductionConfig(Config):
    DEBUG = False
    uri = os.environ.get("DATABASE_URL")
    if uri and uri.startswith("postgres://"):
        uri = uri.replace("postgres://", "postgresql://", 1)
    SQLALCHEMY_DATABASE_URI = uri
    SQLALCHEMY_ECHO = False
