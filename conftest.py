# conftest.py

import os
from unittest.mock import patch

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from dashboard_app.ingest import init_ingest  # noqa: E402
from dashboard_app.models import DataSource, DataSourceStatus, LocalAuthority, UpdateFrequency, db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    # TestingConfig uses an in-memory SQLite database; Flask-SQLAlchemy keeps a
    # single shared connection for it, so dropping and recreating the tables
    # gives every test a clean schema.
    flask_app.config.update(
        {
            "TESTING": True,
            "INGEST_ENABLED": True,
            "INGEST_WORKER_ENABLED": False,
            "INGEST_DELTA_LOOKBACK": "exact",
            "INGEST_UPSERT_CHUNK_SIZE": 100,
            "INGEST_FUZZY_MIN_SCORE": 85,
            "ENABLE_FILE_LOGGING": False,
            "ENABLE_CONSOLE_LOGGING": False,
            "LOG_LEVEL": "WARNING",
        }
    )
    # Tests may switch the feature flag off; restore the real CLI group each time
    init_ingest(flask_app)

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


@pytest.fixture
def make_source(app):
    """Factory creating ``DataSource`` rows"""

    def _make_source(
        code,
        *,
        name=None,
        tier="B",
        url="https://example.test/release.ods",
        status=DataSourceStatus.ACTIVE,
        frequency=UpdateFrequency.QUARTERLY,
        parser_type="ods",
    ):
        source = DataSource(
            code=code,
            name=name or code,
            tier=tier,
            url=url,
            status=status,
            frequency=frequency,
            parser_type=parser_type,
        )
        db.session.add(source)
        db.session.commit()
        return source

    return _make_source


@pytest.fixture
def glasgow(app):
    """Local authority fixture with a population for per-capita metrics"""
    authority = LocalAuthority(
        ons_code="S12000049",
        name="Glasgow City",
        name_normalized="glasgow",
        region="Scotland",
        country="Scotland",
        population=620000,
        population_year=2023,
    )
    db.session.add(authority)
    db.session.commit()
    return authority


@pytest.fixture
def mock_http_session():
    """Patch ``requests.Session`` used by the fetcher"""
    with patch("dashboard_app.ingest.fetch.requests.Session") as mock_session_cls:
        yield mock_session_cls.return_value


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers and ensure testing environment"""
    os.environ["FLASK_ENV"] = "testing"

    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "unit: marks tests as unit tests")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers"""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.slow)
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
