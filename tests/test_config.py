"""
Tests for configuration helpers and production environment validation.
"""

import pytest

from config.base import _coerce_bool, _coerce_choice, _coerce_int
from config.validation import validate_and_exit, validate_environment


@pytest.mark.parametrize(
    "value,expected",
    [("1", True), ("Yes", True), (" on ", True), ("0", False), ("off", False), (True, True), ("maybe", None)],
)
def test_coerce_bool(value, expected):
    if expected is None:
        assert _coerce_bool(value, default=True) is True
        assert _coerce_bool(value) is False
    else:
        assert _coerce_bool(value) is expected


def test_coerce_int_respects_bounds():
    assert _coerce_int("250", 100, minimum=1, maximum=1000) == 250
    assert _coerce_int("0", 100, minimum=1) == 100
    assert _coerce_int("5000", 100, maximum=1000) == 100
    assert _coerce_int("lots", 100) == 100
    assert _coerce_int(None, 100) == 100
    assert _coerce_int(" ", 100) == 100


def test_coerce_choice():
    assert _coerce_choice("Nearest", ("exact", "nearest"), "exact") == "nearest"
    assert _coerce_choice("closest", ("exact", "nearest"), "exact") == "exact"
    assert _coerce_choice(None, ("exact", "nearest"), "exact") == "exact"


def test_testing_config_is_active(app):
    assert app.config["TESTING"] is True
    assert app.config["SQLALCHEMY_DATABASE_URI"] == "sqlite:///:memory:"
    assert app.config["INGEST_DELTA_LOOKBACK"] == "exact"


class TestValidateEnvironment:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "DATABASE_URL",
            "INGEST_DELTA_LOOKBACK",
            "INGEST_SOURCES_PATH",
            "INGEST_WORKER_ENABLED",
            "CELERY_BROKER_URL",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_non_production_skips_checks(self):
        assert validate_environment("development") == (True, [])
        assert validate_environment("testing") == (True, [])

    def test_production_requires_database_url(self):
        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert any("DATABASE_URL" in error for error in errors)

    def test_production_with_valid_settings(self, monkeypatch, tmp_path):
        sources = tmp_path / "sources.yaml"
        sources.write_text("sources: []\n")
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/ingest")
        monkeypatch.setenv("INGEST_DELTA_LOOKBACK", "nearest")
        monkeypatch.setenv("INGEST_SOURCES_PATH", str(sources))

        assert validate_environment("production") == (True, [])

    def test_production_rejects_bad_ingest_settings(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", "postgresql://localhost/ingest")
        monkeypatch.setenv("INGEST_DELTA_LOOKBACK", "fuzzy")
        monkeypatch.setenv("INGEST_SOURCES_PATH", str(tmp_path / "missing.yaml"))
        monkeypatch.setenv("INGEST_WORKER_ENABLED", "true")

        is_valid, errors = validate_environment("production")

        assert is_valid is False
        assert len(errors) == 3
        assert any("INGEST_DELTA_LOOKBACK" in error for error in errors)
        assert any("missing file" in error for error in errors)
        assert any("CELERY_BROKER_URL" in error for error in errors)

    def test_validate_and_exit(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            validate_and_exit("production")

        assert excinfo.value.code == 1
        assert "ENVIRONMENT VALIDATION FAILED" in capsys.readouterr().err
