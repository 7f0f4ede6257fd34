# config/validation.py

"""
Environment variable validation for the ingest service.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

from .base import DELTA_LOOKBACK_CHOICES


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        errors.append("DATABASE_URL is required in production. Set it to your PostgreSQL connection string.")

    lookback = os.environ.get("INGEST_DELTA_LOOKBACK")
    if lookback is not None and lookback.strip().lower() not in DELTA_LOOKBACK_CHOICES:
        errors.append(
            f"INGEST_DELTA_LOOKBACK must be one of {', '.join(DELTA_LOOKBACK_CHOICES)} (got '{lookback}')."
        )

    sources_path = os.environ.get("INGEST_SOURCES_PATH")
    if sources_path and not os.path.exists(sources_path):
        errors.append(f"INGEST_SOURCES_PATH points to a missing file: {sources_path}")

    if os.environ.get("INGEST_WORKER_ENABLED", "false").lower() == "true":
        if not os.environ.get("CELERY_BROKER_URL"):
            errors.append("CELERY_BROKER_URL is required when INGEST_WORKER_ENABLED=true in production")

    is_valid = len(errors) == 0
    return is_valid, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
