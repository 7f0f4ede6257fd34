# dashboard_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .facts import (
    AsylumBacklog,
    AsylumClaim,
    AsylumDecision,
    AsylumSupportLA,
    SmallBoatArrivalDaily,
    SmallBoatArrivalWeekly,
    SmallBoatNationality,
)
from .ingest import (
    DataSource,
    DataSourceStatus,
    IngestRun,
    IngestRunStatus,
    UpdateFrequency,
)
from .reference import LocalAuthority, Nationality

__all__ = [
    "db",
    "BaseModel",
    # Reference entities
    "LocalAuthority",
    "Nationality",
    # Ingest ledger
    "DataSource",
    "DataSourceStatus",
    "UpdateFrequency",
    "IngestRun",
    "IngestRunStatus",
    # Facts
    "AsylumSupportLA",
    "AsylumClaim",
    "AsylumDecision",
    "AsylumBacklog",
    "SmallBoatArrivalDaily",
    "SmallBoatArrivalWeekly",
    "SmallBoatNationality",
]
