"""Source adapters, one per upstream publication."""

from .asylum_backlog import AsylumBacklogIngestor
from .asylum_claims import AsylumClaimsIngestor
from .asylum_decisions import AsylumDecisionsIngestor
from .asylum_support_la import AsylumSupportLAIngestor
from .small_boats_daily import SmallBoatsDailyIngestor
from .small_boats_weekly import SmallBoatsWeeklyIngestor

__all__ = [
    "AsylumBacklogIngestor",
    "AsylumClaimsIngestor",
    "AsylumDecisionsIngestor",
    "AsylumSupportLAIngestor",
    "SmallBoatsDailyIngestor",
    "SmallBoatsWeeklyIngestor",
]
