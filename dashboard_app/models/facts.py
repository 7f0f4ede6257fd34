# dashboard_app/models/facts.py
"""
Normalized fact tables written by the ingest pipeline.

Every table declares its natural key as a unique constraint; the loader relies
on those constraints for ``ON CONFLICT`` handling, so the constraint column
lists here and the ``NATURAL_KEY`` attributes must stay in sync.
"""

from sqlalchemy import Index, UniqueConstraint

from .base import BaseModel, db


class AsylumSupportLA(BaseModel):
    """People in receipt of asylum support, per local authority snapshot (Asy_D11)"""

    __tablename__ = "asylum_support_la"
    NATURAL_KEY = ("snapshot_date", "la_id")

    id = db.Column(db.Integer, primary_key=True)
    snapshot_date = db.Column(db.Date, nullable=False)
    la_id = db.Column(db.Integer, db.ForeignKey("local_authorities.id"), nullable=False)
    la_name = db.Column(db.String(255), nullable=True)
    region = db.Column(db.String(100), nullable=True)

    total_supported = db.Column(db.Integer, nullable=False, default=0)
    section_95 = db.Column(db.Integer, nullable=True)  # asylum pending
    section_4 = db.Column(db.Integer, nullable=True)  # refused, destitute
    section_98 = db.Column(db.Integer, nullable=True)  # emergency
    dispersed = db.Column(db.Integer, nullable=True)
    initial_accommodation = db.Column(db.Integer, nullable=True)
    hotel = db.Column(db.Integer, nullable=True)
    subsistence_only = db.Column(db.Integer, nullable=True)
    main_applicants = db.Column(db.Integer, nullable=True)
    dependants = db.Column(db.Integer, nullable=True)

    # Derived from sibling rows at the same snapshot
    per_10k_population = db.Column(db.Float, nullable=True)
    national_share_pct = db.Column(db.Float, nullable=True)
    hotel_share_pct = db.Column(db.Float, nullable=True)
    qoq_change_pct = db.Column(db.Float, nullable=True)
    yoy_change_pct = db.Column(db.Float, nullable=True)

    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)

    local_authority = db.relationship("LocalAuthority", back_populates="support_facts")

    __table_args__ = (
        UniqueConstraint("snapshot_date", "la_id", name="uq_asylum_support_la_snapshot_la"),
        Index("idx_asla_region", "region"),
    )

    def __repr__(self):
        return f"<AsylumSupportLA {self.snapshot_date} la={self.la_id} total={self.total_supported}>"


class AsylumClaim(BaseModel):
    """Asylum claims by nationality per quarter (Asy_D01)"""

    __tablename__ = "asylum_claims"
    NATURAL_KEY = ("quarter_end", "nationality_name")

    id = db.Column(db.Integer, primary_key=True)
    quarter_end = db.Column(db.Date, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    quarter = db.Column(db.Integer, nullable=False)
    nationality_id = db.Column(db.Integer, db.ForeignKey("nationalities.id"), nullable=True, index=True)
    nationality_name = db.Column(db.String(255), nullable=False)
    claims_main_applicant = db.Column(db.Integer, nullable=True)
    claims_dependants = db.Column(db.Integer, nullable=True)
    claims_total = db.Column(db.Integer, nullable=True)
    claims_in_country = db.Column(db.Integer, nullable=True)
    claims_at_port = db.Column(db.Integer, nullable=True)
    national_share_pct = db.Column(db.Float, nullable=True)
    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)

    __table_args__ = (UniqueConstraint("quarter_end", "nationality_name", name="uq_asylum_claims_quarter_nationality"),)


class AsylumDecision(BaseModel):
    """Initial asylum decisions by nationality per quarter (Asy_D02)"""

    __tablename__ = "asylum_decisions"
    NATURAL_KEY = ("quarter_end", "nationality_name")

    id = db.Column(db.Integer, primary_key=True)
    quarter_end = db.Column(db.Date, nullable=False)
    year = db.Column(db.Integer, nullable=False)
    quarter = db.Column(db.Integer, nullable=False)
    nationality_id = db.Column(db.Integer, db.ForeignKey("nationalities.id"), nullable=True, index=True)
    nationality_name = db.Column(db.String(255), nullable=False)
    decisions_total = db.Column(db.Integer, nullable=True)
    granted_asylum = db.Column(db.Integer, nullable=True)
    granted_hp = db.Column(db.Integer, nullable=True)  # Humanitarian Protection
    granted_dl = db.Column(db.Integer, nullable=True)  # Discretionary Leave
    granted_uasc_leave = db.Column(db.Integer, nullable=True)
    grants_total = db.Column(db.Integer, nullable=True)
    refused = db.Column(db.Integer, nullable=True)
    withdrawn = db.Column(db.Integer, nullable=True)
    grant_rate_pct = db.Column(db.Float, nullable=True)
    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint("quarter_end", "nationality_name", name="uq_asylum_decisions_quarter_nationality"),
    )


class AsylumBacklog(BaseModel):
    """National count of people awaiting a decision (Asy_D03)"""

    __tablename__ = "asylum_backlog"
    NATURAL_KEY = ("snapshot_date",)

    id = db.Column(db.Integer, primary_key=True)
    snapshot_date = db.Column(db.Date, nullable=False, unique=True)
    total_awaiting = db.Column(db.Integer, nullable=False)
    awaiting_initial = db.Column(db.Integer, nullable=True)
    awaiting_further_review = db.Column(db.Integer, nullable=True)
    awaiting_less_6_months = db.Column(db.Integer, nullable=True)
    awaiting_6_12_months = db.Column(db.Integer, nullable=True)
    awaiting_1_3_years = db.Column(db.Integer, nullable=True)
    awaiting_3_plus_years = db.Column(db.Integer, nullable=True)
    legacy_cases = db.Column(db.Integer, nullable=True)  # pre-June 2022 claims
    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)


class SmallBoatArrivalDaily(BaseModel):
    """Small boat arrivals scraped from the daily publication"""

    __tablename__ = "small_boat_arrivals_daily"
    NATURAL_KEY = ("date",)

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, unique=True)
    arrivals = db.Column(db.Integer, nullable=False)
    boats = db.Column(db.Integer, nullable=True)
    people_per_boat = db.Column(db.Float, nullable=True)
    source_url = db.Column(db.Text, nullable=True)
    scraped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)


class SmallBoatArrivalWeekly(BaseModel):
    """Weekly small boat time series (Irr_D01)"""

    __tablename__ = "small_boat_arrivals_weekly"
    NATURAL_KEY = ("week_ending",)

    id = db.Column(db.Integer, primary_key=True)
    week_ending = db.Column(db.Date, nullable=False, unique=True)
    year = db.Column(db.Integer, nullable=False)
    week_number = db.Column(db.Integer, nullable=True)
    arrivals = db.Column(db.Integer, nullable=False)
    boats = db.Column(db.Integer, nullable=True)
    ytd_arrivals = db.Column(db.Integer, nullable=True)
    ytd_boats = db.Column(db.Integer, nullable=True)
    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)


class SmallBoatNationality(BaseModel):
    """Small boat arrivals by nationality per period (Irr_D02)"""

    __tablename__ = "small_boat_nationality"
    NATURAL_KEY = ("period_end", "period_type", "nationality_name")

    id = db.Column(db.Integer, primary_key=True)
    period_start = db.Column(db.Date, nullable=False)
    period_end = db.Column(db.Date, nullable=False)
    period_type = db.Column(db.String(20), nullable=False, default="year")  # year, quarter, month
    nationality_id = db.Column(db.Integer, db.ForeignKey("nationalities.id"), nullable=True, index=True)
    nationality_name = db.Column(db.String(255), nullable=False)
    arrivals = db.Column(db.Integer, nullable=False)
    share_pct = db.Column(db.Float, nullable=True)
    ingest_run_id = db.Column(db.Integer, db.ForeignKey("ingest_runs.id"), nullable=True, index=True)

    __table_args__ = (
        UniqueConstraint(
            "period_end",
            "period_type",
            "nationality_name",
            name="uq_small_boat_nationality_period_name",
        ),
        Index("idx_sbn_period", "period_end"),
    )
