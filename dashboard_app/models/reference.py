# dashboard_app/models/reference.py

from .base import BaseModel, db


class LocalAuthority(BaseModel):
    """Administrative region that asylum support facts are keyed to"""

    __tablename__ = "local_authorities"

    id = db.Column(db.Integer, primary_key=True)
    ons_code = db.Column(db.String(32), unique=True, nullable=False)  # E09000001, or STUB_* when minted by ingest
    name = db.Column(db.String(255), nullable=False, index=True)
    name_normalized = db.Column(db.String(255), nullable=True, index=True)
    region = db.Column(db.String(100), nullable=True, index=True)
    country = db.Column(db.String(50), nullable=True)
    population = db.Column(db.Integer, nullable=True)  # latest ONS mid-year estimate
    population_year = db.Column(db.Integer, nullable=True)
    is_stub = db.Column(db.Boolean, default=False, nullable=False)

    support_facts = db.relationship("AsylumSupportLA", back_populates="local_authority")

    def __repr__(self):
        return f"<LocalAuthority {self.ons_code} {self.name}>"


class Nationality(BaseModel):
    """Nationality reference entity"""

    __tablename__ = "nationalities"

    id = db.Column(db.Integer, primary_key=True)
    iso3 = db.Column(db.String(3), unique=True, nullable=True)
    iso2 = db.Column(db.String(2), nullable=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    name_normalized = db.Column(db.String(255), nullable=True, index=True)
    region = db.Column(db.String(100), nullable=True)  # Middle East, Sub-Saharan Africa, etc.
    is_safe_country = db.Column(db.Boolean, default=False, nullable=False)
    is_stub = db.Column(db.Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<Nationality {self.name}>"
