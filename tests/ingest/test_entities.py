from __future__ import annotations

import pytest
from sqlalchemy import func, select

from dashboard_app.ingest.entities import EntityResolver, normalize_la_name, normalize_text, stub_code
from dashboard_app.models import LocalAuthority, Nationality, db


def _count(model, *criteria) -> int:
    return db.session.execute(select(func.count(model.id)).where(*criteria)).scalar_one()


def test_normalize_helpers():
    assert normalize_text("  Côte d'Ivoire ") == "cote divoire"
    assert normalize_la_name("Glasgow City") == "glasgow"
    assert normalize_la_name("Kent County Council") == "kent"
    assert stub_code("Newtown Borough Council") == "STUB_NEWTOWN_BOROUGH_COUN"


def test_resolves_exact_local_authority(glasgow):
    resolver = EntityResolver()

    by_name = resolver.resolve_local_authority("Glasgow City")
    by_normalized = EntityResolver().resolve_local_authority("GLASGOW")

    assert by_name.entity_id == glasgow.id
    assert by_name.created is False
    assert by_name.method == "exact"
    assert by_normalized.entity_id == glasgow.id


def test_resolves_near_miss_spelling_fuzzily(glasgow):
    resolution = EntityResolver().resolve_local_authority("Glasgw City")

    assert resolution.entity_id == glasgow.id
    assert resolution.method == "fuzzy"
    assert _count(LocalAuthority, LocalAuthority.is_stub.is_(True)) == 0


def test_fuzzy_threshold_is_configurable(glasgow):
    resolution = EntityResolver(fuzzy_min_score=100).resolve_local_authority("Glasgw City")

    assert resolution.entity_id != glasgow.id
    assert resolution.created is True


def test_invalid_fuzzy_threshold_rejected():
    with pytest.raises(ValueError):
        EntityResolver(fuzzy_min_score=0)


def test_unknown_local_authority_creates_one_stub_per_run():
    resolver = EntityResolver()

    first = resolver.resolve_local_authority("Newtown Borough Council", region="North West")
    second = resolver.resolve_local_authority("Newtown  Borough Council")

    assert first.created is True
    assert second.entity_id == first.entity_id
    assert second.created is False

    stub = db.session.get(LocalAuthority, first.entity_id)
    assert stub.is_stub is True
    assert stub.ons_code.startswith("STUB_NEWTOWN")
    assert stub.region == "North West"
    assert resolver.summary() == {"local_authority": [first.entity_id]}


def test_stub_is_reused_by_later_runs():
    first = EntityResolver().resolve_local_authority("Newtown Borough Council")
    db.session.commit()

    later = EntityResolver().resolve_local_authority("Newtown Borough Council")

    assert later.entity_id == first.entity_id
    assert later.created is False
    assert _count(LocalAuthority) == 1


def test_stub_codes_stay_unique_for_shared_prefixes():
    resolver = EntityResolver(fuzzy_min_score=100)

    first = resolver.resolve_local_authority("Abcdefghij Klmnopqrs North")
    second = resolver.resolve_local_authority("Abcdefghij Klmnopqrs South")

    codes = {db.session.get(LocalAuthority, first.entity_id).ons_code, db.session.get(LocalAuthority, second.entity_id).ons_code}
    assert len(codes) == 2


@pytest.mark.parametrize("label", [None, "", "   ", "Unknown"])
def test_placeholder_local_authority_labels_are_unresolved(label):
    resolution = EntityResolver().resolve_local_authority(label)

    assert resolution.resolved is False
    assert _count(LocalAuthority) == 0


def test_nationality_resolution_matches_or_mints_once():
    existing = Nationality(name="Afghanistan", name_normalized="afghanistan", iso3="AFG")
    db.session.add(existing)
    db.session.commit()
    resolver = EntityResolver()

    assert resolver.resolve_nationality("afghanistan").entity_id == existing.id

    stub = resolver.resolve_nationality("Eritrea")
    again = resolver.resolve_nationality("ERITREA")

    assert stub.created is True
    assert again.entity_id == stub.entity_id
    assert _count(Nationality, Nationality.is_stub.is_(True)) == 1


@pytest.mark.parametrize("label", ["Other", "unknown", None])
def test_placeholder_nationalities_are_unresolved(label):
    assert EntityResolver().resolve_nationality(label).resolved is False
