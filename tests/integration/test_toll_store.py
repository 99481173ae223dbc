"""
Integration tests for the SQLite toll store.
"""

import sqlite3
from datetime import time

import pytest
from shapely.geometry import Polygon

from tollmatrix.exceptions import InvalidInputError, SchemaVersionError, StoreConflictError
from tollmatrix.geo import bounding_box
from tollmatrix.store.migrations import get_current_version, init_database
from tollmatrix.store.toll_store import TollStore
from tollmatrix.store.models import (
    ChangeSet,
    DirectedTollPair,
    OwnerKind,
    PairOwner,
    PaymentMethod,
    PaymentType,
    PriceFact,
    TollOwner,
    TollPoint,
)


@pytest.fixture
def seeded_store(store, kansas_points):
    outside = TollPoint(id="ny-001", name="Tappan Zee", latitude=41.07, longitude=-73.88)
    unlocated = TollPoint(id="ks-999", name="Emporia Old")
    store.add_points(kansas_points + [outside, unlocated])
    return store


def pair_fact(pair_id, amount, payment_type=PaymentType.CASH):
    return PriceFact(owner_kind=OwnerKind.PAIR, owner_id=pair_id,
                     payment_type=payment_type, amount=amount)


def toll_fact(toll_id, amount, payment_type=PaymentType.CASH):
    return PriceFact(owner_kind=OwnerKind.TOLL, owner_id=toll_id,
                     payment_type=payment_type, amount=amount)


def test_init_database(tmp_path):
    version = init_database(tmp_path / "nested" / "tolls.db")
    assert version == 1

    conn = sqlite3.connect(tmp_path / "nested" / "tolls.db")
    try:
        assert get_current_version(conn) == 1
    finally:
        conn.close()


def test_newer_schema_is_refused(tmp_path):
    db_path = tmp_path / "future.db"
    init_database(db_path)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("INSERT INTO schema_version (version) VALUES (2)")
        conn.commit()
    finally:
        conn.close()

    with pytest.raises(SchemaVersionError, match="schema v2"):
        TollStore(db_path)


def test_add_and_fetch_points(store):
    """Test round trip of all point fields."""
    point = TollPoint(
        id="p1", name="Plaza", key="plaza", number="12",
        latitude=38.5, longitude=-97.0, search_radius_m=120.5,
        website_url="https://example.org",
        payment_method=PaymentMethod(tag=True, app=True),
    )
    assert store.add_points([point]) == 1

    fetched = store.fetch_points(["p1", "unknown"])

    assert len(fetched) == 1
    assert fetched[0] == point


def test_region_fetch_uses_containment(seeded_store, kansas_region):
    """Test that only located points strictly inside the polygon are returned."""
    points = seeded_store.fetch_points_in_region(kansas_region)

    assert [p.id for p in points] == ["ks-001", "ks-002", "ks-003", "ks-004", "ks-005"]


def test_region_fetch_non_rectangular(seeded_store):
    """Test that bbox candidates outside a triangle are dropped."""
    triangle = Polygon([(-98.0, 38.0), (-96.0, 38.0), (-96.0, 39.5), (-98.0, 38.0)])

    ids = [p.id for p in seeded_store.fetch_points_in_region(triangle)]

    # East of the diagonal only
    assert "ks-003" in ids
    assert "ks-005" not in ids


def test_region_fetch_rejects_bad_region(store):
    with pytest.raises(InvalidInputError):
        store.fetch_points_in_region(None)


def test_state_calculator_get_or_create(store):
    first = store.get_or_create_state_calculator("ks", "Kansas Turnpike")
    second = store.get_or_create_state_calculator("KS", "Other name")

    assert first.id == second.id
    assert second.name == "Kansas Turnpike"
    assert store.get_state_calculator("KS").id == first.id

    with pytest.raises(InvalidInputError):
        store.get_or_create_state_calculator("  ", "x")


def test_commit_pairs_and_facts(seeded_store):
    calc = seeded_store.get_or_create_state_calculator("KS", "Kansas")
    pair = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ks-002", state_calculator_id=calc.id)
    changes = ChangeSet(
        pairs=[pair],
        facts=[pair_fact(pair.id, 3.5), toll_fact("ks-001", 1.0)],
    )

    result = seeded_store.commit(changes)

    assert result.pairs_created == 1
    assert result.facts_created == 2
    assert result.failures == []

    found = seeded_store.find_pairs(calc.id, [("ks-001", "ks-002"), ("ks-002", "ks-001")])
    assert list(found.keys()) == [("ks-001", "ks-002")]

    facts = seeded_store.fetch_price_facts([PairOwner(pair.id), TollOwner("ks-001"), TollOwner("ks-003")])
    assert [f.amount for f in facts[PairOwner(pair.id)]] == [3.5]
    assert [f.amount for f in facts[TollOwner("ks-001")]] == [1.0]
    assert facts[TollOwner("ks-003")] == []


def test_pair_insert_is_idempotent(seeded_store):
    """Test that a second run creating the same pair reuses the stored row."""
    calc = seeded_store.get_or_create_state_calculator("KS", "Kansas")

    first = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ks-002", state_calculator_id=calc.id)
    seeded_store.commit(ChangeSet(pairs=[first], facts=[pair_fact(first.id, 3.5)]))

    # A concurrent run that did not see the first pair
    second = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ks-002", state_calculator_id=calc.id)
    provisional_id = second.id
    fact = pair_fact(provisional_id, 4.0)
    result = seeded_store.commit(ChangeSet(pairs=[second], facts=[fact]))

    assert result.pairs_created == 0
    assert result.pairs_existing == 1
    assert result.pair_id_remap == {provisional_id: first.id}
    assert result.facts_updated == 1
    assert second.id == first.id
    assert fact.owner_id == first.id

    stats = seeded_store.get_statistics()
    assert stats["total_pairs"] == 1
    facts = seeded_store.fetch_price_facts([PairOwner(first.id)])[PairOwner(first.id)]
    assert [f.amount for f in facts] == [4.0]


def test_fact_upsert_keeps_single_row(seeded_store):
    """Test that a fact with new id but same owner and dimensions updates in place."""
    seeded_store.commit(ChangeSet(facts=[toll_fact("ks-001", 1.0)]))
    replacement = toll_fact("ks-001", 2.0)
    replacement.time_from = time(22, 0)
    replacement.time_to = time(6, 0)

    result = seeded_store.commit(ChangeSet(facts=[replacement]))

    assert result.facts_updated == 1
    facts = seeded_store.fetch_price_facts([TollOwner("ks-001")])[TollOwner("ks-001")]
    assert len(facts) == 1
    assert facts[0].amount == 2.0
    assert facts[0].time_from == time(22, 0)
    assert facts[0].time_to == time(6, 0)


def test_failed_pair_does_not_abort_commit(seeded_store):
    """Test that a pair violating a constraint fails alone."""
    calc = seeded_store.get_or_create_state_calculator("KS", "Kansas")
    good = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ks-002", state_calculator_id=calc.id)
    # Unknown toll id violates the foreign key
    bad = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ghost", state_calculator_id=calc.id)

    result = seeded_store.commit(ChangeSet(
        pairs=[good, bad],
        facts=[pair_fact(good.id, 1.0), pair_fact(bad.id, 2.0)],
    ))

    assert result.pairs_created == 1
    assert result.facts_created == 1
    assert len(result.failures) == 1
    assert "ghost" in result.failures[0]
    assert seeded_store.get_statistics()["total_pairs"] == 1


def test_point_update_conflict_raises(store):
    """Test that an invalid point write aborts the whole commit."""
    point = TollPoint(id="p1", name="Plaza", latitude=38.5, longitude=-97.0)
    store.add_points([point])

    point.state_calculator_id = "no-such-calculator"
    with pytest.raises(StoreConflictError):
        store.commit(ChangeSet(points=[point], facts=[toll_fact("p1", 1.0)]))

    assert store.fetch_price_facts([TollOwner("p1")])[TollOwner("p1")] == []


def test_region_delete(seeded_store, kansas_region):
    """Test that region delete removes inside pairs, their facts and toll facts."""
    calc = seeded_store.get_or_create_state_calculator("KS", "Kansas")
    inside = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ks-002", state_calculator_id=calc.id)
    crossing = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ny-001", state_calculator_id=calc.id)
    seeded_store.commit(ChangeSet(
        pairs=[inside, crossing],
        facts=[
            pair_fact(inside.id, 1.0),
            pair_fact(inside.id, 0.8, PaymentType.EZPASS),
            pair_fact(crossing.id, 9.0),
            toll_fact("ks-003", 2.0),
            toll_fact("ny-001", 5.0),
        ],
    ))

    preview = seeded_store.preview_region_prices(kansas_region)
    assert preview == {"tolls_in_region": 5, "pairs": 1, "toll_prices": 1, "pair_prices": 2}

    counts = seeded_store.delete_region_prices(kansas_region)

    assert counts == {"pairs": 1, "toll_prices": 1, "pair_prices": 2}
    remaining = seeded_store.fetch_price_facts([
        PairOwner(crossing.id), TollOwner("ny-001"), PairOwner(inside.id),
    ])
    assert len(remaining[PairOwner(crossing.id)]) == 1
    assert len(remaining[TollOwner("ny-001")]) == 1
    assert remaining[PairOwner(inside.id)] == []
    assert seeded_store.fetch_pairs([inside.id, crossing.id])[0].id == crossing.id


def test_import_history(store):
    store.record_import_run("run-1", "KS", "ks_prices")
    store.update_import_run("run-1", "completed", {"processed": 3})

    record = store.get_import_run("run-1")

    assert record["status"] == "completed"
    assert record["results"] == {"processed": 3}
    assert store.get_statistics()["import_runs"] == 1


def test_statistics(seeded_store):
    stats = seeded_store.get_statistics()

    assert stats["total_tolls"] == 7
    assert stats["tolls_with_radius"] == 0
    assert stats["total_pairs"] == 0
    assert stats["prices_by_owner"] == {}


def test_bounding_box_region_excludes_boundary(store):
    """Test that a point exactly on the region edge is not contained."""
    store.add_points([TollPoint(id="edge", name="Edge", latitude=38.0, longitude=-97.0)])

    assert store.fetch_points_in_region(bounding_box(38.0, -98.0, 39.0, -96.0)) == []


def test_commit_error_writes_nothing(seeded_store, monkeypatch):
    """Test that an unexpected error mid-commit rolls back pairs already written."""
    calc = seeded_store.get_or_create_state_calculator("KS", "Kansas")
    pair = DirectedTollPair(from_toll_id="ks-001", to_toll_id="ks-002", state_calculator_id=calc.id)

    def locked(conn, fact):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(TollStore, "_write_fact", staticmethod(locked))

    with pytest.raises(sqlite3.OperationalError):
        seeded_store.commit(ChangeSet(pairs=[pair], facts=[pair_fact(pair.id, 1.0)]))

    assert seeded_store.find_pairs(calc.id, [("ks-001", "ks-002")]) == {}
    assert seeded_store.get_statistics()["total_pairs"] == 0
