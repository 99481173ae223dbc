"""
Unit tests for the composite-key price matrix.
"""

from datetime import time

import pytest

from tollmatrix.pricing.price_matrix import PriceMatrix, resolve_owner
from tollmatrix.store.models import (
    AxleClass,
    DayOfWeek,
    DirectedTollPair,
    OwnerKind,
    PairOwner,
    PaymentType,
    PriceFact,
    PriceFactRequest,
    TimeOfDay,
    TollOwner,
    TollPoint,
)


class FakePriceStore:
    """In-memory owner and fact source that counts calls."""

    def __init__(self, points=(), pairs=(), facts=()):
        self.points = {p.id: p for p in points}
        self.pairs = {p.id: p for p in pairs}
        self.facts = list(facts)
        self.calls = []

    def fetch_points(self, ids):
        self.calls.append("fetch_points")
        return [self.points[i] for i in ids if i in self.points]

    def fetch_pairs(self, ids):
        self.calls.append("fetch_pairs")
        return [self.pairs[i] for i in ids if i in self.pairs]

    def find_pairs(self, state_calculator_id, keys):
        self.calls.append("find_pairs")
        wanted = set(keys)
        return {
            p.key: p for p in self.pairs.values()
            if p.state_calculator_id == state_calculator_id and p.key in wanted
        }

    def fetch_price_facts(self, owners):
        self.calls.append("fetch_price_facts")
        owners = list(owners)
        result = {owner: [] for owner in owners}
        for fact in self.facts:
            if fact.owner in result:
                result[fact.owner].append(fact)
        return result


@pytest.fixture
def toll():
    return TollPoint(id="t1", name="Plaza 1")


@pytest.fixture
def matrix():
    return PriceMatrix()


def test_new_price_creates_fact(matrix, toll):
    fact = matrix.set_price(toll, 2.5, PaymentType.CASH, AxleClass.AXLE_2)

    assert fact.owner == TollOwner("t1")
    assert fact.owner_kind is OwnerKind.TOLL
    assert fact.amount == 2.5
    assert fact.day_of_week_from is DayOfWeek.ANY
    assert matrix.facts_for(toll) == [fact]


def test_same_tuple_overwrites(matrix, toll):
    """Test upsert idempotence: one fact, second amount wins."""
    first = matrix.set_price(toll, 2.5, PaymentType.CASH, AxleClass.AXLE_2)
    second = matrix.set_price(toll, 3.0, PaymentType.CASH, AxleClass.AXLE_2)

    assert second is first
    assert len(matrix.facts_for(toll)) == 1
    assert matrix.facts_for(toll)[0].amount == 3.0


def test_different_dimensions_coexist(matrix, toll):
    """Test that each dimension of the tuple distinguishes facts."""
    matrix.set_price(toll, 1.0, PaymentType.CASH)
    matrix.set_price(toll, 1.0, PaymentType.EZPASS)
    matrix.set_price(toll, 1.0, PaymentType.CASH, AxleClass.AXLE_6)
    matrix.set_price(toll, 1.0, PaymentType.CASH, day_of_week_from=DayOfWeek.SATURDAY,
                     day_of_week_to=DayOfWeek.SUNDAY)
    matrix.set_price(toll, 1.0, PaymentType.CASH, time_of_day=TimeOfDay.NIGHT)

    assert len(matrix.facts_for(toll)) == 5


@pytest.mark.parametrize("amount", [0, -1.5, float("nan"), None, "abc"])
def test_invalid_amount_rejected(matrix, toll, amount):
    """Test that non-positive or non-numeric amounts create nothing."""
    assert matrix.set_price(toll, amount, PaymentType.CASH) is None
    assert matrix.facts_for(toll) == []
    assert matrix.rejected == 1
    assert matrix.pending_changes().is_empty()


def test_zero_amount_does_not_touch_existing(matrix, toll):
    matrix.set_price(toll, 4.0, PaymentType.CASH)

    assert matrix.set_price(toll, 0, PaymentType.CASH) is None
    assert matrix.facts_for(toll)[0].amount == 4.0


def test_refinements_preserved(matrix, toll):
    """Test that empty refinements never clear earlier values."""
    matrix.set_price(toll, 1.0, PaymentType.CASH, description="Peak",
                     time_from=time(6, 0), time_to=time(9, 0))

    fact = matrix.set_price(toll, 1.5, PaymentType.CASH, description="  ")

    assert fact.amount == 1.5
    assert fact.description == "Peak"
    assert fact.time_from == time(6, 0)
    assert fact.time_to == time(9, 0)

    fact = matrix.set_price(toll, 1.5, PaymentType.CASH, description="Overnight",
                            time_to=time(1, 30))
    assert fact.description == "Overnight"
    assert fact.time_from == time(6, 0)
    assert fact.time_to == time(1, 30)


def test_owner_variants_share_index(matrix, toll):
    """Test that a TollPoint and its TollOwner address the same facts."""
    matrix.set_price(toll, 1.0, PaymentType.CASH)
    matrix.set_price(TollOwner("t1"), 2.0, PaymentType.CASH)

    assert len(matrix.facts_for(toll)) == 1
    assert matrix.facts_for(TollOwner("t1"))[0].amount == 2.0


def test_pair_owner(matrix):
    pair = DirectedTollPair(id="pair-1", from_toll_id="a", to_toll_id="b", state_calculator_id="c")

    fact = matrix.set_price(pair, 7.0, PaymentType.IPASS)

    assert fact.owner == PairOwner("pair-1")
    assert matrix.facts_for(TollOwner("pair-1")) == []


@pytest.mark.parametrize("owner", [None, "t1", 42, {"id": "t1"}])
def test_bad_owner_rejected(matrix, owner):
    with pytest.raises(TypeError):
        matrix.set_price(owner, 1.0, PaymentType.CASH)


def test_resolve_owner():
    assert resolve_owner(TollPoint(id="x")) == TollOwner("x")
    assert resolve_owner(PairOwner("y")) == PairOwner("y")


def test_pending_changes_split_new_and_updated(toll):
    """Test change tracking against facts loaded from the store."""
    existing = PriceFact(owner_kind=OwnerKind.TOLL, owner_id="t1",
                         payment_type=PaymentType.CASH, amount=1.0)
    store = FakePriceStore(points=[toll], facts=[existing])
    matrix = PriceMatrix(store)

    updated = matrix.set_price(toll, 2.0, PaymentType.CASH)
    created = matrix.set_price(toll, 3.0, PaymentType.EZPASS)

    assert updated.id == existing.id
    changes = matrix.pending_changes()
    assert {f.id for f in changes.facts} == {existing.id, created.id}
    assert store.calls == ["fetch_price_facts"]

    matrix.mark_committed()
    assert not matrix.has_pending_changes


def test_apply_batch_skips_unknown_owners(toll):
    """Test batch upsert: one fetch per owner kind, unknown owners omitted."""
    pair = DirectedTollPair(id="pair-1", from_toll_id="t1", to_toll_id="t2", state_calculator_id="c")
    store = FakePriceStore(points=[toll], pairs=[pair])
    matrix = PriceMatrix(store)

    requests = {
        TollOwner("t1"): [
            PriceFactRequest(amount=1.0, payment_type=PaymentType.CASH),
            PriceFactRequest(amount=1.2, payment_type=PaymentType.CASH),
            PriceFactRequest(amount=0.9, payment_type=PaymentType.EZPASS),
            PriceFactRequest(amount=0, payment_type=PaymentType.IPASS),
        ],
        TollOwner("missing"): [PriceFactRequest(amount=5.0, payment_type=PaymentType.CASH)],
        PairOwner("pair-1"): [PriceFactRequest(amount=3.0, payment_type=PaymentType.CASH)],
    }

    result = matrix.apply_batch(requests)

    assert set(result.keys()) == {TollOwner("t1"), PairOwner("pair-1")}
    assert sorted(f.amount for f in result[TollOwner("t1")]) == [0.9, 1.2]
    assert [f.amount for f in result[PairOwner("pair-1")]] == [3.0]
    assert store.calls == ["fetch_points", "fetch_pairs", "fetch_price_facts"]


def test_apply_batch_requires_store():
    with pytest.raises(ValueError):
        PriceMatrix().apply_batch({})


def test_upsert_pair_prices_creates_and_reuses_pairs():
    """Test batch get-or-create of directed pairs."""
    existing = DirectedTollPair(id="old", from_toll_id="a", to_toll_id="b", state_calculator_id="calc")
    store = FakePriceStore(pairs=[existing])
    matrix = PriceMatrix(store)

    cash = PriceFactRequest(amount=4.0, payment_type=PaymentType.CASH)
    pairs = matrix.upsert_pair_prices(
        {("a", "b"): [cash], ("b", "a"): [cash], ("a", "a"): [cash], ("b", "c"): None},
        "calc",
    )

    assert set(pairs.keys()) == {("a", "b"), ("b", "a"), ("b", "c")}
    assert pairs[("a", "b")] is existing
    assert pairs[("b", "a")].state_calculator_id == "calc"

    changes = matrix.pending_changes()
    assert {p.key for p in changes.pairs} == {("b", "a"), ("b", "c")}
    assert len(changes.facts) == 2

    # Same keys again within the run reuse the pending pairs
    again = matrix.upsert_pair_prices({("b", "a"): [cash]}, "calc")
    assert again[("b", "a")] is pairs[("b", "a")]
    assert len(matrix.pending_changes().pairs) == 2


def test_get_price(matrix, toll):
    matrix.set_price(toll, 1.0, PaymentType.CASH, AxleClass.AXLE_3)

    assert matrix.get_price(toll, PaymentType.CASH, AxleClass.AXLE_3).amount == 1.0
    assert matrix.get_price(toll, PaymentType.CASH) is None
