"""
Composite-key price upsert.

A price fact is identified within its owner (a toll point or a directed toll
pair) by the dimension tuple (payment_type, axle_class, day_of_week_from,
day_of_week_to, time_of_day). Setting a price for a tuple that already exists
overwrites it in place; a new tuple adds a fact. Facts are held in an
owner-keyed index loaded per run, and every new or changed fact is tracked
so a single store commit can persist them.
"""

import logging
import math
from datetime import time
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Set, Tuple, Union

from ..store.models import (
    AxleClass,
    ChangeSet,
    DayOfWeek,
    DirectedTollPair,
    OwnerKind,
    PairOwner,
    PaymentType,
    PriceFact,
    PriceFactRequest,
    PriceOwner,
    TimeOfDay,
    TollOwner,
    TollPoint,
)

logger = logging.getLogger(__name__)

PairKey = Tuple[str, str]
OwnerLike = Union[TollPoint, DirectedTollPair, TollOwner, PairOwner]


class PriceSource(Protocol):
    def fetch_points(self, ids: Iterable[str]) -> List[TollPoint]:
        ...

    def fetch_pairs(self, ids: Iterable[str]) -> List[DirectedTollPair]:
        ...

    def find_pairs(
        self, state_calculator_id: str, keys: Iterable[PairKey]
    ) -> Dict[PairKey, DirectedTollPair]:
        ...

    def fetch_price_facts(self, owners: Iterable[PriceOwner]) -> Dict[PriceOwner, List[PriceFact]]:
        ...


def resolve_owner(owner: OwnerLike) -> PriceOwner:
    """Turn a toll point, pair or owner variant into a PriceOwner.

    Raises:
        TypeError: For anything else
    """
    if isinstance(owner, (TollOwner, PairOwner)):
        return owner
    if isinstance(owner, TollPoint):
        return TollOwner(owner.id)
    if isinstance(owner, DirectedTollPair):
        return PairOwner(owner.id)
    raise TypeError(
        f"Price owner must be a TollPoint or DirectedTollPair, got {type(owner).__name__}"
    )


def _is_valid_amount(amount) -> bool:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return False
    return not math.isnan(value) and value > 0


class PriceMatrix:
    """Owner-keyed price index with change tracking."""

    def __init__(self, store: Optional[PriceSource] = None):
        """Initialize price matrix.

        Args:
            store: Source of owners and existing facts. Only needed for
                apply_batch, upsert_pair_prices and lazy loading of owners
                that were not loaded explicitly.
        """
        self.store = store
        self._index: Dict[PriceOwner, List[PriceFact]] = {}
        self._new_facts: Dict[str, PriceFact] = {}
        self._changed_facts: Dict[str, PriceFact] = {}
        self._new_pairs: Dict[Tuple[str, str, str], DirectedTollPair] = {}
        self.rejected = 0

    # ------------------------------------------------------------------
    # Index
    # ------------------------------------------------------------------

    def load(self, facts_by_owner: Mapping[PriceOwner, List[PriceFact]]) -> None:
        """Seed the index with facts already persisted for some owners."""
        for owner, facts in facts_by_owner.items():
            self._index[owner] = list(facts)

    def facts_for(self, owner: OwnerLike) -> List[PriceFact]:
        """Facts currently known for an owner."""
        return list(self._index.get(resolve_owner(owner), []))

    def _ensure_loaded(self, owners: Iterable[PriceOwner]) -> None:
        missing = [owner for owner in owners if owner not in self._index]
        if not missing:
            return
        if self.store is None:
            for owner in missing:
                self._index[owner] = []
            return
        self.load(self.store.fetch_price_facts(missing))
        for owner in missing:
            self._index.setdefault(owner, [])

    def get_price(
        self,
        owner: OwnerLike,
        payment_type: PaymentType,
        axle_class: AxleClass = AxleClass.AXLE_5,
        day_of_week_from: DayOfWeek = DayOfWeek.ANY,
        day_of_week_to: DayOfWeek = DayOfWeek.ANY,
        time_of_day: TimeOfDay = TimeOfDay.ANY
    ) -> Optional[PriceFact]:
        """Find the fact for an exact dimension tuple, if any."""
        owner = resolve_owner(owner)
        self._ensure_loaded([owner])
        dims = (
            PaymentType(payment_type),
            AxleClass(axle_class),
            DayOfWeek(day_of_week_from),
            DayOfWeek(day_of_week_to),
            TimeOfDay(time_of_day),
        )
        for fact in self._index[owner]:
            if fact.dimensions == dims:
                return fact
        return None

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    def set_price(
        self,
        owner: OwnerLike,
        amount: float,
        payment_type: PaymentType,
        axle_class: AxleClass = AxleClass.AXLE_5,
        day_of_week_from: DayOfWeek = DayOfWeek.ANY,
        day_of_week_to: DayOfWeek = DayOfWeek.ANY,
        time_of_day: TimeOfDay = TimeOfDay.ANY,
        description: Optional[str] = None,
        time_from: Optional[time] = None,
        time_to: Optional[time] = None
    ) -> Optional[PriceFact]:
        """Create or overwrite the price for one dimension tuple.

        On an existing tuple the amount is always replaced; description,
        time_from and time_to only when the new value is non-empty, so
        refinements set by an earlier source survive.

        Args:
            owner: TollPoint, DirectedTollPair, TollOwner or PairOwner
            amount: Price; must be positive
            payment_type: Payment method
            axle_class: Vehicle class
            day_of_week_from: Start of day range
            day_of_week_to: End of day range
            time_of_day: Time-of-day band
            description: Free text
            time_from: Start clock time of the price window
            time_to: End clock time, may wrap past midnight

        Returns:
            The created or updated PriceFact, or None when the amount was
            rejected (non-positive or not a number)

        Raises:
            TypeError: If owner is not a toll point or directed pair
        """
        owner = resolve_owner(owner)

        if not _is_valid_amount(amount):
            self.rejected += 1
            logger.warning(
                f"Rejected price {amount!r} for {owner.kind.value} {owner.id}: "
                f"amount must be positive"
            )
            return None

        existing = self.get_price(
            owner, payment_type, axle_class, day_of_week_from, day_of_week_to, time_of_day
        )

        if existing is not None:
            existing.amount = float(amount)
            if description and description.strip():
                existing.description = description
            if time_from is not None:
                existing.time_from = time_from
            if time_to is not None:
                existing.time_to = time_to
            if existing.id not in self._new_facts:
                self._changed_facts[existing.id] = existing
            return existing

        fact = PriceFact(
            owner_kind=owner.kind,
            owner_id=owner.id,
            payment_type=PaymentType(payment_type),
            axle_class=AxleClass(axle_class),
            day_of_week_from=DayOfWeek(day_of_week_from),
            day_of_week_to=DayOfWeek(day_of_week_to),
            time_of_day=TimeOfDay(time_of_day),
            time_from=time_from,
            time_to=time_to,
            amount=float(amount),
            description=description if description and description.strip() else None,
        )
        self._index[owner].append(fact)
        self._new_facts[fact.id] = fact
        return fact

    def apply_batch(
        self,
        requests: Mapping[PriceOwner, List[PriceFactRequest]]
    ) -> Dict[PriceOwner, List[PriceFact]]:
        """Apply many price requests with one owner fetch per kind.

        Owners that do not exist in the store are skipped and left out of
        the result.

        Args:
            requests: Owner -> price requests for that owner

        Returns:
            Owner -> facts created or updated by its requests
        """
        if self.store is None:
            raise ValueError("apply_batch requires a store")

        owners = [resolve_owner(owner) for owner in requests]
        toll_ids = [o.id for o in owners if o.kind is OwnerKind.TOLL]
        pair_ids = [o.id for o in owners if o.kind is OwnerKind.PAIR]

        known: Set[PriceOwner] = set()
        if toll_ids:
            known.update(TollOwner(p.id) for p in self.store.fetch_points(toll_ids))
        if pair_ids:
            known.update(PairOwner(p.id) for p in self.store.fetch_pairs(pair_ids))
        known.update(PairOwner(p.id) for p in self._new_pairs.values())

        self._ensure_loaded(o for o in owners if o in known)

        results: Dict[PriceOwner, List[PriceFact]] = {}
        skipped = 0
        for owner, owner_requests in requests.items():
            owner = resolve_owner(owner)
            if owner not in known:
                skipped += 1
                continue
            facts = results.setdefault(owner, [])
            for request in owner_requests or []:
                fact = self.set_price(owner, **request.model_dump())
                if fact is not None and all(f is not fact for f in facts):
                    facts.append(fact)

        if skipped:
            logger.info(f"Skipped {skipped} price owners not found in store")
        return results

    def upsert_pair_prices(
        self,
        pair_requests: Mapping[PairKey, Optional[List[PriceFactRequest]]],
        state_calculator_id: str
    ) -> Dict[PairKey, DirectedTollPair]:
        """Get or create directed pairs and apply their prices.

        Existing pairs for the requested keys are found with one store
        lookup; the rest are created. Self pairs are skipped.

        Args:
            pair_requests: (from_toll_id, to_toll_id) -> price requests
            state_calculator_id: Calculator owning the pairs

        Returns:
            (from_toll_id, to_toll_id) -> DirectedTollPair
        """
        keys = list(dict.fromkeys(k for k in pair_requests if k[0] != k[1]))
        if not keys:
            return {}

        pairs: Dict[PairKey, DirectedTollPair] = {}
        for key in keys:
            pending = self._new_pairs.get((key[0], key[1], state_calculator_id))
            if pending is not None:
                pairs[key] = pending

        lookup = [k for k in keys if k not in pairs]
        if lookup and self.store is not None:
            pairs.update(self.store.find_pairs(state_calculator_id, lookup))

        self._ensure_loaded(pair.owner for pair in pairs.values())

        for key in keys:
            if key in pairs:
                continue
            pair = DirectedTollPair(
                from_toll_id=key[0],
                to_toll_id=key[1],
                state_calculator_id=state_calculator_id,
            )
            self._new_pairs[(key[0], key[1], state_calculator_id)] = pair
            self._index[pair.owner] = []
            pairs[key] = pair

        for key in keys:
            for request in pair_requests.get(key) or []:
                self.set_price(pairs[key], **request.model_dump())

        return pairs

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    def pending_changes(self) -> ChangeSet:
        """New pairs plus new and changed facts, ready for commit."""
        return ChangeSet(
            pairs=list(self._new_pairs.values()),
            facts=list(self._new_facts.values()) + list(self._changed_facts.values()),
        )

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._new_pairs or self._new_facts or self._changed_facts)

    def mark_committed(self, pair_id_remap: Optional[Mapping[str, str]] = None) -> None:
        """Clear change tracking after a commit.

        Args:
            pair_id_remap: Pair ids the store replaced with an existing row's
                id; index entries are moved to the surviving id.
        """
        for old_id, new_id in (pair_id_remap or {}).items():
            facts = self._index.pop(PairOwner(old_id), [])
            for fact in facts:
                fact.owner_id = new_id
            self._index.setdefault(PairOwner(new_id), []).extend(facts)

        self._new_facts.clear()
        self._changed_facts.clear()
        self._new_pairs.clear()
