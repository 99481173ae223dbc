"""
Pydantic models for toll registry records.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import time
from enum import Enum, IntEnum
from typing import Optional, List, Tuple, Union, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..geo import is_valid_lat_lon


def new_id() -> str:
    """Generate a fresh opaque identifier."""
    return str(uuid.uuid4())


class PaymentType(IntEnum):
    """Payment method a price applies to."""
    UNKNOWN = 0
    IPASS = 1
    PAY_ONLINE = 2
    CASH = 3
    EZPASS = 4


class AxleClass(IntEnum):
    """Vehicle axle classification."""
    UNKNOWN = 0
    AXLE_1 = 1
    AXLE_2 = 2
    AXLE_3 = 3
    AXLE_4 = 4
    AXLE_5 = 5
    AXLE_6 = 6
    AXLE_7 = 7
    AXLE_8 = 8
    AXLE_9 = 9


class DayOfWeek(IntEnum):
    """Day-of-week bound of a price range."""
    ANY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6
    SUNDAY = 7


class TimeOfDay(IntEnum):
    """Coarse time-of-day band of a price."""
    ANY = 0
    DAY = 1
    NIGHT = 2


class OwnerKind(str, Enum):
    """Kind of record a price fact hangs off."""
    TOLL = "toll"
    PAIR = "pair"


@dataclass(frozen=True)
class TollOwner:
    """Price owner: a single toll point."""
    id: str
    kind: OwnerKind = field(default=OwnerKind.TOLL, init=False)


@dataclass(frozen=True)
class PairOwner:
    """Price owner: a directed toll pair."""
    id: str
    kind: OwnerKind = field(default=OwnerKind.PAIR, init=False)


PriceOwner = Union[TollOwner, PairOwner]


def make_owner(kind: Union[OwnerKind, str], owner_id: str) -> PriceOwner:
    """Build the owner variant for a stored (kind, id) pair."""
    kind = OwnerKind(kind)
    if kind is OwnerKind.TOLL:
        return TollOwner(owner_id)
    return PairOwner(owner_id)


class PaymentMethod(BaseModel):
    """Payment options accepted at a plaza."""
    tag: bool = False
    no_plate: bool = False
    cash: bool = False
    no_card: bool = False
    app: bool = False


class TollPoint(BaseModel):
    """A physical toll plaza in the registry."""

    id: str = Field(default_factory=new_id)
    name: Optional[str] = None
    key: Optional[str] = None
    number: Optional[str] = None

    # Location may be missing or out of range in imported data
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    search_radius_m: float = Field(0.0, ge=0)

    state_calculator_id: Optional[str] = None
    website_url: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None

    @property
    def has_valid_location(self) -> bool:
        return is_valid_lat_lon(self.latitude, self.longitude)

    @property
    def owner(self) -> TollOwner:
        return TollOwner(self.id)

    @classmethod
    def from_db_row(cls, row: Any) -> "TollPoint":
        """Create TollPoint from database row.

        Args:
            row: sqlite3.Row object

        Returns:
            TollPoint instance
        """
        return cls(
            id=row["id"],
            name=row["name"],
            key=row["key"],
            number=row["number"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            search_radius_m=row["search_radius_m"] or 0.0,
            state_calculator_id=row["state_calculator_id"],
            website_url=row["website_url"],
            payment_method=(
                PaymentMethod(**json.loads(row["payment_method_json"]))
                if row["payment_method_json"] else None
            ),
        )


class StateCalculator(BaseModel):
    """Per-state pricing authority that owns directed toll pairs."""

    id: str = Field(default_factory=new_id)
    name: str
    state_code: str

    @classmethod
    def from_db_row(cls, row: Any) -> "StateCalculator":
        return cls(id=row["id"], name=row["name"], state_code=row["state_code"])


class DirectedTollPair(BaseModel):
    """Ordered (entry, exit) toll combination priced as a route segment."""

    id: str = Field(default_factory=new_id)
    from_toll_id: str
    to_toll_id: str
    state_calculator_id: str

    @model_validator(mode="after")
    def _check_not_self_pair(self) -> "DirectedTollPair":
        if self.from_toll_id == self.to_toll_id:
            raise ValueError("from_toll_id and to_toll_id cannot be the same")
        return self

    @property
    def key(self) -> Tuple[str, str]:
        return (self.from_toll_id, self.to_toll_id)

    @property
    def owner(self) -> PairOwner:
        return PairOwner(self.id)

    @classmethod
    def from_db_row(cls, row: Any) -> "DirectedTollPair":
        return cls(
            id=row["id"],
            from_toll_id=row["from_toll_id"],
            to_toll_id=row["to_toll_id"],
            state_calculator_id=row["state_calculator_id"],
        )


DimensionTuple = Tuple[PaymentType, AxleClass, DayOfWeek, DayOfWeek, TimeOfDay]


class PriceFact(BaseModel):
    """One amount for one combination of price dimensions on one owner."""

    id: str = Field(default_factory=new_id)

    # Exactly one owner, carried as (kind, id)
    owner_kind: OwnerKind
    owner_id: str

    payment_type: PaymentType
    axle_class: AxleClass = AxleClass.AXLE_5
    day_of_week_from: DayOfWeek = DayOfWeek.ANY
    day_of_week_to: DayOfWeek = DayOfWeek.ANY
    time_of_day: TimeOfDay = TimeOfDay.ANY

    time_from: Optional[time] = None
    time_to: Optional[time] = None
    amount: float = Field(..., gt=0)
    description: Optional[str] = None

    @property
    def owner(self) -> PriceOwner:
        return make_owner(self.owner_kind, self.owner_id)

    @property
    def dimensions(self) -> DimensionTuple:
        return (
            self.payment_type,
            self.axle_class,
            self.day_of_week_from,
            self.day_of_week_to,
            self.time_of_day,
        )

    @classmethod
    def from_db_row(cls, row: Any) -> "PriceFact":
        """Create PriceFact from database row.

        Args:
            row: sqlite3.Row object

        Returns:
            PriceFact instance
        """
        return cls(
            id=row["id"],
            owner_kind=OwnerKind(row["owner_kind"]),
            owner_id=row["owner_id"],
            payment_type=PaymentType(row["payment_type"]),
            axle_class=AxleClass(row["axle_class"]),
            day_of_week_from=DayOfWeek(row["day_of_week_from"]),
            day_of_week_to=DayOfWeek(row["day_of_week_to"]),
            time_of_day=TimeOfDay(row["time_of_day"]),
            time_from=time.fromisoformat(row["time_from"]) if row["time_from"] else None,
            time_to=time.fromisoformat(row["time_to"]) if row["time_to"] else None,
            amount=row["amount"],
            description=row["description"],
        )


class PriceFactRequest(BaseModel):
    """Caller-supplied price to upsert; amount is checked at the point of use."""

    amount: float
    payment_type: PaymentType
    axle_class: AxleClass = AxleClass.AXLE_5
    day_of_week_from: DayOfWeek = DayOfWeek.ANY
    day_of_week_to: DayOfWeek = DayOfWeek.ANY
    time_of_day: TimeOfDay = TimeOfDay.ANY
    time_from: Optional[time] = None
    time_to: Optional[time] = None
    description: Optional[str] = None


@dataclass
class ChangeSet:
    """Entities to write in a single store commit."""
    points: List[TollPoint] = field(default_factory=list)
    pairs: List[DirectedTollPair] = field(default_factory=list)
    facts: List[PriceFact] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.points or self.pairs or self.facts)

    def merge(self, other: "ChangeSet") -> "ChangeSet":
        """Combine two change sets, later entries replacing earlier ones by id."""
        def _merge(first, second):
            merged = {item.id: item for item in first}
            merged.update({item.id: item for item in second})
            return list(merged.values())

        return ChangeSet(
            points=_merge(self.points, other.points),
            pairs=_merge(self.pairs, other.pairs),
            facts=_merge(self.facts, other.facts),
        )
