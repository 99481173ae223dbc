"""Toll registry persistence."""

from .models import (
    AxleClass,
    ChangeSet,
    DayOfWeek,
    DirectedTollPair,
    OwnerKind,
    PairOwner,
    PaymentMethod,
    PaymentType,
    PriceFact,
    PriceFactRequest,
    PriceOwner,
    StateCalculator,
    TimeOfDay,
    TollOwner,
    TollPoint,
    make_owner,
    new_id,
)
from .toll_store import CommitResult, TollStore

__all__ = [
    "AxleClass",
    "ChangeSet",
    "CommitResult",
    "DayOfWeek",
    "DirectedTollPair",
    "OwnerKind",
    "PairOwner",
    "PaymentMethod",
    "PaymentType",
    "PriceFact",
    "PriceFactRequest",
    "PriceOwner",
    "StateCalculator",
    "TimeOfDay",
    "TollOwner",
    "TollPoint",
    "TollStore",
    "make_owner",
    "new_id",
]
