"""
tollmatrix - toll plaza identity resolution, search radius allocation and
price matrix upserts over a SQLite toll registry.
"""

__version__ = "0.1.0"

from .exceptions import InvalidInputError, SchemaVersionError, StoreConflictError, TollMatrixError
from .geo import bounding_box, haversine_m, region_for_state
from .matching import GeoBoundedMatcher, MatchMode, expand_pairs
from .pricing import PriceMatrix
from .radius import RadiusAllocator
from .store import (
    AxleClass,
    DayOfWeek,
    DirectedTollPair,
    PairOwner,
    PaymentType,
    PriceFact,
    PriceFactRequest,
    StateCalculator,
    TimeOfDay,
    TollOwner,
    TollPoint,
    TollStore,
)

__all__ = [
    "AxleClass",
    "DayOfWeek",
    "DirectedTollPair",
    "GeoBoundedMatcher",
    "InvalidInputError",
    "MatchMode",
    "PairOwner",
    "PaymentType",
    "PriceFact",
    "PriceFactRequest",
    "PriceMatrix",
    "RadiusAllocator",
    "SchemaVersionError",
    "StateCalculator",
    "StoreConflictError",
    "TimeOfDay",
    "TollMatrixError",
    "TollOwner",
    "TollPoint",
    "TollStore",
    "bounding_box",
    "haversine_m",
    "region_for_state",
]
