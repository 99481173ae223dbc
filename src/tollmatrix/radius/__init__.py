"""Search radius allocation."""

from .allocator import (
    CLEARANCE_M,
    DEFAULT_RADIUS_M,
    AllocationSummary,
    RadiusAllocator,
    reduce_pair_to_allowed_sum,
)

__all__ = [
    "CLEARANCE_M",
    "DEFAULT_RADIUS_M",
    "AllocationSummary",
    "RadiusAllocator",
    "reduce_pair_to_allowed_sum",
]
