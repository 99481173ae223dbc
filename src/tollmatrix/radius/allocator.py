"""
Non-overlapping search radius allocation.

Every located toll point gets a search circle so later "which plaza is this
coordinate near" lookups stay unambiguous. Circles start at a default radius
and are shrunk pairwise until no two overlap, followed by one repair round
for points that collapsed to almost nothing.

The result is greedy, not globally optimal. The repair round runs once and
only grows collapsed points into room their settled neighbours leave free,
so points in dense clusters can still end at zero. Repaired points are not
reset to the default radius; they start from the free room instead.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from ..geo import haversine_m
from ..store.models import TollPoint

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_M = 500.0

# Margin so circles never merely touch through floating-point noise
CLEARANCE_M = 0.1

# Radii below this after the first sweep are recomputed once
REPAIR_THRESHOLD_M = 2.0

# About one centimetre; coordinates equal at this precision are one location
DUPLICATE_COORD_DIGITS = 7


@dataclass
class AllocationSummary:
    """Outcome of a radius allocation run."""
    total_points: int = 0
    located_points: int = 0
    zero_radius: int = 0
    repaired_points: int = 0
    default_radius_m: float = DEFAULT_RADIUS_M

    def to_dict(self) -> Dict[str, float]:
        return {
            "total_points": self.total_points,
            "located_points": self.located_points,
            "zero_radius": self.zero_radius,
            "repaired_points": self.repaired_points,
            "default_radius_m": self.default_radius_m,
        }


def reduce_pair_to_allowed_sum(a: TollPoint, b: TollPoint, allowed_sum: float) -> None:
    """Shrink two radii so they sum to at most allowed_sum.

    The excess is split evenly. When one radius hits zero before absorbing
    its half, the remainder comes from a first, then b. Radii never go
    negative.
    """
    total = a.search_radius_m + b.search_radius_m
    if total <= allowed_sum:
        return

    excess = total - allowed_sum
    half = excess / 2.0

    reduce_a = min(half, a.search_radius_m)
    reduce_b = min(half, b.search_radius_m)
    a.search_radius_m -= reduce_a
    b.search_radius_m -= reduce_b

    remaining = excess - (reduce_a + reduce_b)
    if remaining <= 0:
        return

    if a.search_radius_m > 0:
        take = min(remaining, a.search_radius_m)
        a.search_radius_m -= take
        remaining -= take

    if remaining > 0 and b.search_radius_m > 0:
        take = min(remaining, b.search_radius_m)
        b.search_radius_m -= take


def _location_key(point: TollPoint) -> Tuple[float, float]:
    return (
        round(point.latitude, DUPLICATE_COORD_DIGITS),
        round(point.longitude, DUPLICATE_COORD_DIGITS),
    )


def _allowed_sum(a: TollPoint, b: TollPoint) -> float:
    distance = haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)
    return max(0.0, distance - CLEARANCE_M)


class RadiusAllocator:
    """Assigns deterministic, non-overlapping search radii to toll points."""

    def __init__(
        self,
        default_radius_m: float = DEFAULT_RADIUS_M,
        merge_duplicate_locations: bool = False
    ):
        """Initialize allocator.

        Args:
            default_radius_m: Radius every located point starts from
            merge_duplicate_locations: Treat points stacked on the same
                coordinates (to 7 decimal places) as one circle and give
                every point in the stack the same radius. Without this,
                stacked points collapse to zero.
        """
        if default_radius_m < 0:
            raise ValueError(f"default_radius_m must be non-negative, got {default_radius_m}")
        self.default_radius_m = default_radius_m
        self.merge_duplicate_locations = merge_duplicate_locations

    def allocate(
        self,
        points: Sequence[TollPoint],
        default_radius_m: Optional[float] = None
    ) -> AllocationSummary:
        """Assign search radii in place.

        Points are processed sorted by id, so the outcome does not depend on
        the order of the input list. Points without a valid location get 0.

        Args:
            points: Points to allocate; their search_radius_m is overwritten
            default_radius_m: Overrides the allocator's default for this call

        Returns:
            AllocationSummary with counts
        """
        radius = self.default_radius_m if default_radius_m is None else default_radius_m
        if radius < 0:
            raise ValueError(f"default_radius_m must be non-negative, got {radius}")

        summary = AllocationSummary(total_points=len(points), default_radius_m=radius)
        if not points:
            return summary

        self._sweep(points, radius)

        # Single repair round, never repeated
        collapsed = [p for p in points if p.search_radius_m < REPAIR_THRESHOLD_M]
        if collapsed:
            collapsed_ids = {id(p) for p in collapsed}
            settled = [
                p for p in points
                if id(p) not in collapsed_ids and p.has_valid_location and p.search_radius_m > 0
            ]
            self._sweep(collapsed, radius, settled=settled)
            summary.repaired_points = sum(
                1 for p in collapsed if p.search_radius_m >= REPAIR_THRESHOLD_M
            )

        summary.located_points = sum(1 for p in points if p.has_valid_location)
        summary.zero_radius = sum(1 for p in points if p.search_radius_m <= 0)

        logger.info(
            f"Allocated radii for {summary.total_points} points "
            f"({summary.located_points} located, {summary.zero_radius} at zero, "
            f"{summary.repaired_points} repaired)"
        )
        return summary

    def _sweep(
        self,
        points: Sequence[TollPoint],
        radius: float,
        settled: Sequence[TollPoint] = ()
    ) -> None:
        """Initialize radii then shrink every conflicting pair once.

        Args:
            points: Points to (re)allocate
            radius: Starting radius
            settled: Points whose radii stay fixed; each point starts no
                larger than the free room next to them
        """
        ordered = sorted(points, key=lambda p: p.id)

        for point in ordered:
            if not point.has_valid_location:
                point.search_radius_m = 0.0
                continue
            start = radius
            for other in settled:
                room = _allowed_sum(point, other) - other.search_radius_m
                start = min(start, max(0.0, room))
            point.search_radius_m = start

        located = [p for p in ordered if p.has_valid_location]

        groups: List[List[TollPoint]] = []
        if self.merge_duplicate_locations:
            by_location: Dict[Tuple[float, float], List[TollPoint]] = {}
            for point in located:
                by_location.setdefault(_location_key(point), []).append(point)
            groups = list(by_location.values())
            candidates = [group[0] for group in groups]
        else:
            candidates = located

        for i, a in enumerate(candidates):
            for b in candidates[i + 1:]:
                if a.search_radius_m <= 0:
                    break
                if b.search_radius_m <= 0:
                    continue

                allowed_sum = _allowed_sum(a, b)
                if a.search_radius_m + b.search_radius_m > allowed_sum:
                    reduce_pair_to_allowed_sum(a, b, allowed_sum)

        for group in groups:
            shared = group[0].search_radius_m
            for point in group[1:]:
                point.search_radius_m = shared
