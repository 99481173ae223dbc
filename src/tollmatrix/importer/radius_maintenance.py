"""
Radius maintenance for a region.

Radii are recomputed wholesale over every toll point in the region, never
incrementally.
"""

import logging

from shapely.geometry import Polygon

from ..radius.allocator import AllocationSummary, RadiusAllocator
from ..store.models import ChangeSet
from ..store.toll_store import TollStore

logger = logging.getLogger(__name__)


def refresh_region_radii(
    store: TollStore,
    region: Polygon,
    default_radius_m: float = 500.0,
    merge_duplicates: bool = False
) -> AllocationSummary:
    """Recompute and store search radii for every toll in a region.

    Args:
        store: Toll registry
        region: Region polygon
        default_radius_m: Starting radius for located points
        merge_duplicates: Share one circle among stacked points

    Returns:
        AllocationSummary of the run
    """
    points = store.fetch_points_in_region(region)
    allocator = RadiusAllocator(default_radius_m, merge_duplicate_locations=merge_duplicates)
    summary = allocator.allocate(points)

    if points:
        store.commit(ChangeSet(points=points))

    logger.info(f"Refreshed radii for {len(points)} tolls in region")
    return summary
