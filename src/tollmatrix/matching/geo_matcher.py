"""
Region-bounded label matching.

Resolves noisy plaza labels from price feeds to registry toll points. All
labels of a batch are resolved against a single region fetch: an exact
case-insensitive pass on name and/or key first, then a mutual-substring
pass for labels the exact pass could not place.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, Union

from shapely.geometry import Polygon

from ..exceptions import InvalidInputError
from ..geo import validate_region
from ..store.models import TollPoint

logger = logging.getLogger(__name__)


class MatchMode(str, Enum):
    """Which toll fields a label is compared against."""
    NAME = "name"
    KEY = "key"
    NAME_OR_KEY = "name_or_key"


class RegionSource(Protocol):
    def fetch_points_in_region(self, region: Polygon) -> List[TollPoint]:
        ...


def is_valid_label(text: Optional[str]) -> bool:
    """Return False for empty, whitespace-only or underscore-only labels.

    Feeds and the registry use such values as placeholders; they never name
    a real plaza.
    """
    if text is None:
        return False
    stripped = text.strip()
    if not stripped:
        return False
    return stripped.strip("_") != ""


def _fields_for(point: TollPoint, mode: MatchMode) -> List[str]:
    if mode is MatchMode.NAME:
        candidates = [point.name]
    elif mode is MatchMode.KEY:
        candidates = [point.key]
    else:
        candidates = [point.name, point.key]
    return [c for c in candidates if c is not None]


def _match_pass(
    label: str,
    indexed: List[Tuple[TollPoint, List[Tuple[str, str]]]],
    exact: bool
) -> List[TollPoint]:
    matches = []
    for point, fields in indexed:
        for original, lowered in fields:
            if exact:
                hit = lowered == label
            else:
                hit = label in lowered or lowered in label
            if hit and is_valid_label(original):
                matches.append(point)
                break
    return matches


def match_points(
    labels: Iterable[str],
    points: Iterable[TollPoint],
    mode: MatchMode = MatchMode.NAME_OR_KEY
) -> Dict[str, List[TollPoint]]:
    """Match labels against points already loaded for a region.

    Args:
        labels: Candidate plaza labels
        points: Toll points of the region, in store order
        mode: Fields to compare against

    Returns:
        Dict of label -> matched points (empty list when nothing matched).
        Blank labels are skipped and duplicate labels collapse.

    Raises:
        InvalidInputError: If labels is None
    """
    if labels is None:
        raise InvalidInputError("Labels are required")
    if isinstance(labels, str):
        labels = [labels]
    mode = MatchMode(mode)

    # Lower-case every field once per batch
    indexed = [
        (point, [(field, field.strip().lower()) for field in _fields_for(point, mode)])
        for point in points
    ]

    results: Dict[str, List[TollPoint]] = {}
    for label in labels:
        if label is None or label in results or not label.strip():
            continue

        needle = label.strip().lower()
        matched = _match_pass(needle, indexed, exact=True)
        if not matched:
            matched = _match_pass(needle, indexed, exact=False)
            if matched:
                logger.debug(f"Label '{label}' matched {len(matched)} points by substring")

        results[label] = matched

    return results


class GeoBoundedMatcher:
    """Resolves plaza labels to toll points inside a region."""

    def __init__(self, store: RegionSource, mode: Union[MatchMode, str] = MatchMode.NAME_OR_KEY):
        """Initialize matcher.

        Args:
            store: Anything exposing fetch_points_in_region(region)
            mode: Default match mode
        """
        self.store = store
        self.mode = MatchMode(mode)

    def find_matches(
        self,
        labels: Iterable[str],
        region: Polygon,
        mode: Optional[Union[MatchMode, str]] = None
    ) -> Dict[str, List[TollPoint]]:
        """Resolve a batch of labels with one region fetch.

        Args:
            labels: Candidate plaza labels
            region: Region polygon of (lon, lat) coordinates
            mode: Overrides the matcher's default mode

        Returns:
            Dict of label -> matched points; an empty list means not found

        Raises:
            InvalidInputError: If labels is None or region is not a valid polygon
        """
        if labels is None:
            raise InvalidInputError("Labels are required")
        region = validate_region(region)
        label_list = [labels] if isinstance(labels, str) else list(labels)

        points = self.store.fetch_points_in_region(region)
        results = match_points(label_list, points, mode or self.mode)

        not_found = sum(1 for matched in results.values() if not matched)
        logger.info(
            f"Matched {len(results) - not_found}/{len(results)} labels "
            f"against {len(points)} tolls in region"
        )
        return results

    def find_match(
        self,
        label: str,
        region: Polygon,
        mode: Optional[Union[MatchMode, str]] = None
    ) -> List[TollPoint]:
        """Resolve a single label; returns an empty list when not found."""
        return self.find_matches([label], region, mode).get(label, [])
