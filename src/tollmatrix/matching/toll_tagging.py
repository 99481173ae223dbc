"""
Tagging of matched toll points with feed-supplied attributes.

An import run that resolves a label to registry points stamps them with the
plaza number from the feed and the owning state calculator, and optionally
refreshes plaza metadata. Helpers return the points they actually changed so
the caller can queue exactly those for commit.
"""

from typing import Iterable, List, Optional

from ..store.models import PaymentMethod, TollPoint


def set_number_and_calculator(
    points: Iterable[TollPoint],
    number: Optional[str],
    state_calculator_id: Optional[str],
    update_number_if_different: bool = True
) -> List[TollPoint]:
    """Set plaza number and state calculator on matched points.

    Args:
        points: Points to tag
        number: Plaza number from the feed; blank values are ignored
        state_calculator_id: Calculator to assign; None leaves it untouched
        update_number_if_different: Overwrite an existing different number.
            When False only points without a number receive one.

    Returns:
        Points whose number or calculator changed
    """
    number = number.strip() if number else None
    changed = []

    for point in points:
        dirty = False

        if number:
            if update_number_if_different:
                if point.number != number:
                    point.number = number
                    dirty = True
            elif not point.number or not point.number.strip():
                point.number = number
                dirty = True

        if state_calculator_id is not None and point.state_calculator_id != state_calculator_id:
            point.state_calculator_id = state_calculator_id
            dirty = True

        if dirty:
            changed.append(point)

    return changed


def update_metadata(
    points: Iterable[TollPoint],
    website_url: Optional[str] = None,
    payment_method: Optional[PaymentMethod] = None
) -> List[TollPoint]:
    """Refresh website and accepted payment options on matched points.

    Empty values never clear what the registry already has.

    Returns:
        Points whose metadata changed
    """
    changed = []
    for point in points:
        dirty = False
        if website_url and website_url.strip() and point.website_url != website_url.strip():
            point.website_url = website_url.strip()
            dirty = True
        if payment_method is not None and point.payment_method != payment_method:
            point.payment_method = payment_method.model_copy()
            dirty = True
        if dirty:
            changed.append(point)
    return changed
