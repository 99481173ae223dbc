"""
Entry/exit pair expansion.

Route-based price feeds name an entry plaza and an exit plaza, each of which
may resolve to several registry points. The expander walks every directed
combination and collects caller-computed results keyed by (from_id, to_id).
"""

from typing import Any, Callable, Dict, Iterable, Iterator, Tuple, TypeVar

from ..store.models import TollPoint

R = TypeVar("R")

PairKey = Tuple[str, str]


def iter_pairs(
    entries: Iterable[TollPoint],
    exits: Iterable[TollPoint]
) -> Iterator[Tuple[TollPoint, TollPoint]]:
    """Yield every (entry, exit) combination except self pairs.

    Duplicate ids across the two sets are allowed; each combination is
    yielded independently, in entry-major order.
    """
    exit_list = list(exits)
    for entry in entries:
        for exit_point in exit_list:
            if entry.id == exit_point.id:
                continue
            yield entry, exit_point


def expand_pairs(
    entries: Iterable[TollPoint],
    exits: Iterable[TollPoint],
    fn: Callable[[TollPoint, TollPoint], R]
) -> Dict[PairKey, Any]:
    """Apply fn to every directed entry/exit combination.

    Args:
        entries: Candidate entry points
        exits: Candidate exit points
        fn: Called as fn(entry, exit) for each combination

    Returns:
        Dict keyed by (entry.id, exit.id). A list or tuple returned by fn is
        appended to the bucket already held under that key; any other value
        replaces it.

    Raises:
        TypeError: If fn is missing or not callable
    """
    if fn is None or not callable(fn):
        raise TypeError("expand_pairs requires a callable fn(entry, exit)")

    results: Dict[PairKey, Any] = {}
    for entry, exit_point in iter_pairs(entries, exits):
        key = (entry.id, exit_point.id)
        value = fn(entry, exit_point)

        if isinstance(value, (list, tuple)):
            bucket = results.get(key)
            if not isinstance(bucket, list):
                bucket = [] if bucket is None else [bucket]
                results[key] = bucket
            bucket.extend(value)
        else:
            results[key] = value

    return results
