"""
Label matching and pair expansion.

- GeoBoundedMatcher: resolve plaza labels to toll points within a region
- expand_pairs: directed entry/exit combinations for route-based prices
- toll_tagging: stamp matched points with number, calculator and metadata
"""

from .geo_matcher import GeoBoundedMatcher, MatchMode, is_valid_label, match_points
from .pair_expander import expand_pairs, iter_pairs
from .toll_tagging import set_number_and_calculator, update_metadata

__all__ = [
    "GeoBoundedMatcher",
    "MatchMode",
    "expand_pairs",
    "is_valid_label",
    "iter_pairs",
    "match_points",
    "set_number_and_calculator",
    "update_metadata",
]
