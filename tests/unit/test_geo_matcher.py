"""
Unit tests for region-bounded label matching.
"""

import pytest
from shapely.geometry import Point

from tollmatrix.exceptions import InvalidInputError
from tollmatrix.matching.geo_matcher import (
    GeoBoundedMatcher,
    MatchMode,
    is_valid_label,
    match_points,
)
from tollmatrix.store.models import TollPoint


class FakeRegionStore:
    """In-memory region source that counts fetches."""

    def __init__(self, points):
        self.points = points
        self.fetch_count = 0

    def fetch_points_in_region(self, region):
        self.fetch_count += 1
        return list(self.points)


@pytest.fixture
def fake_store(kansas_points):
    return FakeRegionStore(kansas_points)


@pytest.fixture
def matcher(fake_store):
    return GeoBoundedMatcher(fake_store)


def ids(points):
    return [p.id for p in points]


def test_single_fetch_for_many_labels(matcher, fake_store, kansas_region):
    """Test that a batch of labels costs exactly one region fetch."""
    labels = {"East Topeka", "Emporia", "Nowhere", "W_LAWRENCE"}
    result = matcher.find_matches(labels, kansas_region)

    assert fake_store.fetch_count == 1
    assert set(result.keys()) == labels
    assert ids(result["East Topeka"]) == ["ks-001"]
    assert ids(result["W_LAWRENCE"]) == ["ks-002"]
    assert result["Nowhere"] == []


def test_case_insensitive(matcher, kansas_region):
    """Test that label case does not change the result."""
    upper = matcher.find_matches({"EMPORIA"}, kansas_region, MatchMode.NAME)
    lower = matcher.find_matches({"emporia"}, kansas_region, MatchMode.NAME)

    assert ids(upper["EMPORIA"]) == ids(lower["emporia"]) == ["ks-003"]


def test_exact_match_skips_substring_pass():
    """Test that an exact hit is returned without substring matches."""
    points = [
        TollPoint(id="a", name="I-95"),
        TollPoint(id="b", name="I-95 North"),
        TollPoint(id="c", name="I-95 North Express"),
    ]
    result = match_points(["I-95 North"], points, MatchMode.NAME)

    assert ids(result["I-95 North"]) == ["b"]


def test_substring_fallback():
    """Test that a suffixed label finds its plaza by containment."""
    points = [TollPoint(id="a", name="I-95"), TollPoint(id="b", name="Route 1")]
    result = match_points(["I-95 North"], points, MatchMode.NAME)

    assert ids(result["I-95 North"]) == ["a"]


def test_substring_fallback_both_directions():
    """Test that a truncated label matches a longer stored name."""
    points = [TollPoint(id="a", name="Garden State Parkway Toll Plaza")]
    result = match_points(["parkway toll"], points, MatchMode.NAME)

    assert ids(result["parkway toll"]) == ["a"]


def test_placeholder_fields_never_match():
    """Test that empty and underscore-only names are filtered out."""
    points = [
        TollPoint(id="blank", name=""),
        TollPoint(id="spaces", name="   "),
        TollPoint(id="under", name="___"),
        TollPoint(id="real", name="Main Plaza"),
    ]
    result = match_points(["Main Plaza North", "x___y"], points, MatchMode.NAME)

    assert ids(result["Main Plaza North"]) == ["real"]
    assert result["x___y"] == []


def test_key_mode_ignores_name(kansas_points):
    """Test that key mode compares keys only."""
    result = match_points(["emporia", "Emporia Plaza"], kansas_points, MatchMode.KEY)

    assert ids(result["emporia"]) == ["ks-003"]
    assert ids(result["Emporia Plaza"]) == ["ks-003"]  # "emporia" is contained in the label

    assert match_points(["East Topeka"], kansas_points, MatchMode.KEY)["East Topeka"] == []


def test_name_or_key_mode(kansas_points):
    """Test that either field can produce a match."""
    result = match_points(["i35n", "I-35 North"], kansas_points, MatchMode.NAME_OR_KEY)

    assert ids(result["i35n"]) == ["ks-004"]
    assert ids(result["I-35 North"]) == ["ks-004"]


def test_blank_and_duplicate_labels(kansas_points):
    """Test that blank labels are dropped and duplicates collapse."""
    result = match_points(["Emporia", "Emporia", "", "   "], kansas_points)

    assert list(result.keys()) == ["Emporia"]


def test_result_order_follows_fetch_order():
    """Test that multiple matches keep store order."""
    points = [
        TollPoint(id="z", name="Exit 10"),
        TollPoint(id="a", name="Exit 10"),
    ]
    assert ids(match_points(["exit 10"], points)["exit 10"]) == ["z", "a"]


def test_find_match_single_label(matcher, fake_store, kansas_region):
    """Test single-label convenience."""
    assert ids(matcher.find_match("emporia", kansas_region)) == ["ks-003"]
    assert matcher.find_match("nothing here", kansas_region) == []
    assert fake_store.fetch_count == 2


def test_none_labels_rejected(matcher, kansas_region):
    """Test that a missing label set is malformed input."""
    with pytest.raises(InvalidInputError):
        matcher.find_matches(None, kansas_region)


@pytest.mark.parametrize("region", [None, Point(0, 0), "POLYGON"])
def test_bad_region_rejected(matcher, fake_store, region):
    """Test that a region must be a valid polygon, before any fetch."""
    with pytest.raises(InvalidInputError):
        matcher.find_matches({"Emporia"}, region)
    assert fake_store.fetch_count == 0


@pytest.mark.parametrize("text,expected", [
    ("Plaza 1", True),
    ("_a_", True),
    ("", False),
    ("   ", False),
    ("____", False),
    (" __ ", False),
    (None, False),
])
def test_is_valid_label(text, expected):
    assert is_valid_label(text) is expected
