"""
Unit tests for the ranked gene list and directional subsets.
"""

import pytest

from multienrich.errors import InvalidThresholdError
from multienrich.id_mapper import IdentifierRecord
from multienrich.ranking import RankedGeneList, build_ranked_list, split_by_threshold
from multienrich.results import Direction


def _records(keys):
    return [
        IdentifierRecord(raw_name=f"G{i}", canonical_name=f"G{i}", accession=None if k is None else f"ACC{k}",
                         database_key=k, rank=i)
        for i, k in enumerate(keys, start=1)
    ]


class TestBuildRankedList:
    """Ranked list construction"""

    def test_sorted_decreasing(self):
        """Test keys come out in decreasing score order."""
        ranked = build_ranked_list(_records(['C', 'A', 'D', 'B']), [-1, 3, -4, 1])
        assert ranked.keys == ('A', 'B', 'C', 'D')
        assert ranked.scores == (3, 1, -1, -4)

    def test_unresolved_and_invalid_are_dropped(self):
        """Test unresolved records and NaN scores never enter the ranking."""
        ranked = build_ranked_list(_records(['A', None, 'C', 'D']), [2.0, 5.0, float('nan'), 'x'])
        assert ranked.keys == ('A',)

    def test_duplicate_keys_keep_strongest_effect(self):
        """Test several names resolving to one key collapse to the largest |score|."""
        ranked = build_ranked_list(_records(['A', 'A', 'B']), [0.5, -2.0, 1.0])
        assert ranked.to_dict() == {'B': 1.0, 'A': -2.0}
        assert len(set(ranked.keys)) == len(ranked.keys)

    def test_ties_keep_input_order(self):
        """Test equal scores keep their input order."""
        ranked = build_ranked_list(_records(['B', 'A', 'C']), [1.0, 1.0, 2.0])
        assert ranked.keys == ('C', 'B', 'A')

    def test_invert(self):
        """Test inversion negates scores and reverses the order."""
        ranked = build_ranked_list(_records(['A', 'B', 'C']), [3, 1, -1], invert=True)
        assert ranked.keys == ('C', 'B', 'A')
        assert ranked.scores == (1, -1, -3)

    def test_length_mismatch(self):
        """Test records and effect sizes must align."""
        with pytest.raises(ValueError):
            build_ranked_list(_records(['A']), [1.0, 2.0])

    def test_as_series(self):
        """Test the gseapy view is indexed by key."""
        ranked = build_ranked_list(_records(['A', 'B']), [1.0, 2.0])
        series = ranked.as_series()
        assert list(series.index) == ['B', 'A']
        assert series['A'] == 1.0


class TestRankedGeneListInvariants:
    """Direct construction is validated"""

    def test_rejects_duplicates(self):
        with pytest.raises(ValueError):
            RankedGeneList(keys=('A', 'A'), scores=(2.0, 1.0))

    def test_rejects_increasing_scores(self):
        with pytest.raises(ValueError):
            RankedGeneList(keys=('A', 'B'), scores=(1.0, 2.0))


class TestSplitByThreshold:
    """Symmetric threshold partition"""

    def setup_method(self):
        self.ranked = build_ranked_list(_records(['A', 'B', 'C', 'D']), [3, 1, -1, -4])

    def test_partition(self):
        """Test {A:3, B:1, C:-1, D:-4} at threshold 2 gives {A} and {D}."""
        up, down = split_by_threshold(self.ranked, 2)
        assert up.direction is Direction.UP
        assert down.direction is Direction.DOWN
        assert up.as_set() == {'A'}
        assert down.as_set() == {'D'}

    def test_boundaries_inclusive(self):
        """Test scores exactly at +/- threshold are members."""
        up, down = split_by_threshold(self.ranked, 1)
        assert up.keys == ('A', 'B')
        assert down.keys == ('C', 'D')

    def test_subsets_disjoint_and_inside_ranking(self):
        """Test subsets never overlap and only hold ranked keys."""
        for threshold in (0.5, 1, 2, 3, 4, 10):
            up, down = split_by_threshold(self.ranked, threshold)
            assert not (up.as_set() & down.as_set())
            assert (up.as_set() | down.as_set()) <= set(self.ranked.keys)

    def test_empty_subsets(self):
        """Test a threshold above every score yields two empty subsets."""
        up, down = split_by_threshold(self.ranked, 100)
        assert len(up) == 0
        assert len(down) == 0

    @pytest.mark.parametrize('threshold', [0, -1, float('nan'), 'abc', None])
    def test_invalid_threshold(self, threshold):
        """Test non-positive or non-numeric thresholds are rejected."""
        with pytest.raises(InvalidThresholdError):
            split_by_threshold(self.ranked, threshold)
