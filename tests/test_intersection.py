"""
Tests for predicate groups, their intersection and filter tags.
"""

import itertools

from api.shared.intersection import FILTER_TAG_LABELS, PredicateGroups, shift_indexes
from api.shared.predicates import NO_MATCH_SENTINEL, FilterGroup


class TestIntersection:
    """Visible indexes from the non-empty groups."""

    def test_all_groups_empty_means_everything_visible(self):
        groups = PredicateGroups()
        assert groups.intersect(5) == [0, 1, 2, 3, 4]

    def test_intersection_of_active_groups(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.DATE, [2, 3])
        groups.set_group(FilterGroup.CHRF, [3, 0, 2])
        assert groups.intersect(5) == [2, 3]

    def test_adding_a_group_never_grows_the_visible_set(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.SEARCH, [0, 1, 2, 3])
        before = set(groups.intersect(6))
        groups.set_group(FilterGroup.KEYWORD, [1, 3, 5])
        after = set(groups.intersect(6))
        assert after <= before
        assert after == {1, 3}

    def test_recompute_is_idempotent(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.OTHER_SET, [4, 1])
        assert groups.intersect(6) == groups.intersect(6) == [1, 4]

    def test_result_does_not_depend_on_mutation_order(self):
        assignments = [
            (FilterGroup.DATE, [0, 1, 2, 5]),
            (FilterGroup.SOURCE_ID, [1, 2, 5]),
            (FilterGroup.FAMILIARITY, [2, 5, 7]),
        ]
        results = set()
        for order in itertools.permutations(assignments):
            groups = PredicateGroups()
            for group, indexes in order:
                groups.set_group(group, indexes)
            results.add(tuple(groups.intersect(8)))
        assert results == {(2, 5)}

    def test_sentinel_group_hides_everything(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.SEARCH, [NO_MATCH_SENTINEL])
        assert groups.intersect(3) == []
        assert [t.type for t in groups.tags] == [FilterGroup.SEARCH]

    def test_clearing_sentinel_restores_previous_visible_set(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.DATE, [1, 2])
        groups.set_group(FilterGroup.SEARCH, [NO_MATCH_SENTINEL])
        groups.clear(FilterGroup.SEARCH)
        assert groups.intersect(3) == [1, 2]

    def test_set_group_deduplicates_and_sorts(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.KEYWORD, [3, 1, 3])
        assert groups.get(FilterGroup.KEYWORD) == [1, 3]


class TestFilterTags:
    """Tags follow group activation order."""

    def test_tags_in_activation_order(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.SEARCH, [1])
        groups.set_group(FilterGroup.DATE, [1, 2])
        assert [t.message for t in groups.tags] == ["Search Result", "Dates"]

    def test_tag_removed_when_group_empties(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.CHRF, [0])
        groups.set_group(FilterGroup.DATE, [0])
        groups.clear(FilterGroup.CHRF)
        assert [t.type for t in groups.tags] == [FilterGroup.DATE]

    def test_updating_active_group_keeps_its_position(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.SOURCE_ID, [0])
        groups.set_group(FilterGroup.EMBEDDING, [0])
        groups.set_group(FilterGroup.SOURCE_ID, [0, 1])
        assert [t.type for t in groups.tags] == [FilterGroup.SOURCE_ID, FilterGroup.EMBEDDING]

    def test_every_group_has_a_label(self):
        assert set(FILTER_TAG_LABELS) == set(FilterGroup)

    def test_tag_dict(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.SOURCE_ID, [0])
        assert groups.tags[0].to_dict() == {"type": "sourceID", "message": "Input Source"}


class TestIndexRemoval:
    """Deleting a sample renumbers every group."""

    def test_shift_indexes(self):
        assert shift_indexes([0, 2, 5], 2) == [0, 4]
        assert shift_indexes([NO_MATCH_SENTINEL], 0) == [NO_MATCH_SENTINEL]

    def test_remove_index_shifts_all_groups(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.DATE, [2, 3])
        groups.set_group(FilterGroup.CHRF, [0, 3, 4])
        groups.remove_index(1)
        assert groups.get(FilterGroup.DATE) == [1, 2]
        assert groups.get(FilterGroup.CHRF) == [0, 2, 3]
        assert groups.intersect(4) == [2]

    def test_group_losing_its_only_match_stays_active(self):
        groups = PredicateGroups()
        groups.set_group(FilterGroup.SEARCH, [1])
        groups.remove_index(1)
        assert groups.get(FilterGroup.SEARCH) == [NO_MATCH_SENTINEL]
        assert groups.intersect(3) == []
        assert [t.type for t in groups.tags] == [FilterGroup.SEARCH]

    def test_inactive_groups_stay_inactive(self):
        groups = PredicateGroups()
        groups.remove_index(0)
        assert groups.tags == []
        assert all(indexes == [] for indexes in groups.to_dict().values())
