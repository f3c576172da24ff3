"""
Predicate groups and their intersection.

Holds one index set per filter group. An empty group imposes no constraint;
the visible samples are the intersection of the non-empty groups, or every
sample when all groups are empty.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List

import numpy as np

from .predicates import NO_MATCH_SENTINEL, FilterGroup

FILTER_TAG_LABELS: Dict[FilterGroup, str] = {
    FilterGroup.DATE: "Dates",
    FilterGroup.KEYWORD: "Keyword",
    FilterGroup.EMBEDDING: "Embedding Selection",
    FilterGroup.CHRF: "ChrF",
    FilterGroup.FAMILIARITY: "Familiarity",
    FilterGroup.SOURCE_ID: "Input Source",
    FilterGroup.OTHER_SET: "Overlapping Sets",
    FilterGroup.SEARCH: "Search Result",
}


@dataclass(frozen=True)
class FilterTag:
    """Removable chip shown for an active filter group."""

    type: FilterGroup
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type.value, "message": self.message}


class PredicateGroups:
    """Index sets of every filter group plus the derived filter tags."""

    def __init__(self):
        self._groups: Dict[FilterGroup, List[int]] = {g: [] for g in FilterGroup}
        self._tags: List[FilterTag] = []

    def set_group(self, group: FilterGroup, indexes: Iterable[int]) -> None:
        """Replace the index set of a group and refresh the tags."""
        group = FilterGroup(group)
        self._groups[group] = sorted(set(int(i) for i in indexes))
        self._refresh_tags()

    def clear(self, group: FilterGroup) -> None:
        self.set_group(group, [])

    def get(self, group: FilterGroup) -> List[int]:
        return list(self._groups[FilterGroup(group)])

    @property
    def tags(self) -> List[FilterTag]:
        return list(self._tags)

    def _refresh_tags(self) -> None:
        # Tags keep activation order
        self._tags = [t for t in self._tags if self._groups[t.type]]
        tagged = {t.type for t in self._tags}
        for group in FilterGroup:
            if self._groups[group] and group not in tagged:
                self._tags.append(FilterTag(type=group, message=FILTER_TAG_LABELS[group]))

    def intersect(self, count: int) -> List[int]:
        """Compute the visible indexes for a store of ``count`` samples.

        Groups are visited in ``FilterGroup`` order.
        """
        working = np.arange(count, dtype=np.int64)
        for group in FilterGroup:
            indexes = self._groups[group]
            if not indexes:
                continue
            working = np.intersect1d(working, np.asarray(indexes, dtype=np.int64), assume_unique=True)
        return working.tolist()

    def remove_index(self, index: int) -> None:
        """Drop a deleted sample index and shift every higher index down by one.

        A group whose only match was the deleted sample stays active and
        matches nothing.
        """
        for group in FilterGroup:
            before = self._groups[group]
            after = shift_indexes(before, index)
            if before and not after:
                after = [NO_MATCH_SENTINEL]
            self._groups[group] = after
        self._refresh_tags()

    def to_dict(self) -> Dict[str, List[int]]:
        return {g.value: list(self._groups[g]) for g in FilterGroup}


def shift_indexes(indexes: Iterable[int], removed: int) -> List[int]:
    """Renumber an index list after ``removed`` was spliced out.

    Negative sentinels are kept untouched.
    """
    result = []
    for i in indexes:
        if i == removed:
            continue
        result.append(i - 1 if i > removed else i)
    return result
