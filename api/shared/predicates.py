"""
Filter predicates for challenge set sample selection.

Every predicate computes the set of sample indexes matching its own
constraint from the record store alone. Predicates never see each other's
output; the intersection engine combines them.

Predicates that work on text (search, keyword) also report the character
spans they matched so the sentence list can highlight them.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from .binning import snap_to_bin
from .logger import get_logger
from .record_store import RecordStore

logger = get_logger(__name__)

# Index that cannot address a real sample. A group holding only this value is
# active but matches nothing.
NO_MATCH_SENTINEL = -1

Span = Tuple[int, int]


class FilterGroup(str, Enum):
    """Independent filter dimensions, in intersection order."""

    DATE = "date"
    KEYWORD = "keyword"
    EMBEDDING = "embedding"
    CHRF = "chrf"
    FAMILIARITY = "familiarity"
    SOURCE_ID = "sourceID"
    OTHER_SET = "otherSet"
    SEARCH = "search"


class HighlightKind(IntEnum):
    """Origin of a highlighted span in the sentence list."""

    KEYWORD = 0
    SEARCH = 1


class PredicateError(ValueError):
    """Raised when predicate parameters cannot be applied."""


@dataclass
class PredicateMatch:
    """Indexes matched by a predicate, with optional text spans per index."""

    indexes: List[int]
    spans: Dict[int, List[Span]] = field(default_factory=dict)


class BasePredicate(ABC):
    """Base class for all predicates.

    - ``match`` returns the matching indexes (empty = no constraint)
    - Predicates only read the record store and their own parameters
    """

    group: FilterGroup

    @abstractmethod
    def match(self, store: RecordStore) -> PredicateMatch:
        """Compute matching sample indexes.

        Args:
            store: Record store of the current challenge set

        Returns:
            PredicateMatch with indexes in ascending order
        """
        pass

    def describe(self) -> str:
        """Return human-readable summary of the constraint."""
        return self.group.value


def _text_spans(pattern: re.Pattern, text: str) -> List[Span]:
    return [(m.start(), m.end() - m.start()) for m in pattern.finditer(text) if m.end() > m.start()]


# Longest search key accepted from clients
MAX_SEARCH_LENGTH = 200

# A quantified group that itself contains a quantifier, e.g. ``(a+)+``
_NESTED_QUANTIFIER = re.compile(r"\((?:[^()\\]|\\.)*[+*}](?:[^()\\]|\\.)*\)\s*[+*{]")


def compile_search_pattern(key: str) -> re.Pattern:
    """Compile a case-insensitive search pattern.

    Keys that are not valid regular expressions, and keys with nested
    quantifiers (which can backtrack exponentially), are matched literally.
    """
    if _NESTED_QUANTIFIER.search(key):
        logger.debug("Search key %r has nested quantifiers, matching literally", key)
        return re.compile(re.escape(key), re.IGNORECASE)
    try:
        return re.compile(key, re.IGNORECASE)
    except re.error:
        logger.debug("Search key %r is not a valid pattern, matching literally", key)
        return re.compile(re.escape(key), re.IGNORECASE)


class DatePredicate(BasePredicate):
    """Match samples whose date (as a YYYYMMDD string) is selected.

    Parameters:
        dates: Selected date strings, e.g. ``["20230102"]``
    """

    group = FilterGroup.DATE

    def __init__(self, dates: Optional[Iterable[str]] = None):
        self.dates = {str(d) for d in (dates or [])}

    def match(self, store: RecordStore) -> PredicateMatch:
        if not self.dates:
            return PredicateMatch(indexes=[])
        return PredicateMatch(
            indexes=[i for i, d in enumerate(store.date) if str(d) in self.dates]
        )

    def describe(self) -> str:
        return f"{len(self.dates)} dates"


class SearchPredicate(BasePredicate):
    """Case-insensitive text search over source sentences.

    A non-empty key without any hit yields the sentinel so the group stays
    active and the visible set becomes empty.

    Parameters:
        key: Search text or regular expression
    """

    group = FilterGroup.SEARCH

    def __init__(self, key: str = ""):
        self.key = key or ""

    def match(self, store: RecordStore) -> PredicateMatch:
        if self.key == "":
            return PredicateMatch(indexes=[])

        pattern = compile_search_pattern(self.key)
        result = PredicateMatch(indexes=[])
        for i, source in enumerate(store.source):
            spans = _text_spans(pattern, source)
            if spans:
                result.indexes.append(i)
                result.spans[i] = spans

        if not result.indexes:
            result.indexes = [NO_MATCH_SENTINEL]
        return result

    def describe(self) -> str:
        return f"search '{self.key}'"


class KeywordPredicate(BasePredicate):
    """Union of samples containing any selected keyword.

    Parameters:
        keywords: Selected keywords (matched literally, case-insensitive)
    """

    group = FilterGroup.KEYWORD

    def __init__(self, keywords: Optional[Iterable[str]] = None):
        self.keywords = [k for k in (keywords or []) if k]

    def match(self, store: RecordStore) -> PredicateMatch:
        result = PredicateMatch(indexes=[])
        if not self.keywords:
            return result

        patterns = [re.compile(re.escape(k.lower()), re.IGNORECASE) for k in self.keywords]
        for i, source in enumerate(store.source):
            spans: List[Span] = []
            for pattern in patterns:
                spans.extend(_text_spans(pattern, source))
            if spans:
                result.indexes.append(i)
                result.spans[i] = sorted(spans)
        return result

    def describe(self) -> str:
        return ", ".join(self.keywords)


class RangePredicate(BasePredicate):
    """Match non-null scores inside a closed range.

    Parameters:
        column: ``"chrf"`` or ``"familiarity"``
        low: Lower bound (inclusive)
        high: Upper bound (inclusive)
    """

    COLUMN_GROUPS = {
        "chrf": FilterGroup.CHRF,
        "familiarity": FilterGroup.FAMILIARITY,
    }

    def __init__(self, column: str, low: float, high: float):
        if column not in self.COLUMN_GROUPS:
            raise PredicateError(f"Unknown score column: {column}")
        if low is None or high is None or np.isnan(low) or np.isnan(high):
            raise PredicateError("Range bounds must be numbers")
        if low > high:
            raise PredicateError(f"Empty range [{low}, {high}]")
        self.column = column
        self.group = self.COLUMN_GROUPS[column]
        self.low = low
        self.high = high

    @classmethod
    def from_brush(cls, column: str, selection: Sequence[float]) -> "RangePredicate":
        """Build a predicate from a brushed [start, end] selection in score space.

        Both ends are clamped to [0, 1] and snapped onto histogram bin edges.
        """
        if selection is None or len(selection) != 2:
            raise PredicateError("Brush selection must have two values")
        try:
            start, end = sorted(min(max(float(v), 0.0), 1.0) for v in selection)
        except (TypeError, ValueError) as e:
            raise PredicateError(f"Invalid brush selection: {selection}") from e
        if np.isnan(start) or np.isnan(end):
            raise PredicateError("Brush selection contains NaN")
        return cls(column, snap_to_bin(start), snap_to_bin(end))

    @property
    def bounds(self) -> Tuple[float, float]:
        return (self.low, self.high)

    def match(self, store: RecordStore) -> PredicateMatch:
        values = store.values(self.column)
        return PredicateMatch(
            indexes=[
                i for i, v in enumerate(values)
                if v is not None and self.low <= v <= self.high
            ]
        )

    def describe(self) -> str:
        return f"{self.column} in [{self.low:.2f}, {self.high:.2f}]"


class SourceIDPredicate(BasePredicate):
    """Match log samples whose input source is selected.

    Parameters:
        source_ids: Selected category keys; ``None`` is the redacted bucket
    """

    group = FilterGroup.SOURCE_ID

    def __init__(self, source_ids: Optional[Iterable[Optional[str]]] = None):
        self.source_ids: Set[Optional[str]] = {None if s is None else str(s) for s in (source_ids or [])}

    def match(self, store: RecordStore) -> PredicateMatch:
        if not self.source_ids:
            return PredicateMatch(indexes=[])
        return PredicateMatch(
            indexes=[
                i for i, (sid, is_train) in enumerate(zip(store.source_id, store.train))
                if not is_train and sid in self.source_ids
            ]
        )

    def describe(self) -> str:
        return f"{len(self.source_ids)} input sources"


class OtherSetPredicate(BasePredicate):
    """Match samples that also belong to selected external challenge sets.

    Parameters:
        overlap: External set name -> sample indexes in this set
        selected: Selected external set names
    """

    group = FilterGroup.OTHER_SET

    def __init__(
        self,
        overlap: Optional[Dict[str, List[int]]] = None,
        selected: Optional[Iterable[str]] = None,
    ):
        self.overlap = overlap or {}
        self.selected = list(selected or [])

    def match(self, store: RecordStore) -> PredicateMatch:
        if not self.selected:
            return PredicateMatch(indexes=[])
        selected_indexes: Set[int] = set()
        for name in self.selected:
            selected_indexes.update(self.overlap.get(name, []))
        return PredicateMatch(
            indexes=sorted(i for i in selected_indexes if 0 <= i < store.count)
        )

    def describe(self) -> str:
        return f"{len(self.selected)} overlapping sets"


class EmbeddingPredicate(BasePredicate):
    """Spatial selection in the 2-D embedding plane.

    Either a rectangle or a lasso polygon (even-odd rule) can be given.

    Parameters:
        x_min, x_max, y_min, y_max: Rectangle bounds (inclusive)
        polygon: Lasso vertices as ``[[x, y], ...]`` (at least 3)
    """

    group = FilterGroup.EMBEDDING

    def __init__(
        self,
        x_min: Optional[float] = None,
        x_max: Optional[float] = None,
        y_min: Optional[float] = None,
        y_max: Optional[float] = None,
        polygon: Optional[List[List[float]]] = None,
    ):
        self.polygon = None
        self.rect = None
        if polygon is not None:
            if len(polygon) < 3:
                raise PredicateError("A lasso needs at least 3 vertices")
            try:
                ragged = any(len(vertex) != 2 for vertex in polygon)
                if not ragged:
                    self.polygon = np.asarray(polygon, dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise PredicateError(f"Invalid lasso vertices: {e}") from e
            if ragged:
                raise PredicateError("Lasso vertices must be [x, y] pairs")
            if not np.isfinite(self.polygon).all():
                raise PredicateError("Lasso vertices must be finite numbers")
        elif None not in (x_min, x_max, y_min, y_max):
            self.rect = (
                min(x_min, x_max),
                max(x_min, x_max),
                min(y_min, y_max),
                max(y_min, y_max),
            )
        else:
            raise PredicateError("Embedding selection needs a rectangle or a polygon")

    def match(self, store: RecordStore) -> PredicateMatch:
        xs = np.asarray(store.x, dtype=np.float64)
        ys = np.asarray(store.y, dtype=np.float64)

        if self.rect is not None:
            x0, x1, y0, y1 = self.rect
            inside = (xs >= x0) & (xs <= x1) & (ys >= y0) & (ys <= y1)
        else:
            inside = np.zeros(xs.shape[0], dtype=bool)
            vertices = self.polygon
            j = len(vertices) - 1
            for i in range(len(vertices)):
                xi, yi = vertices[i]
                xj, yj = vertices[j]
                crosses = (yi > ys) != (yj > ys)
                with np.errstate(divide="ignore", invalid="ignore"):
                    x_cross = (xj - xi) * (ys - yi) / (yj - yi) + xi
                inside ^= crosses & (xs < x_cross)
                j = i

        return PredicateMatch(indexes=np.flatnonzero(inside).tolist())

    def describe(self) -> str:
        if self.rect is not None:
            return "rectangle selection"
        return f"lasso with {len(self.polygon)} vertices"


def get_predicate_methods() -> List[Dict[str, Any]]:
    """Get list of available predicates with metadata.

    Returns:
        List of method info dicts with name, group, description, params
    """
    predicate_info = [
        {
            "name": "DatePredicate",
            "group": FilterGroup.DATE,
            "description": "Keep samples requested on the selected dates",
            "params": {"dates": {"required": False, "default": [], "type": "list"}},
        },
        {
            "name": "SearchPredicate",
            "group": FilterGroup.SEARCH,
            "description": "Keep samples whose source matches a case-insensitive search key",
            "params": {"key": {"required": False, "default": "", "type": "string"}},
        },
        {
            "name": "KeywordPredicate",
            "group": FilterGroup.KEYWORD,
            "description": "Keep samples containing any of the selected keywords",
            "params": {"keywords": {"required": False, "default": [], "type": "list"}},
        },
        {
            "name": "RangePredicate",
            "group": None,
            "description": "Keep samples whose ChrF or familiarity score is inside a range",
            "params": {
                "column": {"required": True, "type": "string", "options": ["chrf", "familiarity"]},
                "low": {"required": True, "type": "float"},
                "high": {"required": True, "type": "float"},
            },
        },
        {
            "name": "SourceIDPredicate",
            "group": FilterGroup.SOURCE_ID,
            "description": "Keep log samples from the selected input sources",
            "params": {"source_ids": {"required": False, "default": [], "type": "list"}},
        },
        {
            "name": "OtherSetPredicate",
            "group": FilterGroup.OTHER_SET,
            "description": "Keep samples shared with the selected challenge sets",
            "params": {
                "overlap": {"required": False, "default": {}, "type": "dict"},
                "selected": {"required": False, "default": [], "type": "list"},
            },
        },
        {
            "name": "EmbeddingPredicate",
            "group": FilterGroup.EMBEDDING,
            "description": "Keep samples inside a rectangle or lasso in the embedding plane",
            "params": {
                "x_min": {"required": False, "default": None, "type": "float"},
                "x_max": {"required": False, "default": None, "type": "float"},
                "y_min": {"required": False, "default": None, "type": "float"},
                "y_max": {"required": False, "default": None, "type": "float"},
                "polygon": {"required": False, "default": None, "type": "list"},
            },
        },
    ]

    methods = []
    for info in predicate_info:
        methods.append({
            "name": info["name"],
            "group": info["group"].value if info["group"] is not None else None,
            "description": info["description"],
            "params": info["params"],
            "type": "predicate",
        })
    return methods
