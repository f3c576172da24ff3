"""
Chart data derived from the visible sample indexes.

Every function here is a pure function of the record store, the current
visible indexes and fixed per-chart configuration (bin edges, category
universe, top overlapping sets, date axis). Nothing is cached between
calls; callers that want a grand total computed only once pass it in.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date as Date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel

from .binning import SCORE_THRESHOLD_COUNT, bin_counts, bin_edges, valid_scores
from .logger import get_logger
from .predicates import HighlightKind, Span
from .record_store import RecordStore

logger = get_logger(__name__)

REDACTED_LABEL = "Redacted/Others"
TOP_K_OVERLAP = 15
MAX_KEYWORDS = 50
MAX_OVERLAP_NAME_LENGTH = 35

METRIC_UNITS = {
    "chrf": "training samples",
    "familiarity": "log samples",
}


# ============= Result Models =============


class HistogramBin(BaseModel):
    """A single score histogram bin."""

    bin_start: float
    bin_end: float
    count: int


class HistogramResult(BaseModel):
    metric: str
    bins: List[HistogramBin]
    total: int
    filtered_total: int
    caption: str


class CategoryBin(BaseModel):
    id: Optional[str]
    display_name: str
    count: int


class CategoryCountResult(BaseModel):
    bins: List[CategoryBin]
    selected: List[Optional[str]] = []
    total: int
    filtered_total: int
    caption: str


class OverlapBin(BaseModel):
    name: str
    display_name: str
    count: int
    size: int


class OverlapCountResult(BaseModel):
    bins: List[OverlapBin]
    selected: List[str] = []
    total: int
    filtered_total: int
    caption: str


class DayCount(BaseModel):
    date: int
    day: str
    count: int


class DailyCountResult(BaseModel):
    days: List[DayCount]
    total: int
    filtered_total: int
    caption: str


class SentenceRecord(BaseModel):
    index: int
    source: str
    hyp: str
    type: str
    highlight_range: Optional[List[List[int]]] = None


class KeywordItem(BaseModel):
    word: str
    value: float
    strength: float
    selected: bool = False


class EmbeddingPoint(BaseModel):
    index: int
    x: float
    y: float
    is_train: bool


def count_caption(filtered_total: int, total: int, unit: str) -> str:
    """Subheader such as ``(12 out of 40 log samples)``."""
    if filtered_total == total:
        return f"({total} {unit})"
    return f"({filtered_total} out of {total} {unit})"


# ============= Continuous Scores =============


def metric_total(store: RecordStore, metric: str) -> int:
    """Number of samples with a binnable score for ``metric``, ignoring filters."""
    return int(valid_scores(store.values(metric)).size)


def continuous_histogram(
    store: RecordStore,
    visible: Sequence[int],
    metric: str,
    total: Optional[int] = None,
) -> HistogramResult:
    """Bin the visible scores of ``metric`` into 20 bins over [0, 1].

    The filtered total counts exactly the values that landed in a bin.
    """
    column = store.values(metric)
    counts = bin_counts([column[i] for i in visible], SCORE_THRESHOLD_COUNT)
    filtered_total = sum(counts)
    bins = [
        HistogramBin(bin_start=start, bin_end=end, count=c)
        for (start, end), c in zip(bin_edges(SCORE_THRESHOLD_COUNT), counts)
    ]
    if total is None:
        total = metric_total(store, metric)
    unit = METRIC_UNITS.get(metric, "samples")
    return HistogramResult(
        metric=metric,
        bins=bins,
        total=total,
        filtered_total=filtered_total,
        caption=count_caption(filtered_total, total, unit),
    )


# ============= Input Sources =============


@dataclass
class CategoryUniverse:
    """Fixed, ordered set of input source categories for one view.

    Order is descending by the count over the full store at the time the
    universe is built and never changes afterwards.
    """

    keys: List[Optional[str]]
    display_names: Dict[Optional[str], str] = field(default_factory=dict)

    @classmethod
    def build(cls, store: RecordStore, source_id_map: Mapping[str, object]) -> "CategoryUniverse":
        keys: List[Optional[str]] = [str(k) for k in source_id_map.keys()]
        keys.append(None)
        for sid in store.source_id:
            if sid not in keys:
                keys.append(sid)

        display_names: Dict[Optional[str], str] = {}
        for key in keys:
            display_names[key] = source_display_name(key, source_id_map)

        full = _count_log_sources(store, range(store.count), keys)
        keys.sort(key=lambda k: -full[k])
        return cls(keys=keys, display_names=display_names)

    def __contains__(self, key: Optional[str]) -> bool:
        return key in self.display_names


def source_display_name(key: Optional[str], source_id_map: Mapping[str, object]) -> str:
    if key is None:
        return REDACTED_LABEL
    entry = source_id_map.get(key)
    if entry is None:
        return key
    if isinstance(entry, (list, tuple)):
        return str(entry[1]) if len(entry) > 1 else str(entry[0])
    return str(entry)


def _count_log_sources(
    store: RecordStore,
    indexes,
    keys: Sequence[Optional[str]],
) -> Dict[Optional[str], int]:
    counts: Dict[Optional[str], int] = {k: 0 for k in keys}
    for i in indexes:
        if store.train[i]:
            continue
        sid = store.source_id[i]
        if sid in counts:
            counts[sid] += 1
    return counts


def source_total(store: RecordStore, universe: CategoryUniverse) -> int:
    return sum(_count_log_sources(store, range(store.count), universe.keys).values())


def categorical_counts(
    store: RecordStore,
    visible: Sequence[int],
    universe: CategoryUniverse,
    total: Optional[int] = None,
) -> CategoryCountResult:
    """Count visible log samples per input source, in universe order."""
    counts = _count_log_sources(store, visible, universe.keys)
    bins = [
        CategoryBin(id=key, display_name=universe.display_names[key], count=counts[key])
        for key in universe.keys
    ]
    filtered_total = sum(counts.values())
    if total is None:
        total = source_total(store, universe)
    return CategoryCountResult(
        bins=bins,
        total=total,
        filtered_total=filtered_total,
        caption=count_caption(filtered_total, total, "log samples"),
    )


# ============= Overlapping Challenge Sets =============


def overlap_display_name(name: str, set_type: str) -> str:
    """Shorten an external set name for the axis label."""
    if set_type == "topic":
        display = name.replace("challenge-test_", "")
    else:
        display = re.sub(r"challenge-topic-\d+_", "", name)
    if len(display) > MAX_OVERLAP_NAME_LENGTH:
        display = display[:MAX_OVERLAP_NAME_LENGTH] + "..."
    return display


def select_top_sets(overlap: Mapping[str, Sequence[int]], k: int = TOP_K_OVERLAP) -> List[str]:
    """Names of the ``k`` external sets with the largest overlap."""
    names = list(overlap.keys())
    names.sort(key=lambda n: -len(overlap[n]))
    return names[:k]


def overlap_total(store: RecordStore, overlap: Mapping[str, Sequence[int]], top_sets: Sequence[str]) -> int:
    covered = set()
    for name in top_sets:
        covered.update(i for i in overlap.get(name, []) if 0 <= i < store.count)
    return len(covered)


def overlap_counts(
    store: RecordStore,
    visible: Sequence[int],
    overlap: Mapping[str, Sequence[int]],
    top_sets: Sequence[str],
    set_type: str,
    total: Optional[int] = None,
) -> OverlapCountResult:
    """Count how many indexes of each top external set are visible."""
    visible_set = set(visible)
    bins = []
    covered = set()
    for name in top_sets:
        indexes = overlap.get(name, [])
        hits = [i for i in indexes if i in visible_set]
        covered.update(hits)
        bins.append(OverlapBin(
            name=name,
            display_name=overlap_display_name(name, set_type),
            count=len(hits),
            size=len(indexes),
        ))
    if total is None:
        total = overlap_total(store, overlap, top_sets)
    return OverlapCountResult(
        bins=bins,
        total=total,
        filtered_total=len(covered),
        caption=count_caption(len(covered), total, "samples"),
    )


# ============= Timeline =============


def parse_date(value: int) -> Optional[Date]:
    try:
        return datetime.strptime(str(value), "%Y%m%d").date()
    except ValueError:
        return None


def build_date_axis(store: RecordStore) -> List[int]:
    """Every day between the earliest and latest sample date, as YYYYMMDD."""
    days = []
    for value in set(d for d in store.date if d is not None):
        parsed = parse_date(value)
        if parsed is None:
            logger.warning("Ignoring malformed sample date %s", value)
            continue
        days.append(parsed)
    if not days:
        return []

    start, end = min(days), max(days)
    axis = []
    current = start
    while current <= end:
        axis.append(int(current.strftime("%Y%m%d")))
        current += timedelta(days=1)
    return axis


def daily_counts(
    store: RecordStore,
    visible: Sequence[int],
    axis: Sequence[int],
    total: Optional[int] = None,
) -> DailyCountResult:
    """Per-day count of visible samples over a dense date axis."""
    counts: Dict[int, int] = {d: 0 for d in axis}
    for i in visible:
        d = store.date[i]
        if d in counts:
            counts[d] += 1
    if total is None:
        total = sum(1 for d in store.date if d in counts)
    filtered_total = sum(counts.values())
    days = [
        DayCount(date=d, day=f"{str(d)[:4]}-{str(d)[4:6]}-{str(d)[6:]}", count=counts[d])
        for d in axis
    ]
    return DailyCountResult(
        days=days,
        total=total,
        filtered_total=filtered_total,
        caption=count_caption(filtered_total, total, "dated samples"),
    )


# ============= Sentences =============


def merge_highlights(
    search_spans: Optional[Sequence[Span]],
    keyword_spans: Optional[Sequence[Span]],
) -> Optional[List[List[int]]]:
    """Merge search and keyword spans into ``[start, length, kind]`` triples."""
    if not search_spans and not keyword_spans:
        return None
    merged = [[start, length, int(HighlightKind.SEARCH)] for start, length in (search_spans or [])]
    merged.extend([start, length, int(HighlightKind.KEYWORD)] for start, length in (keyword_spans or []))
    merged.sort(key=lambda r: r[0])
    return merged


def sentence_list(
    store: RecordStore,
    visible: Sequence[int],
    search_spans: Mapping[int, Sequence[Span]],
    keyword_spans: Mapping[int, Sequence[Span]],
) -> List[SentenceRecord]:
    """Display records for the visible samples, in visible order."""
    return [
        SentenceRecord(
            index=i,
            source=store.source[i],
            hyp=store.hyp[i],
            type="train" if store.train[i] else "log",
            highlight_range=merge_highlights(search_spans.get(i), keyword_spans.get(i)),
        )
        for i in visible
    ]


def split_counts(store: RecordStore, visible: Sequence[int]) -> Tuple[int, int]:
    """(training, log) sample counts among the visible indexes."""
    training = sum(1 for i in visible if store.train[i])
    return training, len(visible) - training


# ============= Keywords & Embedding =============


def keyword_list(
    keywords: Sequence[Tuple[str, float]],
    selected: Sequence[str] = (),
    max_keywords: int = MAX_KEYWORDS,
) -> List[KeywordItem]:
    """Top keywords sorted by descending value.

    ``strength`` rescales the values of the kept keywords onto [0, 1].
    """
    kept = list(keywords[:max_keywords])
    if not kept:
        return []
    values = [v for _, v in kept]
    low, high = min(values), max(values)
    selected_set = set(selected)

    items = [
        KeywordItem(
            word=w,
            value=v,
            strength=(v - low) / (high - low) if high > low else 0.5,
            selected=w in selected_set,
        )
        for w, v in kept
    ]
    items.sort(key=lambda k: -k.value)
    return items


def embedding_points(
    store: RecordStore,
    visible: Sequence[int],
    show_train: bool = True,
    show_log: bool = True,
) -> List[EmbeddingPoint]:
    return [
        EmbeddingPoint(index=i, x=store.x[i], y=store.y[i], is_train=store.train[i])
        for i in visible
        if (show_train and store.train[i]) or (show_log and not store.train[i])
    ]
