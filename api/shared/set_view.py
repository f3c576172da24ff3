"""
Per-view filter state for one open challenge set.

A ``SetView`` owns the record store of the set, the predicate groups and the
selection state of every plot. Each mutation re-runs the whole cycle:
predicate -> intersection -> aggregators -> listeners. All of it runs under
the view's own reentrant lock, so sync endpoints served from the thread pool
never observe a half-updated view.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel

from . import aggregators
from .aggregators import (
    CategoryCountResult,
    CategoryUniverse,
    DailyCountResult,
    EmbeddingPoint,
    HistogramResult,
    KeywordItem,
    OverlapCountResult,
    SentenceRecord,
)
from .catalog import ChallengeSet
from .intersection import PredicateGroups, shift_indexes
from .logger import get_logger
from .predicates import (
    MAX_SEARCH_LENGTH,
    NO_MATCH_SENTINEL,
    BasePredicate,
    DatePredicate,
    EmbeddingPredicate,
    FilterGroup,
    KeywordPredicate,
    OtherSetPredicate,
    PredicateError,
    RangePredicate,
    SearchPredicate,
    SourceIDPredicate,
    Span,
)
from .record_store import RecordStore

logger = get_logger(__name__)

SCORE_METRICS = ("chrf", "familiarity")
THUMBNAIL_KEYWORDS = 10


class PlotType(str, Enum):
    KEYWORD = "keyword"
    CHRF = "chrf"
    SOURCE_ID = "source id"
    EMBEDDING = "embedding"
    FAMILIARITY = "familiarity"
    UNIT_TEST = "unit test"


class PlotMode(str, Enum):
    FOCUS = "focus"
    THUMBNAIL = "thumbnail"


class ViewSelections(BaseModel):
    """Raw selection state behind the predicate groups."""

    dates: List[str] = []
    search: str = ""
    keywords: List[str] = []
    chrf: Optional[Tuple[float, float]] = None
    familiarity: Optional[Tuple[float, float]] = None
    source_ids: List[Optional[str]] = []
    other_sets: List[str] = []
    embedding: Optional[Dict[str, Any]] = None
    show_train: bool = True
    show_log: bool = True


class ViewCharts(BaseModel):
    """Chart data; a chart that could not be computed is None."""

    timeline: Optional[DailyCountResult] = None
    chrf: Optional[HistogramResult] = None
    familiarity: Optional[HistogramResult] = None
    source_id: Optional[CategoryCountResult] = None
    other_sets: Optional[OverlapCountResult] = None
    keywords: Optional[List[KeywordItem]] = None
    embedding: Optional[List[EmbeddingPoint]] = None


class ViewSnapshot(BaseModel):
    view_id: str
    file_name: str
    display_name: str
    count: int
    visible_indexes: List[int]
    visible_count: int
    training_count: int
    log_count: int
    sentence_caption: str
    filter_tags: List[Dict[str, str]]
    groups: Dict[str, List[int]]
    selections: ViewSelections
    charts: ViewCharts
    sentences: List[SentenceRecord]


Listener = Callable[[ViewSnapshot], None]


class SetView:
    """Filtering session over one challenge set."""

    def __init__(
        self,
        challenge_set: ChallengeSet,
        store: RecordStore,
        source_id_map: Optional[Mapping[str, Any]] = None,
        intersections: Optional[Mapping[str, Any]] = None,
        view_id: Optional[str] = None,
        max_keywords: int = aggregators.MAX_KEYWORDS,
        top_k_overlap: int = aggregators.TOP_K_OVERLAP,
    ):
        self.id = view_id or str(uuid.uuid4())
        self.challenge_set = challenge_set
        self.store = store
        self.groups = PredicateGroups()
        self.max_keywords = max_keywords

        self.selected_dates: List[str] = []
        self.search_key = ""
        self.selected_keywords: List[str] = []
        self.brushes: Dict[str, Optional[Tuple[float, float]]] = {m: None for m in SCORE_METRICS}
        self.selected_source_ids: List[Optional[str]] = []
        self.selected_other_sets: List[str] = []
        self.embedding_selection: Optional[Dict[str, Any]] = None
        self.show_train = True
        self.show_log = True
        self.search_spans: Dict[int, List[Span]] = {}
        self.keyword_spans: Dict[int, List[Span]] = {}

        self.universe: Optional[CategoryUniverse] = None
        if source_id_map is None:
            logger.warning("No source id map for %s, input source chart disabled", challenge_set.file_name)
        else:
            self.universe = CategoryUniverse.build(store, source_id_map)

        self.overlap: Optional[Dict[str, List[int]]] = None
        self.top_sets: List[str] = []
        overlap = _overlap_for(challenge_set, intersections)
        if overlap is None:
            logger.warning("No intersection data for %s, overlap chart disabled", challenge_set.file_name)
        else:
            self.overlap = {name: list(indexes) for name, indexes in overlap.items()}
            self.top_sets = aggregators.select_top_sets(self.overlap, top_k_overlap)

        self.date_axis = aggregators.build_date_axis(store)

        self._totals: Dict[str, int] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._snapshot: Optional[ViewSnapshot] = None

    # ----- notification -----

    def subscribe(self, callback: Listener) -> Callable[[], None]:
        """Register a listener called with every new snapshot.

        Returns a function that removes the listener.
        """
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, snapshot: ViewSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("Error in view listener for %s: %s", self.id, e)

    # ----- recompute -----

    def sync_filters(self) -> ViewSnapshot:
        """Recompute the visible set and every chart, then notify listeners."""
        with self._lock:
            snapshot = self._compute()
            self._snapshot = snapshot
        self._notify(snapshot)
        return snapshot

    def snapshot(self) -> ViewSnapshot:
        """Latest snapshot, computing it on first use."""
        with self._lock:
            if self._snapshot is not None:
                return self._snapshot
        return self.sync_filters()

    def _compute(self) -> ViewSnapshot:
        store = self.store
        visible = self.groups.intersect(store.count)
        training, log = aggregators.split_counts(store, visible)

        charts = ViewCharts(
            timeline=self._chart("timeline", lambda: self._remember_total(
                "timeline",
                aggregators.daily_counts(store, visible, self.date_axis, self._total("timeline")),
            )),
            chrf=self._chart("chrf", lambda: self._histogram("chrf", visible)),
            familiarity=self._chart("familiarity", lambda: self._histogram("familiarity", visible)),
            source_id=self._chart("source_id", lambda: self._source_counts(visible)),
            other_sets=self._chart("other_sets", lambda: self._overlap_counts(visible)),
            keywords=self._chart("keywords", lambda: aggregators.keyword_list(
                store.keywords, self.selected_keywords, self.max_keywords)),
            embedding=self._chart("embedding", lambda: aggregators.embedding_points(
                store, visible, show_train=self.show_train, show_log=self.show_log)),
        )

        sentences = aggregators.sentence_list(store, visible, self.search_spans, self.keyword_spans)

        return ViewSnapshot(
            view_id=self.id,
            file_name=self.challenge_set.file_name,
            display_name=self.challenge_set.display_name,
            count=store.count,
            visible_indexes=visible,
            visible_count=len(visible),
            training_count=training,
            log_count=log,
            sentence_caption=aggregators.count_caption(len(visible), store.count, "samples"),
            filter_tags=[t.to_dict() for t in self.groups.tags],
            groups=self.groups.to_dict(),
            selections=self.selections(),
            charts=charts,
            sentences=sentences,
        )

    def _chart(self, name: str, compute: Callable[[], Any]) -> Any:
        try:
            return compute()
        except Exception as e:
            logger.error("Failed to compute %s chart for view %s: %s", name, self.id, e)
            return None

    def _total(self, name: str) -> Optional[int]:
        return self._totals.get(name)

    def _remember_total(self, name: str, result: Any) -> Any:
        self._totals.setdefault(name, result.total)
        return result

    def _histogram(self, metric: str, visible: Sequence[int]) -> HistogramResult:
        result = aggregators.continuous_histogram(self.store, visible, metric, self._total(metric))
        return self._remember_total(metric, result)

    def _source_counts(self, visible: Sequence[int]) -> Optional[CategoryCountResult]:
        if self.universe is None:
            return None
        result = aggregators.categorical_counts(self.store, visible, self.universe, self._total("source_id"))
        result.selected = list(self.selected_source_ids)
        return self._remember_total("source_id", result)

    def _overlap_counts(self, visible: Sequence[int]) -> Optional[OverlapCountResult]:
        if self.overlap is None:
            return None
        result = aggregators.overlap_counts(
            self.store,
            visible,
            self.overlap,
            self.top_sets,
            self.challenge_set.type.value,
            self._total("other_sets"),
        )
        result.selected = list(self.selected_other_sets)
        return self._remember_total("other_sets", result)

    def selections(self) -> ViewSelections:
        return ViewSelections(
            dates=list(self.selected_dates),
            search=self.search_key,
            keywords=list(self.selected_keywords),
            chrf=self.brushes["chrf"],
            familiarity=self.brushes["familiarity"],
            source_ids=list(self.selected_source_ids),
            other_sets=list(self.selected_other_sets),
            embedding=self.embedding_selection,
            show_train=self.show_train,
            show_log=self.show_log,
        )

    def _apply(self, predicate: BasePredicate, active: bool = True):
        """Run a predicate and store its indexes in the predicate's group.

        An active selection that matches nothing keeps its group active.
        """
        match = predicate.match(self.store)
        indexes = match.indexes
        logger.debug("View %s: %s matched %d samples", self.id, predicate.describe(), len(indexes))
        if active and not indexes:
            indexes = [NO_MATCH_SENTINEL]
        self.groups.set_group(predicate.group, indexes)
        return match

    # ----- dates -----

    def set_dates(self, dates: Sequence[Any]) -> ViewSnapshot:
        with self._lock:
            try:
                selected = sorted({_date_key(d) for d in dates})
            except PredicateError as e:
                logger.warning("Ignoring date selection on view %s: %s", self.id, e)
                return self.snapshot()
            self.selected_dates = selected
            if self.selected_dates:
                self._apply(DatePredicate(self.selected_dates))
            else:
                self.groups.clear(FilterGroup.DATE)
            return self.sync_filters()

    def select_date_range(self, start: Any, end: Any) -> ViewSnapshot:
        """Timeline brush: select every axis day in ``[start, end)``."""
        try:
            low, high = int(_date_key(start)), int(_date_key(end))
        except PredicateError as e:
            logger.warning("Ignoring timeline brush on view %s: %s", self.id, e)
            return self.snapshot()
        with self._lock:
            days = [str(d) for d in self.date_axis if low <= d < high]
            return self.set_dates(days)

    def clear_dates(self) -> ViewSnapshot:
        return self.set_dates([])

    # ----- search -----

    def set_search(self, key: Optional[str]) -> ViewSnapshot:
        if key and len(key) > MAX_SEARCH_LENGTH:
            logger.warning("Ignoring search key of %d characters on view %s", len(key), self.id)
            return self.snapshot()
        with self._lock:
            self.search_key = key or ""
            if self.search_key:
                match = self._apply(SearchPredicate(self.search_key))
                self.search_spans = match.spans
            else:
                self.groups.clear(FilterGroup.SEARCH)
                self.search_spans = {}
            return self.sync_filters()

    def reset_search(self) -> ViewSnapshot:
        return self.set_search("")

    # ----- keywords -----

    def toggle_keyword(self, word: str) -> ViewSnapshot:
        with self._lock:
            if not word:
                logger.warning("Ignoring empty keyword toggle on view %s", self.id)
                return self.snapshot()
            if word in self.selected_keywords:
                self.selected_keywords.remove(word)
            else:
                self.selected_keywords.append(word)
            return self._apply_keywords()

    def reset_keywords(self) -> ViewSnapshot:
        with self._lock:
            self.selected_keywords = []
            return self._apply_keywords()

    def _apply_keywords(self) -> ViewSnapshot:
        if self.selected_keywords:
            match = self._apply(KeywordPredicate(self.selected_keywords))
            self.keyword_spans = match.spans
        else:
            self.groups.clear(FilterGroup.KEYWORD)
            self.keyword_spans = {}
        return self.sync_filters()

    # ----- score brushes -----

    def brush(self, metric: str, selection: Optional[Sequence[float]]) -> ViewSnapshot:
        """Apply a range brush on the ChrF or familiarity histogram.

        ``selection`` is ``[start, end]`` in score space or None when the
        brush was cleared. Both ends are snapped to histogram bin edges; a
        brush that snaps to the current bounds does not recompute.
        """
        if metric not in SCORE_METRICS:
            raise PredicateError(f"Unknown score metric: {metric}")
        if selection is None:
            return self.reset_brush(metric)

        with self._lock:
            if all(v is None for v in self.store.values(metric)):
                logger.warning("Ignoring %s brush on view %s: no scores", metric, self.id)
                return self.snapshot()
            try:
                predicate = RangePredicate.from_brush(metric, selection)
            except PredicateError as e:
                logger.warning("Ignoring %s brush on view %s: %s", metric, self.id, e)
                return self.snapshot()

            if self.brushes[metric] == predicate.bounds:
                return self.snapshot()
            self.brushes[metric] = predicate.bounds
            self._apply(predicate)
            return self.sync_filters()

    def reset_brush(self, metric: str) -> ViewSnapshot:
        if metric not in SCORE_METRICS:
            raise PredicateError(f"Unknown score metric: {metric}")
        with self._lock:
            self.brushes[metric] = None
            self.groups.clear(RangePredicate.COLUMN_GROUPS[metric])
            return self.sync_filters()

    # ----- input sources -----

    def toggle_source_id(self, key: Optional[str]) -> ViewSnapshot:
        with self._lock:
            if self.universe is None or key not in self.universe:
                logger.warning("Ignoring unknown input source %r on view %s", key, self.id)
                return self.snapshot()
            if key in self.selected_source_ids:
                self.selected_source_ids.remove(key)
            else:
                self.selected_source_ids.append(key)

            if self.selected_source_ids:
                self._apply(SourceIDPredicate(self.selected_source_ids))
            else:
                self.groups.clear(FilterGroup.SOURCE_ID)
            return self.sync_filters()

    def reset_source_ids(self) -> ViewSnapshot:
        with self._lock:
            self.selected_source_ids = []
            self.groups.clear(FilterGroup.SOURCE_ID)
            return self.sync_filters()

    # ----- overlapping sets -----

    def toggle_other_set(self, name: str) -> ViewSnapshot:
        with self._lock:
            if self.overlap is None or name not in self.overlap:
                logger.warning("Ignoring unknown overlapping set %r on view %s", name, self.id)
                return self.snapshot()
            if name in self.selected_other_sets:
                self.selected_other_sets.remove(name)
            else:
                self.selected_other_sets.append(name)

            if self.selected_other_sets:
                self._apply(OtherSetPredicate(self.overlap, self.selected_other_sets))
            else:
                self.groups.clear(FilterGroup.OTHER_SET)
            return self.sync_filters()

    def reset_other_sets(self) -> ViewSnapshot:
        with self._lock:
            self.selected_other_sets = []
            self.groups.clear(FilterGroup.OTHER_SET)
            return self.sync_filters()

    # ----- embedding -----

    def select_embedding(
        self,
        rect: Optional[Mapping[str, float]] = None,
        polygon: Optional[List[List[float]]] = None,
    ) -> ViewSnapshot:
        """Rectangle (``x_min``, ``x_max``, ``y_min``, ``y_max``) or lasso selection."""
        with self._lock:
            try:
                if polygon is not None:
                    predicate = EmbeddingPredicate(polygon=polygon)
                    selection = {"polygon": [list(p) for p in polygon]}
                elif rect is not None:
                    predicate = EmbeddingPredicate(**{k: rect.get(k) for k in ("x_min", "x_max", "y_min", "y_max")})
                    selection = {"rect": dict(rect)}
                else:
                    raise PredicateError("Embedding selection needs a rectangle or a polygon")
            except PredicateError as e:
                logger.warning("Ignoring embedding selection on view %s: %s", self.id, e)
                return self.snapshot()

            self.embedding_selection = selection
            self._apply(predicate)
            return self.sync_filters()

    def reset_embedding(self) -> ViewSnapshot:
        with self._lock:
            self.embedding_selection = None
            self.groups.clear(FilterGroup.EMBEDDING)
            return self.sync_filters()

    def set_embedding_layers(
        self, show_train: Optional[bool] = None, show_log: Optional[bool] = None
    ) -> ViewSnapshot:
        """Show or hide training and log points on the embedding plot.

        Hidden points stay visible everywhere else; this is not a filter.
        """
        with self._lock:
            if show_train is not None:
                self.show_train = show_train
            if show_log is not None:
                self.show_log = show_log
            return self.sync_filters()

    # ----- tags & plots -----

    def close_tag(self, group: FilterGroup) -> ViewSnapshot:
        """Reset the filter behind a removed filter tag."""
        group = FilterGroup(group)
        if group == FilterGroup.DATE:
            return self.clear_dates()
        if group == FilterGroup.KEYWORD:
            return self.reset_keywords()
        if group == FilterGroup.EMBEDDING:
            return self.reset_embedding()
        if group in (FilterGroup.CHRF, FilterGroup.FAMILIARITY):
            return self.reset_brush(group.value)
        if group == FilterGroup.SOURCE_ID:
            return self.reset_source_ids()
        if group == FilterGroup.OTHER_SET:
            return self.reset_other_sets()
        return self.reset_search()

    def plot(self, plot_type: PlotType, mode: PlotMode = PlotMode.FOCUS) -> Any:
        handlers = PLOT_HANDLERS[PlotType(plot_type)]
        handler = handlers.focus if PlotMode(mode) == PlotMode.FOCUS else handlers.thumbnail
        with self._lock:
            return handler(self)

    def reset_plot(self, plot_type: PlotType) -> ViewSnapshot:
        return PLOT_HANDLERS[PlotType(plot_type)].reset(self)

    # ----- deletion & export -----

    def delete_sample(self, source: str) -> ViewSnapshot:
        """Delete the first sample whose source text equals ``source``."""
        with self._lock:
            index = self.store.index_of_source(source)
            if index is None:
                logger.warning("No sample with source %r in view %s", source, self.id)
                return self.snapshot()

            self.store.delete(index)
            self.groups.remove_index(index)
            self.search_spans = _shift_span_map(self.search_spans, index)
            self.keyword_spans = _shift_span_map(self.keyword_spans, index)
            if self.overlap is not None:
                self.overlap = {name: shift_indexes(idx, index) for name, idx in self.overlap.items()}
            self._totals.clear()
            logger.info("Deleted sample %d from view %s", index, self.id)
            return self.sync_filters()

    def export(self) -> Dict[str, List[str]]:
        """Source and translation of the visible samples, in visible order."""
        with self._lock:
            visible = self.snapshot().visible_indexes
            return {
                "source": [self.store.source[i] for i in visible],
                "translation": [self.store.hyp[i] for i in visible],
            }

    @property
    def export_file_name(self) -> str:
        return self.challenge_set.export_file_name


# ============= Plot Dispatch =============


@dataclass(frozen=True)
class PlotHandlers:
    focus: Callable[[SetView], Any]
    thumbnail: Callable[[SetView], Any]
    reset: Callable[[SetView], ViewSnapshot]


def _counts(result: Optional[BaseModel]) -> Optional[List[int]]:
    if result is None:
        return None
    return [b.count for b in result.bins]


def _keyword_thumbnail(view: SetView) -> Optional[List[KeywordItem]]:
    items = view.snapshot().charts.keywords
    return None if items is None else items[:THUMBNAIL_KEYWORDS]


def _embedding_thumbnail(view: SetView) -> Dict[str, int]:
    snapshot = view.snapshot()
    return {"training_count": snapshot.training_count, "log_count": snapshot.log_count}


PLOT_HANDLERS: Dict[PlotType, PlotHandlers] = {
    PlotType.KEYWORD: PlotHandlers(
        focus=lambda v: v.snapshot().charts.keywords,
        thumbnail=_keyword_thumbnail,
        reset=lambda v: v.reset_keywords(),
    ),
    PlotType.CHRF: PlotHandlers(
        focus=lambda v: v.snapshot().charts.chrf,
        thumbnail=lambda v: _counts(v.snapshot().charts.chrf),
        reset=lambda v: v.reset_brush("chrf"),
    ),
    PlotType.SOURCE_ID: PlotHandlers(
        focus=lambda v: v.snapshot().charts.source_id,
        thumbnail=lambda v: _counts(v.snapshot().charts.source_id),
        reset=lambda v: v.reset_source_ids(),
    ),
    PlotType.EMBEDDING: PlotHandlers(
        focus=lambda v: v.snapshot().charts.embedding,
        thumbnail=_embedding_thumbnail,
        reset=lambda v: v.reset_embedding(),
    ),
    PlotType.FAMILIARITY: PlotHandlers(
        focus=lambda v: v.snapshot().charts.familiarity,
        thumbnail=lambda v: _counts(v.snapshot().charts.familiarity),
        reset=lambda v: v.reset_brush("familiarity"),
    ),
    PlotType.UNIT_TEST: PlotHandlers(
        focus=lambda v: v.snapshot().charts.other_sets,
        thumbnail=lambda v: _counts(v.snapshot().charts.other_sets),
        reset=lambda v: v.reset_other_sets(),
    ),
}


# ============= Helpers =============


def _overlap_for(
    challenge_set: ChallengeSet,
    intersections: Optional[Mapping[str, Any]],
) -> Optional[Mapping[str, List[int]]]:
    if intersections is None:
        return None
    table = intersections.get(challenge_set.overlap_table) or {}
    return table.get(challenge_set.file_name)


def _date_key(value: Any) -> str:
    """Normalize ``20230102``, ``"20230102"`` or ``"2023-01-02"`` to ``"20230102"``."""
    text = str(value).strip().replace("-", "")
    if len(text) != 8 or not text.isdigit():
        raise PredicateError(f"Invalid date: {value!r}")
    return text


def _shift_span_map(spans: Dict[int, List[Span]], removed: int) -> Dict[int, List[Span]]:
    return {
        (i - 1 if i > removed else i): s
        for i, s in spans.items()
        if i != removed
    }
