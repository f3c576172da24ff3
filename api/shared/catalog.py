"""
Challenge set catalog: metadata entries, table sorting, previews and
per-row score histograms.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .aggregators import KeywordItem, keyword_list
from .binning import ROW_THRESHOLD_COUNT, bin_counts, bin_edges
from .record_store import RecordStore

ROW_HISTOGRAM_METRICS = ("chrf", "familiarity")


class ChallengeSetType(str, Enum):
    TOPIC = "topic"
    UNIT_TEST = "unit-test"


class HeaderKey(str, Enum):
    """Sortable columns of the catalog table."""

    DISPLAY_NAME = "displayName"
    LOG_COUNT = "logCount"
    TRAIN_COUNT = "trainCount"
    CHRF = "chrf"
    FAMILIARITY = "familiarity"
    TRAIN_LOG_RATIO = "trainLogRatio"


class ChallengeSet(BaseModel):
    """One entry of ``challenge-set-meta.json``."""

    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName")
    display_name: str = Field(..., alias="displayName")
    count: int = 0
    log_count: int = Field(0, alias="logCount")
    train_count: int = Field(0, alias="trainCount")
    type: ChallengeSetType = ChallengeSetType.TOPIC
    chrf: Optional[float] = None
    familiarity: Optional[float] = None
    train_log_ratio: Optional[float] = Field(None, alias="trainLogRatio")

    @property
    def overlap_table(self) -> str:
        """Key of this set's type in the intersection data."""
        return "topics" if self.type == ChallengeSetType.TOPIC else "tests"

    @property
    def export_file_name(self) -> str:
        return f"challenge-set-{self.display_name}.json"


class ChallengeSetMeta(BaseModel):
    challenge_sets: List[ChallengeSet] = Field(default_factory=list, alias="challengeSets")


class PreviewSentence(BaseModel):
    source: str
    hyp: str


class ChallengeSetPreview(BaseModel):
    file_name: str
    display_name: str
    sentences: List[PreviewSentence]
    keywords: List[KeywordItem]


class RowHistogramBin(BaseModel):
    bin_start: float
    bin_end: float
    count: int


_SORT_ATTRIBUTES = {
    HeaderKey.DISPLAY_NAME: "display_name",
    HeaderKey.LOG_COUNT: "log_count",
    HeaderKey.TRAIN_COUNT: "train_count",
    HeaderKey.CHRF: "chrf",
    HeaderKey.FAMILIARITY: "familiarity",
    HeaderKey.TRAIN_LOG_RATIO: "train_log_ratio",
}


def list_challenge_sets(
    sets: Iterable[ChallengeSet],
    types: Optional[Sequence[ChallengeSetType]] = None,
    sort: Optional[HeaderKey] = None,
    descending: bool = False,
) -> List[ChallengeSet]:
    """Filter the catalog by type and sort it by one column.

    Entries without a value for the sort column always come last.
    """
    result = [s for s in sets if not types or s.type in types]
    if sort is None:
        return result

    attribute = _SORT_ATTRIBUTES[HeaderKey(sort)]
    present = [s for s in result if getattr(s, attribute) is not None]
    missing = [s for s in result if getattr(s, attribute) is None]

    if attribute == "display_name":
        present.sort(key=lambda s: s.display_name.lower(), reverse=descending)
    else:
        present.sort(key=lambda s: getattr(s, attribute), reverse=descending)
    return present + missing


def build_preview(
    challenge_set: ChallengeSet,
    store: RecordStore,
    preview_size: int = 100,
    max_keywords: int = 50,
) -> ChallengeSetPreview:
    """First ``preview_size`` distinct sources that have a translation."""
    seen = set()
    sentences = []
    for source, hyp in zip(store.source, store.hyp):
        if len(sentences) >= preview_size:
            break
        if not hyp or source in seen:
            continue
        seen.add(source)
        sentences.append(PreviewSentence(source=source, hyp=hyp))

    return ChallengeSetPreview(
        file_name=challenge_set.file_name,
        display_name=challenge_set.display_name,
        sentences=sentences,
        keywords=keyword_list(store.keywords, max_keywords=max_keywords),
    )


def row_histogram(store: RecordStore, metric: str) -> List[RowHistogramBin]:
    """Ten-bin histogram of a score column for a catalog row."""
    if metric not in ROW_HISTOGRAM_METRICS:
        raise ValueError(f"No row histogram for metric: {metric}")
    counts = bin_counts(store.values(metric), ROW_THRESHOLD_COUNT)
    return [
        RowHistogramBin(bin_start=start, bin_end=end, count=c)
        for (start, end), c in zip(bin_edges(ROW_THRESHOLD_COUNT), counts)
    ]
