"""
Columnar record store for one challenge set.

A challenge set arrives as a JSON document of parallel arrays (one entry per
sample). The store keeps those columns index-aligned for the lifetime of a
set view; the only mutation is deleting one sample, which splices the same
position out of every column.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from .logger import get_logger

logger = get_logger(__name__)

# Columns spliced together on deletion
COLUMNS = ("source", "hyp", "x", "y", "source_id", "date", "train", "chrf", "familiarity")


class RecordStoreError(ValueError):
    """Raised when challenge set columns are inconsistent."""


class ChallengeDataPayload(BaseModel):
    """Wire format of a challenge set data file."""

    source: list[str] = Field(..., description="Source sentences")
    hyp: list[Optional[str]] = Field(..., description="Hypothesis (translation) sentences")
    x: list[float] = Field(default_factory=list, description="Embedding x coordinates")
    y: list[float] = Field(default_factory=list, description="Embedding y coordinates")
    source_id: list[Optional[str]] = Field(default_factory=list, description="Input source ids (null = redacted)")
    date: list[Optional[int]] = Field(default_factory=list, description="Request dates as YYYYMMDD")
    train: list[int] = Field(default_factory=list, description="1 for training samples, 0 for log samples")
    chrf: list[Optional[float]] = Field(default_factory=list, description="ChrF scores (training samples)")
    familiarity: list[Optional[float]] = Field(default_factory=list, description="Familiarity scores (log samples)")
    keywords: list[Tuple[str, float]] = Field(default_factory=list, description="Ranked keyword/weight pairs")

    @field_validator("source_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        # Some exports write numeric ids
        if isinstance(value, list):
            return [None if v is None else str(v) for v in value]
        return value


@dataclass
class RecordStore:
    """Parallel columns describing every sample of a challenge set."""

    source: List[str]
    hyp: List[str]
    x: List[float]
    y: List[float]
    source_id: List[Optional[str]]
    date: List[Optional[int]]
    train: List[bool]
    chrf: List[Optional[float]]
    familiarity: List[Optional[float]]
    keywords: List[Tuple[str, float]] = field(default_factory=list)

    def __post_init__(self):
        lengths = {name: len(getattr(self, name)) for name in COLUMNS}
        if len(set(lengths.values())) > 1:
            raise RecordStoreError(f"Column lengths differ: {lengths}")

    @classmethod
    def from_payload(cls, payload: ChallengeDataPayload | Dict[str, Any]) -> "RecordStore":
        """Build a store from a parsed challenge set document.

        Optional columns that are missing are filled with nulls so every
        column has ``len(source)`` entries.
        """
        if not isinstance(payload, ChallengeDataPayload):
            payload = ChallengeDataPayload.model_validate(payload)

        n = len(payload.source)

        def column(values: list, default: Any) -> list:
            if not values:
                return [default] * n
            return list(values)

        return cls(
            source=list(payload.source),
            hyp=[h if h is not None else "" for h in payload.hyp],
            x=column(payload.x, 0.0),
            y=column(payload.y, 0.0),
            source_id=column(payload.source_id, None),
            date=column(payload.date, None),
            train=[bool(t) for t in column(payload.train, 0)],
            chrf=column(payload.chrf, None),
            familiarity=column(payload.familiarity, None),
            keywords=[(str(w), float(v)) for w, v in payload.keywords],
        )

    @property
    def count(self) -> int:
        return len(self.source)

    def __len__(self) -> int:
        return self.count

    def all_indexes(self) -> List[int]:
        return list(range(self.count))

    def index_of_source(self, text: str) -> Optional[int]:
        """Return the first index whose source equals ``text``."""
        try:
            return self.source.index(text)
        except ValueError:
            return None

    def delete(self, index: int) -> None:
        """Remove one sample from every column.

        Later samples shift down by one position.
        """
        if not 0 <= index < self.count:
            raise IndexError(f"Sample index {index} out of range for {self.count} samples")
        for name in COLUMNS:
            del getattr(self, name)[index]

    def values(self, column: str) -> List[Any]:
        if column not in COLUMNS:
            raise RecordStoreError(f"Unknown column: {column}")
        return getattr(self, column)
