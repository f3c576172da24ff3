"""
Challenge set catalog API routes.

Lists the available challenge sets for the table view, with type filtering
and column sorting, a preview of each set and per-row score histograms.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from .app_config import get_app_config
from .data_repository import ChallengeSetNotFoundError, get_data_repository
from .shared.catalog import (
    ROW_HISTOGRAM_METRICS,
    ChallengeSet,
    ChallengeSetPreview,
    ChallengeSetType,
    HeaderKey,
    RowHistogramBin,
    build_preview,
    list_challenge_sets,
    row_histogram,
)
from .shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/challenge-sets", tags=["challenge-sets"])


class ChallengeSetListResponse(BaseModel):
    challenge_sets: List[ChallengeSet]
    total: int = Field(..., description="Number of sets after type filtering")


class RowHistogramResponse(BaseModel):
    file_name: str
    metric: str
    bins: List[RowHistogramBin]


@router.get("", response_model=ChallengeSetListResponse)
async def get_challenge_sets(
    types: Optional[List[ChallengeSetType]] = Query(None, description="Set types to include"),
    sort: Optional[HeaderKey] = Query(None, description="Column to sort by"),
    descending: bool = Query(False),
):
    """List challenge sets, filtered by type and sorted by one column.

    Sets without a value in the sort column are listed last.
    """
    sets = await get_data_repository().list_challenge_sets()
    result = list_challenge_sets(sets, types=types, sort=sort, descending=descending)
    return ChallengeSetListResponse(challenge_sets=result, total=len(result))


@router.get("/{file_name}/preview", response_model=ChallengeSetPreview)
async def get_challenge_set_preview(file_name: str):
    """Preview sentences and top keywords of a challenge set."""
    config = get_app_config()
    repository = get_data_repository()
    try:
        challenge_set = await repository.get_challenge_set(file_name)
        store = await repository.load_store(file_name)
    except ChallengeSetNotFoundError:
        raise HTTPException(status_code=404, detail=f"Challenge set not found: {file_name}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid challenge set data: {e}")

    return build_preview(
        challenge_set,
        store,
        preview_size=config.preview_size,
        max_keywords=config.max_keywords,
    )


@router.get("/{file_name}/histograms/{metric}", response_model=RowHistogramResponse)
async def get_row_histogram(file_name: str, metric: str):
    """Ten-bin score histogram shown in a catalog row."""
    if metric not in ROW_HISTOGRAM_METRICS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown metric: {metric}. Expected one of {list(ROW_HISTOGRAM_METRICS)}",
        )
    try:
        store = await get_data_repository().load_store(file_name)
    except ChallengeSetNotFoundError:
        raise HTTPException(status_code=404, detail=f"Challenge set not found: {file_name}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid challenge set data: {e}")

    return RowHistogramResponse(file_name=file_name, metric=metric, bins=row_histogram(store, metric))
