"""
Set view API routes.

A set view is an open filtering session over one challenge set. Every filter
endpoint mutates one predicate group, recomputes the visible samples and all
charts, and answers with the new snapshot. Subscribers of the view's
WebSocket channel are notified as well.

Filter endpoints are sync so they run in the thread pool; each view
serializes its own mutations.
"""

from __future__ import annotations

from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, Field, model_validator

from .app_config import get_app_config
from .data_repository import ChallengeSetNotFoundError, get_data_repository
from .shared.logger import get_logger
from .shared.predicates import MAX_SEARCH_LENGTH, FilterGroup
from .shared.set_view import SCORE_METRICS, PlotMode, PlotType, SetView, ViewSnapshot
from .view_manager import ViewNotFoundError, view_manager

logger = get_logger(__name__)

router = APIRouter(prefix="/views", tags=["views"])


# ============= Request Models =============


class OpenViewRequest(BaseModel):
    file_name: str = Field(..., description="Challenge set file name (without .json)")


class OpenViewResponse(BaseModel):
    view_id: str
    snapshot: ViewSnapshot


class DateFilterRequest(BaseModel):
    """Either explicit dates or a half-open ``[start, end)`` timeline brush."""

    dates: Optional[List[str]] = Field(None, description="Selected dates as YYYYMMDD")
    start: Optional[str] = Field(None, description="First day of the brush (inclusive)")
    end: Optional[str] = Field(None, description="Last day of the brush (exclusive)")

    @model_validator(mode="after")
    def _check_shape(self):
        if self.dates is None and (self.start is None or self.end is None):
            raise ValueError("Provide either 'dates' or both 'start' and 'end'")
        return self


class SearchRequest(BaseModel):
    key: str = Field(
        "", max_length=MAX_SEARCH_LENGTH, description="Search text or regular expression; empty clears the search"
    )


class KeywordToggleRequest(BaseModel):
    word: str


class BrushRequest(BaseModel):
    selection: Optional[List[float]] = Field(None, description="[start, end] in score space; null clears")


class SourceIDToggleRequest(BaseModel):
    key: Optional[str] = Field(None, description="Input source key; null is the redacted bucket")


class OtherSetToggleRequest(BaseModel):
    name: str


class EmbeddingRect(BaseModel):
    x_min: float
    x_max: float
    y_min: float
    y_max: float


class EmbeddingSelectionRequest(BaseModel):
    rect: Optional[EmbeddingRect] = None
    polygon: Optional[List[List[float]]] = None

    @model_validator(mode="after")
    def _check_shape(self):
        if self.rect is None and self.polygon is None:
            raise ValueError("Provide either 'rect' or 'polygon'")
        return self


class EmbeddingLayersRequest(BaseModel):
    show_train: Optional[bool] = Field(None, description="Show training points; null keeps the current setting")
    show_log: Optional[bool] = Field(None, description="Show log points; null keeps the current setting")


class DeleteSampleRequest(BaseModel):
    source: str


class PlotResponse(BaseModel):
    plot_type: PlotType
    mode: PlotMode
    data: Any = None


# ============= Helpers =============


def _get_view(view_id: str) -> SetView:
    try:
        return view_manager.get_view(view_id)
    except ViewNotFoundError:
        raise HTTPException(status_code=404, detail=f"View not found: {view_id}")


def _check_metric(metric: str) -> None:
    if metric not in SCORE_METRICS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown metric: {metric}. Expected one of {list(SCORE_METRICS)}",
        )


# ============= View Lifecycle =============


@router.post("", response_model=OpenViewResponse)
async def open_view(request: OpenViewRequest):
    """Open a set view on a challenge set.

    Loads the set's data, the source id map and the intersection data, then
    computes the initial snapshot with no filter active.
    """
    config = get_app_config()
    repository = get_data_repository()
    try:
        challenge_set = await repository.get_challenge_set(request.file_name)
        store = await repository.load_store(request.file_name)
    except ChallengeSetNotFoundError:
        raise HTTPException(status_code=404, detail=f"Challenge set not found: {request.file_name}")
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Invalid challenge set data: {e}")

    view = view_manager.open_view(
        challenge_set,
        store,
        source_id_map=await repository.load_source_id_map(),
        intersections=await repository.load_intersections(),
        max_keywords=config.max_keywords,
        top_k_overlap=config.top_k_overlap,
        max_views=config.max_views,
        max_age_hours=config.view_max_age_hours,
    )
    return OpenViewResponse(view_id=view.id, snapshot=view.snapshot())


@router.get("/{view_id}", response_model=ViewSnapshot)
def get_view_snapshot(view_id: str):
    return _get_view(view_id).snapshot()


@router.delete("/{view_id}")
def close_view(view_id: str):
    try:
        view_manager.close_view(view_id)
    except ViewNotFoundError:
        raise HTTPException(status_code=404, detail=f"View not found: {view_id}")
    return {"success": True, "view_id": view_id}


# ============= Filters =============


@router.put("/{view_id}/filters/date", response_model=ViewSnapshot)
def set_date_filter(view_id: str, request: DateFilterRequest):
    """Select dates explicitly or with a timeline brush over ``[start, end)``."""
    view = _get_view(view_id)
    if request.dates is not None:
        return view.set_dates(request.dates)
    return view.select_date_range(request.start, request.end)


@router.put("/{view_id}/filters/search", response_model=ViewSnapshot)
def set_search_filter(view_id: str, request: SearchRequest):
    return _get_view(view_id).set_search(request.key)


@router.post("/{view_id}/filters/keyword/toggle", response_model=ViewSnapshot)
def toggle_keyword(view_id: str, request: KeywordToggleRequest):
    return _get_view(view_id).toggle_keyword(request.word)


@router.put("/{view_id}/filters/{metric}/brush", response_model=ViewSnapshot)
def set_brush(view_id: str, metric: str, request: BrushRequest):
    """Brush a score histogram; the selection is snapped onto bin edges."""
    _check_metric(metric)
    view = _get_view(view_id)
    if request.selection is not None and len(request.selection) != 2:
        raise HTTPException(status_code=400, detail="Brush selection must be [start, end]")
    return view.brush(metric, request.selection)


@router.post("/{view_id}/filters/source-id/toggle", response_model=ViewSnapshot)
def toggle_source_id(view_id: str, request: SourceIDToggleRequest):
    return _get_view(view_id).toggle_source_id(request.key)


@router.post("/{view_id}/filters/other-set/toggle", response_model=ViewSnapshot)
def toggle_other_set(view_id: str, request: OtherSetToggleRequest):
    return _get_view(view_id).toggle_other_set(request.name)


@router.put("/{view_id}/filters/embedding", response_model=ViewSnapshot)
def set_embedding_filter(view_id: str, request: EmbeddingSelectionRequest):
    view = _get_view(view_id)
    if request.polygon is not None:
        return view.select_embedding(polygon=request.polygon)
    return view.select_embedding(rect=request.rect.model_dump())


@router.delete("/{view_id}/filters/{group}", response_model=ViewSnapshot)
def close_filter_tag(view_id: str, group: FilterGroup):
    """Remove a filter tag, clearing the selection behind it."""
    return _get_view(view_id).close_tag(group)


# ============= Plots =============


@router.get("/{view_id}/plots/{plot_type}", response_model=PlotResponse)
def get_plot(view_id: str, plot_type: PlotType, mode: PlotMode = Query(PlotMode.FOCUS)):
    """Chart data of one plot, full-size (focus) or compact (thumbnail)."""
    view = _get_view(view_id)
    return PlotResponse(plot_type=plot_type, mode=mode, data=view.plot(plot_type, mode))


@router.post("/{view_id}/plots/{plot_type}/reset", response_model=ViewSnapshot)
def reset_plot(view_id: str, plot_type: PlotType):
    return _get_view(view_id).reset_plot(plot_type)


@router.put("/{view_id}/plots/embedding/layers", response_model=ViewSnapshot)
def set_embedding_layers(view_id: str, request: EmbeddingLayersRequest):
    return _get_view(view_id).set_embedding_layers(request.show_train, request.show_log)


# ============= Samples & Export =============


@router.post("/{view_id}/samples/delete", response_model=ViewSnapshot)
def delete_sample(view_id: str, request: DeleteSampleRequest):
    """Delete the first sample whose source text matches."""
    try:
        return view_manager.delete_sample(view_id, request.source)
    except ViewNotFoundError:
        raise HTTPException(status_code=404, detail=f"View not found: {view_id}")


@router.get("/{view_id}/export")
def export_view(view_id: str):
    """Download the visible samples as a JSON attachment."""
    view = _get_view(view_id)
    return ORJSONResponse(
        content=view.export(),
        headers={"Content-Disposition": f'attachment; filename="{view.export_file_name}"'},
    )
