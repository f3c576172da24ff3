"""
Shared filtering engine of the challenge set explorer.

This module contains the record store, filter predicates, predicate group
intersection, chart aggregators and the per-view filter state used across
the API endpoints.
"""
from .intersection import PredicateGroups
from .predicates import NO_MATCH_SENTINEL, FilterGroup, PredicateError, get_predicate_methods
from .record_store import RecordStore, RecordStoreError
from .set_view import PlotMode, PlotType, SetView, ViewSnapshot

__all__ = [
    "RecordStore",
    "RecordStoreError",
    "FilterGroup",
    "PredicateError",
    "NO_MATCH_SENTINEL",
    "get_predicate_methods",
    "PredicateGroups",
    "SetView",
    "ViewSnapshot",
    "PlotType",
    "PlotMode",
]
