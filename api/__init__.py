"""
API package for the challenge set explorer FastAPI backend.

This package provides the REST API endpoints for:
- Challenge set catalog, previews and row histograms (challenge_sets.py)
- Set views: filters, plots, sample deletion and export (views.py)
- System health and info (system.py)
- Open view registry (view_manager.py)
- Challenge set file access (data_repository.py)
"""

from .data_repository import ChallengeDataRepository, ChallengeSetNotFoundError, get_data_repository
from .view_manager import ViewManager, ViewNotFoundError, view_manager

__all__ = [
    "view_manager",
    "ViewManager",
    "ViewNotFoundError",
    "ChallengeDataRepository",
    "ChallengeSetNotFoundError",
    "get_data_repository",
]
