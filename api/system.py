"""
System API routes for the challenge set explorer.

Health check plus a short description of the runtime: versions, data folder
and the predicates available to set views.
"""

import platform
import sys
from importlib.metadata import PackageNotFoundError, version
from typing import Any, Dict

from fastapi import APIRouter

from .app_config import get_app_config
from .shared.predicates import get_predicate_methods
from .view_manager import view_manager

router = APIRouter()

_PACKAGES = ("fastapi", "uvicorn", "pydantic", "numpy", "orjson", "aiofiles", "platformdirs")


def _get_package_versions() -> Dict[str, str]:
    packages = {}
    for name in _PACKAGES:
        try:
            packages[name] = version(name)
        except PackageNotFoundError:
            pass
    return packages


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "message": "challenge set explorer is running",
        "open_views": len(view_manager.list_views()),
    }


@router.get("/system/info")
async def system_info() -> Dict[str, Any]:
    """Get system and environment information."""
    config = get_app_config()
    return {
        "python": {
            "version": sys.version,
            "platform": sys.platform,
        },
        "system": {
            "os": platform.system(),
            "machine": platform.machine(),
        },
        "data_dir": str(config.data_dir),
        "data_dir_exists": config.data_dir.is_dir(),
        "packages": _get_package_versions(),
        "predicates": get_predicate_methods(),
    }
