"""
Registry of open set views.

Every open view is subscribed to by the manager, which forwards each new
snapshot to WebSocket subscribers of the view's channel.
"""

import asyncio
import threading
from datetime import datetime
from typing import Any, Callable, Coroutine, Dict, List, Mapping, Optional

from .shared.catalog import ChallengeSet
from .shared.logger import get_logger
from .shared.record_store import RecordStore
from .shared.set_view import SetView, ViewSnapshot

logger = get_logger(__name__)

# Open views kept per process; the least recently used one is closed first
DEFAULT_MAX_VIEWS = 32
# Views untouched for longer than this are closed when another view opens
DEFAULT_VIEW_MAX_AGE_HOURS = 12.0


class ViewNotFoundError(KeyError):
    """Raised when no open view has the requested id."""


def snapshot_summary(snapshot: ViewSnapshot) -> Dict[str, Any]:
    return {
        "count": snapshot.count,
        "visible_count": snapshot.visible_count,
        "training_count": snapshot.training_count,
        "log_count": snapshot.log_count,
        "filter_tags": snapshot.filter_tags,
    }


class ViewManager:
    """Thread-safe registry of open ``SetView`` instances.

    Views are kept in least recently used order. Opening a view first closes
    views idle for longer than ``max_age_hours``, then the oldest views beyond
    ``max_views``.
    """

    def __init__(self):
        self._views: Dict[str, SetView] = {}
        self._unsubscribers: Dict[str, Callable[[], None]] = {}
        self._last_access: Dict[str, datetime] = {}
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Event loop that WebSocket notifications are scheduled on."""
        self._loop = loop

    def open_view(
        self,
        challenge_set: ChallengeSet,
        store: RecordStore,
        source_id_map: Optional[Mapping[str, Any]] = None,
        intersections: Optional[Mapping[str, Any]] = None,
        max_keywords: int = 50,
        top_k_overlap: int = 15,
        max_views: int = DEFAULT_MAX_VIEWS,
        max_age_hours: float = DEFAULT_VIEW_MAX_AGE_HOURS,
    ) -> SetView:
        """Create a view and register it.

        ``max_views`` of 0 or less keeps every view open.
        """
        self.cleanup_stale_views(max_age_hours)

        view = SetView(
            challenge_set,
            store,
            source_id_map=source_id_map,
            intersections=intersections,
            max_keywords=max_keywords,
            top_k_overlap=top_k_overlap,
        )
        unsubscribe = view.subscribe(lambda snapshot: self._on_snapshot(view.id, snapshot))
        with self._lock:
            self._views[view.id] = view
            self._unsubscribers[view.id] = unsubscribe
            self._last_access[view.id] = datetime.now()
            overflow = len(self._views) - max_views if max_views > 0 else 0
            evicted = list(self._last_access)[:max(overflow, 0)]
        logger.info("Opened view %s on %s (%d samples)", view.id, challenge_set.file_name, store.count)

        for view_id in evicted:
            logger.info("Closing least recently used view %s", view_id)
            self._remove(view_id)
        return view

    def get_view(self, view_id: str) -> SetView:
        with self._lock:
            view = self._views.get(view_id)
            if view is not None:
                # Move to the most recently used end
                self._last_access.pop(view_id, None)
                self._last_access[view_id] = datetime.now()
        if view is None:
            raise ViewNotFoundError(view_id)
        return view

    def list_views(self) -> List[SetView]:
        with self._lock:
            return list(self._views.values())

    def close_view(self, view_id: str) -> None:
        if not self._remove(view_id):
            raise ViewNotFoundError(view_id)

    def cleanup_stale_views(self, max_age_hours: float = DEFAULT_VIEW_MAX_AGE_HOURS) -> int:
        """Close views that were not used for longer than ``max_age_hours``.

        Args:
            max_age_hours: Maximum idle time in hours for views to keep

        Returns:
            Number of views closed
        """
        cutoff = datetime.now()
        with self._lock:
            stale = [
                view_id
                for view_id, last_access in self._last_access.items()
                if (cutoff - last_access).total_seconds() / 3600 > max_age_hours
            ]

        removed = 0
        for view_id in stale:
            logger.info("Closing view %s, idle for more than %.1f hours", view_id, max_age_hours)
            if self._remove(view_id):
                removed += 1
        return removed

    def _remove(self, view_id: str) -> bool:
        with self._lock:
            view = self._views.pop(view_id, None)
            unsubscribe = self._unsubscribers.pop(view_id, None)
            self._last_access.pop(view_id, None)
        if view is None:
            return False
        if unsubscribe is not None:
            unsubscribe()
        logger.info("Closed view %s", view_id)

        from websocket import notify_view_closed

        self._dispatch(notify_view_closed(view_id))
        return True

    def delete_sample(self, view_id: str, source: str) -> ViewSnapshot:
        """Delete a sample from a view and announce it when something was removed."""
        view = self.get_view(view_id)
        before = view.store.count
        snapshot = view.delete_sample(source)
        if snapshot.count < before:
            from websocket import notify_sample_deleted

            self._dispatch(notify_sample_deleted(view_id, source, snapshot.count))
        return snapshot

    def clear(self) -> None:
        with self._lock:
            unsubscribers = list(self._unsubscribers.values())
            self._views.clear()
            self._unsubscribers.clear()
            self._last_access.clear()
        for unsubscribe in unsubscribers:
            unsubscribe()

    def _on_snapshot(self, view_id: str, snapshot: ViewSnapshot) -> None:
        from websocket import notify_view_updated

        self._dispatch(notify_view_updated(view_id, snapshot_summary(snapshot)))

    def _dispatch(self, coro: Coroutine) -> None:
        """Run a WebSocket notification on the app event loop.

        Sync endpoints run in worker threads, so the coroutine is handed to
        the loop thread-safely. Without a usable loop it runs in a fresh one.
        """
        loop = self._loop
        if loop is not None and loop.is_running():
            asyncio.run_coroutine_threadsafe(coro, loop)
            return
        try:
            asyncio.run(coro)
        except RuntimeError as e:
            coro.close()
            logger.debug("Skipping WebSocket notification: %s", e)
        except Exception as e:
            logger.error("Error running WebSocket notification: %s", e)


# Global view manager instance
view_manager = ViewManager()
