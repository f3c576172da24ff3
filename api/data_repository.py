"""
Data repository for challenge set files.

Reads the JSON documents of the data folder and caches their parsed content
in memory, keyed by path and modification time:

    <data_dir>/challenge-set/challenge-set-meta.json
    <data_dir>/challenge-set/<fileName>.json
    <data_dir>/challenge-set/challenge-intersections.json
    <data_dir>/dataset-id-map.json
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import orjson

from .app_config import get_app_config
from .shared.catalog import ChallengeSet, ChallengeSetMeta
from .shared.logger import get_logger
from .shared.record_store import RecordStore

logger = get_logger(__name__)

META_FILE = "challenge-set-meta.json"
INTERSECTIONS_FILE = "challenge-intersections.json"
SOURCE_ID_MAP_FILE = "dataset-id-map.json"


class ChallengeSetNotFoundError(KeyError):
    """Raised when a challenge set is not listed or its data file is missing."""


class ChallengeDataRepository:
    """Async, cached access to the challenge set files of one data folder."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._cache: Dict[Path, Tuple[float, Any]] = {}

    @property
    def challenge_set_dir(self) -> Path:
        return self.data_dir / "challenge-set"

    async def _read_json(self, path: Path) -> Any:
        mtime = path.stat().st_mtime
        cached = self._cache.get(path)
        if cached is not None and cached[0] == mtime:
            return cached[1]

        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
        data = orjson.loads(content)
        self._cache[path] = (mtime, data)
        logger.debug("Loaded %s", path)
        return data

    async def _read_optional(self, path: Path, label: str) -> Optional[Any]:
        if not path.is_file():
            logger.warning("%s not found at %s", label, path)
            return None
        try:
            return await self._read_json(path)
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning("Failed to load %s from %s: %s", label, path, e)
            return None

    async def list_challenge_sets(self) -> List[ChallengeSet]:
        data = await self._read_optional(self.challenge_set_dir / META_FILE, "Challenge set metadata")
        if data is None:
            return []
        return ChallengeSetMeta.model_validate(data).challenge_sets

    async def get_challenge_set(self, file_name: str) -> ChallengeSet:
        for challenge_set in await self.list_challenge_sets():
            if challenge_set.file_name == file_name:
                return challenge_set
        raise ChallengeSetNotFoundError(file_name)

    def _data_path(self, file_name: str) -> Path:
        if not file_name or "/" in file_name or "\\" in file_name or file_name.startswith("."):
            raise ChallengeSetNotFoundError(file_name)
        return self.challenge_set_dir / f"{file_name}.json"

    async def load_store(self, file_name: str) -> RecordStore:
        """Build a fresh record store for a challenge set.

        Each call returns a new store; deleting samples from it never
        touches the cached document.
        """
        path = self._data_path(file_name)
        if not path.is_file():
            raise ChallengeSetNotFoundError(file_name)
        data = await self._read_json(path)
        return RecordStore.from_payload(data)

    async def load_source_id_map(self) -> Optional[Dict[str, Any]]:
        return await self._read_optional(self.data_dir / SOURCE_ID_MAP_FILE, "Source id map")

    async def load_intersections(self) -> Optional[Dict[str, Any]]:
        return await self._read_optional(self.challenge_set_dir / INTERSECTIONS_FILE, "Intersection data")

    def clear_cache(self) -> None:
        self._cache.clear()


_repository: Optional[ChallengeDataRepository] = None


def get_data_repository() -> ChallengeDataRepository:
    """Repository bound to the configured data folder."""
    global _repository
    data_dir = get_app_config().data_dir
    if _repository is None or _repository.data_dir != Path(data_dir):
        _repository = ChallengeDataRepository(data_dir)
    return _repository
