import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from novel.errors import PersistenceError
from novel.models import GameSettings, GameState, SavedGame

logger = logging.getLogger(__name__)

AUTOSAVE_KEY = "autosave"
SETTINGS_KEY = "settings"
SAVE_FORMAT_VERSION = "1.0.0"

# key -> subdirectory under the data root
_KEY_DIRS: dict[str, str] = {
    AUTOSAVE_KEY: "saves",
    SETTINGS_KEY: "settings",
}


class BlobStore(Protocol):
    async def save_blob(self, key: str, data: str) -> None: ...

    async def load_blob(self, key: str) -> str | None: ...

    async def delete_blob(self, key: str) -> None: ...


class FileBlobStore:
    """Named JSON blobs on the local filesystem.

    Layout:

        {root}/
          saves/autosave.json
          settings/settings.json
          {other_key}.json
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        subdir = _KEY_DIRS.get(key)
        base = self.root / subdir if subdir else self.root
        return base / f"{key}.json"

    def _write(self, path: Path, data: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(data, encoding="utf-8")
        os.replace(tmp, path)

    async def save_blob(self, key: str, data: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise PersistenceError(f"Failed to write '{key}' to '{path}': {e}") from e

    async def load_blob(self, key: str) -> str | None:
        path = self.path_for(key)
        if not path.is_file():
            return None
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to read '{key}' from '{path}': {e}") from e

    async def delete_blob(self, key: str) -> None:
        path = self.path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as e:
            raise PersistenceError(f"Failed to delete '{key}' at '{path}': {e}") from e


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class SaveService:
    """Serializes session snapshots and settings through a BlobStore.

    Never raises to the caller: failures come back as False / None, and a
    failed settings load comes back as the default settings.
    """

    def __init__(self, blobs: BlobStore) -> None:
        self._blobs = blobs
        self._lock = asyncio.Lock()

    async def save(self, state: GameState) -> bool:
        payload = state.model_dump(mode="json", by_alias=True)
        payload["timestamp"] = _now_iso()
        payload["version"] = SAVE_FORMAT_VERSION
        async with self._lock:
            try:
                await self._blobs.save_blob(AUTOSAVE_KEY, json.dumps(payload, indent=2))
            except Exception as e:
                logger.error(f"Failed to save game progress: {e}")
                return False
        logger.info(f"Game progress saved (scene '{state.current_scene}', event {state.current_event_index})")
        return True

    async def load(self) -> SavedGame | None:
        async with self._lock:
            try:
                raw = await self._blobs.load_blob(AUTOSAVE_KEY)
            except Exception as e:
                logger.error(f"Failed to load game progress: {e}")
                return None
        if raw is None:
            return None
        try:
            return SavedGame.model_validate_json(raw)
        except ValidationError as e:
            logger.error(f"Autosave is unreadable: {e}")
            return None

    async def has_save(self) -> bool:
        async with self._lock:
            try:
                return await self._blobs.load_blob(AUTOSAVE_KEY) is not None
            except Exception:
                return False

    async def delete_save(self) -> bool:
        async with self._lock:
            try:
                await self._blobs.delete_blob(AUTOSAVE_KEY)
            except Exception as e:
                logger.error(f"Failed to delete save file: {e}")
                return False
        return True

    async def save_settings(self, settings: GameSettings) -> bool:
        payload = settings.model_dump(mode="json", by_alias=True)
        payload["timestamp"] = _now_iso()
        async with self._lock:
            try:
                await self._blobs.save_blob(SETTINGS_KEY, json.dumps(payload, indent=2))
            except Exception as e:
                logger.error(f"Failed to save settings: {e}")
                return False
        return True

    async def load_settings(self) -> GameSettings:
        async with self._lock:
            try:
                raw = await self._blobs.load_blob(SETTINGS_KEY)
                if raw is not None:
                    return GameSettings.model_validate_json(raw)
            except Exception as e:
                logger.error(f"Failed to load settings, using defaults: {e}")
        return GameSettings()
