import json
import logging
import os
import shutil
import threading

from .errors import PersistenceFailure

logger = logging.getLogger(__name__)


def _read_mapping(path: str) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return {str(k): str(v) for k, v in data.items() if v is not None}


class IdentityStore:
    """Logical key -> Discord id, persisted as a flat JSON object.

    Every mutation rewrites the whole file via a temp file and os.replace, so a
    reader never sees a half-written mapping. A failed write is logged and the
    in-memory map stays authoritative; the store remains dirty and the next
    mutation (or flush) writes the full mapping again.
    """

    def __init__(self, path: str, ids: dict | None = None):
        self.path = path
        self._ids = dict(ids or {})
        self._dirty = False
        self._lock = threading.RLock()

    @classmethod
    def load(cls, path: str) -> "IdentityStore":
        directory = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise PersistenceFailure(f"Cannot create data directory {directory}: {e}") from e
        if not os.access(directory, os.W_OK):
            raise PersistenceFailure(f"Data directory {directory} is not writable")

        if not os.path.exists(path):
            logger.info("[INIT] No %s yet; starting with an empty mapping.", path)
            return cls(path)
        try:
            return cls(path, _read_mapping(path))
        except (OSError, ValueError) as e:
            logger.warning("[WARN] %s is unreadable (%s); trying backup.", path, e)
        backup = f"{path}.bak"
        try:
            ids = _read_mapping(backup)
        except (OSError, ValueError) as e:
            logger.warning("[WARN] Backup %s unusable (%s); starting empty.", backup, e)
            ids = {}
        store = cls(path, ids)
        store._dirty = True
        return store

    def lookup(self, key: str) -> str | None:
        with self._lock:
            return self._ids.get(key)

    def remember(self, key: str, external_id) -> None:
        with self._lock:
            updated = dict(self._ids)
            updated[key] = str(external_id)
            self._ids = updated
            self._dirty = True
            self.flush()

    def forget(self, key: str) -> None:
        with self._lock:
            if key not in self._ids:
                return
            updated = dict(self._ids)
            updated.pop(key)
            self._ids = updated
            self._dirty = True
            self.flush()

    def known_ids(self) -> set:
        with self._lock:
            return set(self._ids.values())

    def snapshot(self) -> dict:
        with self._lock:
            return dict(self._ids)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def flush(self) -> bool:
        """Write the full mapping to disk. Returns False (and stays dirty) on failure."""
        with self._lock:
            if not self._dirty:
                return True
            try:
                self._write(self._ids)
            except OSError as e:
                failure = PersistenceFailure(f"Failed to save {self.path}: {e}")
                logger.error("[ERROR] %s (in-memory mapping kept, will retry)", failure)
                return False
            self._dirty = False
            return True

    def _write(self, data: dict) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        if os.path.exists(self.path):
            try:
                shutil.copyfile(self.path, f"{self.path}.bak")
            except OSError as e:
                logger.debug("[DEBUG] Could not refresh backup of %s: %s", self.path, e)
        os.replace(tmp, self.path)

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)
