"""
Key/value store persisted as a single JSON file.

Plays the role the browser's localStorage had for the web pages: the offline
queue, cached reads and the auth session all live here under fixed keys.
"""
import json
import os
import tempfile
import threading
from typing import Any, Dict, List, Optional

import structlog

from ..config import settings


logger = structlog.get_logger(__name__)

# Keys used across the client
CURRENT_USER = "currentUser"
AUTH_TOKEN = "authToken"
REFRESH_TOKEN = "refreshToken"
SYNC_QUEUE = "pg_sync_queue"
REGISTROS_FTTH = "registrosFTTH"
TOTAL_REGISTROS = "ftth_total_registros"
TASKS = "tasks"
ID_MAP = "temp_id_map"

# Collections whose cache kept its own key in the web pages
LEGACY_CACHE_KEYS = {"tasks": TASKS}


def cache_key(collection: str) -> str:
    return LEGACY_CACHE_KEYS.get(collection, f"cached_{collection}")


class LocalStore:
    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.client_storage_path
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # Keep the unreadable file aside and start empty
            logger.error("local_store_unreadable", path=self.path, error=str(e))
            os.replace(self.path, self.path + ".corrupt")
            return {}
        return data if isinstance(data, dict) else {}

    def _flush(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".store-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            value = self._data.get(key, default)
            # Callers get a copy
            return json.loads(json.dumps(value, default=str)) if value is not None else value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, *keys: str) -> None:
        with self._lock:
            changed = False
            for key in keys:
                if key in self._data:
                    del self._data[key]
                    changed = True
            if changed:
                self._flush()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data
