"""
Mutations that could not reach the API, persisted until they are replayed.

Entries keep insertion order, which is the replay order. Each carries an
``operation_id`` that doubles as the request's ``Idempotency-Key``, so a
mutation that did reach the server before the connection dropped is not
applied twice.
"""
import copy
import threading
import time
import uuid
from typing import Any, Dict, List, Optional

import structlog

from .storage import SYNC_QUEUE, LocalStore


logger = structlog.get_logger(__name__)

OPERATION_TYPES = ("create", "update", "delete")


def _now_ms() -> int:
    return int(time.time() * 1000)


class OfflineQueue:
    def __init__(self, store: LocalStore, key: str = SYNC_QUEUE):
        self._store = store
        self._key = key
        self._lock = threading.RLock()
        self._entries: List[Dict[str, Any]] = [e for e in (store.get(key) or []) if isinstance(e, dict)]
        # Entries written by older clients carry no operation id
        legacy = [e for e in self._entries if "operation_id" not in e]
        for entry in self._entries:
            entry.setdefault("operation_id", str(uuid.uuid4()))
            entry.setdefault("attempts", 0)
            entry.setdefault("timestamp", _now_ms())
            entry.setdefault("last_error", None)
        if legacy:
            self._save()
        if self._entries:
            logger.info("offline_queue_loaded", count=len(self._entries))

    def _save(self) -> None:
        self._store.set(self._key, self._entries)

    def _index(self, operation_id: str) -> Optional[int]:
        for i, entry in enumerate(self._entries):
            if entry["operation_id"] == operation_id:
                return i
        return None

    def enqueue(
        self,
        type: str,
        entity: str,
        data: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
        operation_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        if type not in OPERATION_TYPES:
            raise ValueError(f"Unknown operation type: {type}")
        with self._lock:
            if operation_id:
                existing = self._index(operation_id)
                if existing is not None:
                    return copy.deepcopy(self._entries[existing])
            entry = {
                "operation_id": operation_id or str(uuid.uuid4()),
                "type": type,
                "entity": entity,
                "id": entity_id,
                "data": copy.deepcopy(data),
                "timestamp": _now_ms(),
                "attempts": 0,
                "last_error": None,
            }
            self._entries.append(entry)
            self._save()
            logger.info(
                "offline_enqueue",
                operation_id=entry["operation_id"],
                type=type,
                entity=entity,
                entity_id=entity_id,
                queue_size=len(self._entries),
            )
            return copy.deepcopy(entry)

    def pending(self) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._entries)

    def remove(self, operation_id: str) -> bool:
        with self._lock:
            idx = self._index(operation_id)
            if idx is None:
                return False
            del self._entries[idx]
            self._save()
            return True

    def replace(self, entry: Dict[str, Any]) -> bool:
        with self._lock:
            idx = self._index(entry["operation_id"])
            if idx is None:
                return False
            self._entries[idx] = copy.deepcopy(entry)
            self._save()
            return True

    def clear(self) -> None:
        with self._lock:
            self._entries = []
            self._save()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            by_entity: Dict[str, int] = {}
            for entry in self._entries:
                by_entity[entry["entity"]] = by_entity.get(entry["entity"], 0) + 1
            return {
                "count": len(self._entries),
                "oldest_timestamp": min((e["timestamp"] for e in self._entries), default=None),
                "by_entity": by_entity,
            }

    def purge_expired(self, ttl_seconds: int, now_ms: Optional[int] = None) -> int:
        """Drop entries older than ``ttl_seconds``. A TTL of 0 keeps everything."""
        if not ttl_seconds:
            return 0
        cutoff = (now_ms if now_ms is not None else _now_ms()) - ttl_seconds * 1000
        with self._lock:
            kept = [e for e in self._entries if e["timestamp"] >= cutoff]
            dropped = len(self._entries) - len(kept)
            if dropped:
                self._entries = kept
                self._save()
                logger.warning("offline_queue_expired", dropped=dropped, ttl_seconds=ttl_seconds)
            return dropped

    def rewrite_ids(self, temp_id: str, server_id: str) -> int:
        """Point every queued reference to ``temp_id`` at ``server_id``."""
        changed = 0
        with self._lock:
            for entry in self._entries:
                touched = False
                if entry.get("id") == temp_id:
                    entry["id"] = server_id
                    touched = True
                data = entry.get("data")
                if isinstance(data, dict):
                    for field, value in data.items():
                        if value == temp_id:
                            data[field] = server_id
                            touched = True
                changed += int(touched)
            if changed:
                self._save()
        return changed
