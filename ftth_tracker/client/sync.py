"""SyncManager: replays the offline queue against the API.

The queue is drained head first so that a record's create always reaches the
server before its updates. A pass stops at the first entry that cannot be
delivered because the API is unreachable; that entry and everything behind it
stay queued for the next pass.

Consecutive failed passes open an exponential backoff window during which
periodic ticks do nothing. ``sync_now(force=True)`` ignores the window.
"""
import threading
import time
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

import structlog

from ..config import settings
from .api_client import ApiError, NetworkError, entity_path
from .facade import DbManager, is_temp_id


logger = structlog.get_logger(__name__)

METHOD_FOR_OPERATION = {"create": "POST", "update": "PUT", "delete": "DELETE"}

SYNC_STARTED = "sync-started"
SYNC_COMPLETED = "sync-completed"
SYNC_ERROR = "sync-error"
SYNC_NEEDED = "sync-needed"

MAX_ERROR_HISTORY = 10

# Client errors worth retrying
RETRYABLE_CLIENT_STATUSES = {408, 429}

Listener = Callable[[str, Optional[Dict[str, Any]]], None]


def _is_unrecoverable(status_code: int) -> bool:
    return 400 <= status_code < 500 and status_code not in RETRYABLE_CLIENT_STATUSES


def _iso(ts: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat() if ts else None


class SyncManager:
    def __init__(
        self,
        db: DbManager,
        interval_seconds: Optional[float] = None,
        backoff_base: Optional[float] = None,
        backoff_max: Optional[float] = None,
        max_attempts: Optional[int] = None,
        queue_ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.interval_seconds = interval_seconds if interval_seconds is not None else settings.sync_interval_seconds
        self.backoff_base = backoff_base if backoff_base is not None else settings.sync_backoff_base
        self.backoff_max = backoff_max if backoff_max is not None else settings.sync_backoff_max
        self.max_attempts = max_attempts if max_attempts is not None else settings.sync_max_attempts
        self.queue_ttl_seconds = (
            queue_ttl_seconds if queue_ttl_seconds is not None else settings.offline_queue_ttl_seconds
        )
        self._clock = clock

        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self.in_progress = False
        self.last_sync_time: Optional[float] = None
        self.backoff_until: Optional[float] = None
        self.consecutive_failures = 0
        self.errors: Deque[Dict[str, Any]] = deque(maxlen=MAX_ERROR_HISTORY)

    # ---------- listeners ----------
    def add_listener(self, callback: Listener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event: str, detail: Optional[Dict[str, Any]] = None) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, detail)
            except Exception:
                logger.exception("sync_listener_failed", sync_event=event)

    def _record_error(self, message: str, operation_id: Optional[str] = None) -> None:
        self.errors.append({
            "timestamp": _iso(self._clock()),
            "message": message,
            "operation_id": operation_id,
        })

    # ---------- replay ----------
    def _replay(self, entry: Dict[str, Any]) -> Any:
        op_type = entry["type"]
        data = entry.get("data")
        entity_id = None if op_type == "create" else entry.get("id")
        try:
            result = self.db.api.request(
                METHOD_FOR_OPERATION[op_type],
                entity_path(entry["entity"], entity_id, data),
                json=data if op_type != "delete" else None,
                idempotency_key=entry["operation_id"],
            )
        except ApiError as e:
            if op_type == "delete" and e.status_code == 404:
                # Already gone on the server
                return None
            raise
        if op_type == "create" and is_temp_id(entry.get("id")) and isinstance(result, dict) and result.get("id"):
            self.db.reconcile(entry["id"], str(result["id"]), entity=entry["entity"])
        return result

    def process_pending_operations(self) -> Dict[str, Any]:
        """Drain the queue in order. Returns counts and the error that stopped the pass, if any."""
        if self.queue_ttl_seconds:
            self.db.queue.purge_expired(self.queue_ttl_seconds, now_ms=int(self._clock() * 1000))

        processed = 0
        dropped = 0
        error: Optional[str] = None
        while True:
            pending = self.db.queue.pending()
            if not pending:
                break
            entry = pending[0]
            op_id = entry["operation_id"]
            try:
                self._replay(entry)
            except NetworkError as e:
                self.db.mark_reachable(False)
                entry["last_error"] = str(e)
                self.db.queue.replace(entry)
                error = f"API unreachable: {e}"
                break
            except ApiError as e:
                entry["attempts"] = entry.get("attempts", 0) + 1
                entry["last_error"] = str(e)
                if _is_unrecoverable(e.status_code) or entry["attempts"] >= self.max_attempts:
                    self.db.queue.remove(op_id)
                    dropped += 1
                    self._record_error(f"Dropped {entry['type']} {entry['entity']}: {e}", op_id)
                    logger.warning(
                        "sync_operation_dropped",
                        operation_id=op_id,
                        entity=entry["entity"],
                        type=entry["type"],
                        status_code=e.status_code,
                        attempts=entry["attempts"],
                    )
                    continue
                self.db.queue.replace(entry)
                error = f"Server rejected {entry['type']} {entry['entity']}: {e}"
                break
            self.db.mark_reachable(True)
            self.db.queue.remove(op_id)
            processed += 1

        remaining = len(self.db.queue)
        logger.info("sync_pass_done", processed=processed, dropped=dropped, remaining=remaining, error=error)
        return {"processed": processed, "dropped": dropped, "remaining": remaining, "error": error}

    # ---------- sync ----------
    def in_backoff(self) -> bool:
        return self.backoff_until is not None and self._clock() < self.backoff_until

    def _open_backoff(self) -> None:
        self.consecutive_failures += 1
        delay = min(self.backoff_base * (2 ** (self.consecutive_failures - 1)), self.backoff_max)
        self.backoff_until = self._clock() + delay

    def sync_now(self, force: bool = False) -> Dict[str, Any]:
        if not self._lock.acquire(blocking=False):
            return {"success": False, "message": "Sync already in progress"}
        try:
            if not force and self.in_backoff():
                return {
                    "success": False,
                    "message": "Sync postponed",
                    "backoff_until": _iso(self.backoff_until),
                }
            self.in_progress = True
            self._emit(SYNC_STARTED)
            try:
                summary = self.process_pending_operations()
            except Exception as e:
                logger.exception("sync_failed")
                summary = {"processed": 0, "dropped": 0, "remaining": len(self.db.queue), "error": str(e)}

            self.last_sync_time = self._clock()
            result = {
                "success": summary["error"] is None,
                "operations_processed": summary["processed"],
                "operations_dropped": summary["dropped"],
                "operations_remaining": summary["remaining"],
            }
            if summary["error"]:
                self._open_backoff()
                self._record_error(summary["error"])
                result["message"] = f"Erro durante sincronização: {summary['error']}"
                self._emit(SYNC_ERROR, {"message": summary["error"]})
            else:
                self.consecutive_failures = 0
                self.backoff_until = None
                self._emit(SYNC_COMPLETED, result)
            return result
        finally:
            self.in_progress = False
            self._lock.release()
            self.check_status()

    def check_status(self) -> Dict[str, Any]:
        status = self.status()
        if status["queue_size"]:
            self._emit(SYNC_NEEDED, {"queue_size": status["queue_size"]})
        return status

    def status(self) -> Dict[str, Any]:
        return {
            "last_sync_time": _iso(self.last_sync_time),
            "sync_in_progress": self.in_progress,
            "queue_size": len(self.db.queue),
            "errors": list(self.errors),
            "backoff_until": _iso(self.backoff_until),
            "consecutive_failures": self.consecutive_failures,
        }

    # ---------- timer ----------
    def tick(self) -> Optional[Dict[str, Any]]:
        if not len(self.db.queue) or self.in_backoff():
            return None
        return self.sync_now()

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.tick()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ftth-sync", daemon=True)
        self._thread.start()
        logger.info("sync_timer_started", interval_seconds=self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logger.info("sync_timer_stopped")
