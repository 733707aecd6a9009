"""
Offline-aware data access for the FTTH Tracker pages.

Every operation goes to the API first. When the API cannot be reached,
mutations are queued for replay and a local stand-in object is returned;
reads fall back to the last cached copy.
"""
import itertools
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import structlog

from .api_client import ApiClient, ApiError, FtthClientError, NetworkError, entity_path
from .offline_queue import OfflineQueue
from .storage import ID_MAP, REGISTROS_FTTH, TOTAL_REGISTROS, LocalStore, cache_key


logger = structlog.get_logger(__name__)

OPERATION_FOR_METHOD = {"POST": "create", "PUT": "update", "DELETE": "delete"}

COLLECTIONS = {"user": "users", "task": "tasks", "registro": "registros"}

TEMP_PREFIX = "temp_"

_temp_counter = itertools.count()
_temp_lock = threading.Lock()


def new_temp_id() -> str:
    with _temp_lock:
        seq = next(_temp_counter)
    return f"{TEMP_PREFIX}{int(time.time() * 1000)}_{seq:x}{uuid.uuid4().hex[:6]}"


def is_temp_id(value: Any) -> bool:
    return isinstance(value, str) and value.startswith(TEMP_PREFIX)


def _strip_markers(data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if data is None:
        return None
    return {k: v for k, v in data.items() if not k.startswith("_")}


class DbManager:
    def __init__(
        self,
        api: Optional[ApiClient] = None,
        store: Optional[LocalStore] = None,
        queue: Optional[OfflineQueue] = None,
    ):
        self.api = api or ApiClient()
        self.store = store or LocalStore()
        self.queue = queue or OfflineQueue(self.store)
        self.server_status = {"server_reachable": True, "database_connected": True}
        # Survives restarts so temp ids still held by callers keep resolving
        self.id_map: Dict[str, str] = dict(self.store.get(ID_MAP) or {})

    # ---------- plumbing ----------
    def mark_reachable(self, reachable: bool, database_connected: Optional[bool] = None) -> None:
        self.server_status["server_reachable"] = reachable
        self.server_status["database_connected"] = reachable if database_connected is None else database_connected

    def resolve_id(self, entity_id: Optional[str]) -> Optional[str]:
        if is_temp_id(entity_id):
            return self.id_map.get(entity_id, entity_id)
        return entity_id

    def reconcile(self, temp_id: str, server_id: str, entity: Optional[str] = None) -> None:
        """Record the id the server assigned to an offline-created record."""
        self.id_map[temp_id] = server_id
        self.store.set(ID_MAP, self.id_map)
        rewritten = self.queue.rewrite_ids(temp_id, server_id)
        if entity in COLLECTIONS:
            self._patch_cache(entity, temp_id, {"id": server_id}, drop=("_is_temp",))
        logger.info("temp_id_reconciled", temp_id=temp_id, server_id=server_id, rewritten=rewritten)

    def request(
        self,
        entity: str,
        method: str,
        payload: Optional[Dict[str, Any]] = None,
        entity_id: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        operation = OPERATION_FOR_METHOD.get(method)
        entity_id = self.resolve_id(entity_id)
        payload = _strip_markers(payload)
        if payload and is_temp_id(payload.get("registro_id")):
            payload["registro_id"] = self.resolve_id(payload["registro_id"])

        if operation is None:
            if is_temp_id(entity_id):
                return self._pending_object(entity_id)
            return self._read(entity, entity_id, params)

        # Records still waiting for their create can only be changed through the queue
        if is_temp_id(entity_id) or (payload and is_temp_id(payload.get("registro_id"))):
            return self._queue_offline(operation, entity, payload, entity_id, str(uuid.uuid4()))

        key = str(uuid.uuid4())
        try:
            result = self.api.request(
                method,
                entity_path(entity, entity_id, payload),
                json=payload if method != "DELETE" else None,
                idempotency_key=key,
            )
        except NetworkError as e:
            self.mark_reachable(False)
            logger.warning("request_failed_offline", entity=entity, operation=operation, error=str(e))
            return self._queue_offline(operation, entity, payload, entity_id, key)
        self.mark_reachable(True)
        return result

    def _read(self, entity: str, entity_id: Optional[str], params: Optional[Dict[str, Any]]) -> Any:
        collection = COLLECTIONS.get(entity, entity)
        try:
            result = self.api.request("GET", entity_path(entity, entity_id), params=params)
        except NetworkError:
            self.mark_reachable(False)
            cached = self.store.get(cache_key(collection))
            if cached is None:
                raise
            logger.info("serving_cached_read", entity=entity, entity_id=entity_id)
            if entity_id is None:
                return cached
            for item in cached:
                if str(item.get("id")) == str(entity_id):
                    return item
            raise
        self.mark_reachable(True)
        if entity_id is None and not params:
            self.store.set(cache_key(collection), result)
        return result

    def _pending_object(self, temp_id: str) -> Dict[str, Any]:
        for entry in self.queue.pending():
            if entry["type"] == "create" and entry.get("id") == temp_id:
                return {**(entry.get("data") or {}), "id": temp_id, "_is_temp": True}
        raise FtthClientError(f"Unknown local record: {temp_id}")

    def _queue_offline(
        self,
        operation: str,
        entity: str,
        payload: Optional[Dict[str, Any]],
        entity_id: Optional[str],
        operation_id: str,
    ) -> Dict[str, Any]:
        if operation == "create":
            temp_id = new_temp_id()
            self.queue.enqueue("create", entity, data=payload, entity_id=temp_id, operation_id=operation_id)
            local = {**(payload or {}), "id": temp_id, "_is_temp": True}
            self._append_cache(entity, local)
            return local
        if operation == "update":
            self.queue.enqueue("update", entity, data=payload, entity_id=entity_id, operation_id=operation_id)
            self._patch_cache(entity, entity_id, payload or {})
            return {**(payload or {}), "id": entity_id, "_is_updated_offline": True}
        self.queue.enqueue("delete", entity, data=payload, entity_id=entity_id, operation_id=operation_id)
        self._drop_from_cache(entity, entity_id)
        return {"success": True, "_is_deleted_offline": True}

    # Cached lists mirror offline changes so later offline reads see them
    def _append_cache(self, entity: str, item: Dict[str, Any]) -> None:
        if entity not in COLLECTIONS:
            return
        key = cache_key(COLLECTIONS[entity])
        cached = self.store.get(key) or []
        cached.append(item)
        self.store.set(key, cached)

    def _patch_cache(
        self,
        entity: str,
        entity_id: Optional[str],
        changes: Dict[str, Any],
        drop: tuple = (),
    ) -> None:
        if entity not in COLLECTIONS:
            return
        key = cache_key(COLLECTIONS[entity])
        cached = self.store.get(key)
        if not cached:
            return
        for item in cached:
            if str(item.get("id")) == str(entity_id):
                item.update(changes)
                for marker in drop:
                    item.pop(marker, None)
        self.store.set(key, cached)

    def _drop_from_cache(self, entity: str, entity_id: Optional[str]) -> None:
        if entity not in COLLECTIONS:
            return
        key = cache_key(COLLECTIONS[entity])
        cached = self.store.get(key)
        if not cached:
            return
        self.store.set(key, [item for item in cached if str(item.get("id")) != str(entity_id)])

    def _cached_get(self, path: str, key: str) -> Any:
        try:
            result = self.api.request("GET", path)
        except NetworkError:
            self.mark_reachable(False)
            cached = self.store.get(key)
            if cached is None:
                raise
            logger.info("serving_cached_read", path=path)
            return cached
        self.mark_reachable(True)
        self.store.set(key, result)
        return result

    # ---------- users ----------
    def get_all_users(self, q: Optional[str] = None) -> List[Dict[str, Any]]:
        return self.request("user", "GET", params={"q": q} if q else None)

    def get_user_by_id(self, user_id: str) -> Dict[str, Any]:
        return self.request("user", "GET", entity_id=user_id)

    def create_user(self, user_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("user", "POST", user_data)

    def update_user(self, user_id: str, user_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("user", "PUT", user_data, entity_id=user_id)

    def delete_user(self, user_id: str) -> Dict[str, Any]:
        return self.request("user", "DELETE", entity_id=user_id)

    def get_user_count(self) -> int:
        try:
            result = self.api.request("GET", "/api/users/count")
        except NetworkError:
            self.mark_reachable(False)
            return len(self.store.get(cache_key("users")) or [])
        self.mark_reachable(True)
        return int(result.get("count", 0))

    # ---------- tasks ----------
    def get_all_tasks(
        self,
        start: Optional[str] = None,
        end: Optional[str] = None,
        status: Optional[str] = None,
        operacao: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {"start": start, "end": end, "status": status, "operacao": operacao}
        return self.request("task", "GET", params={k: v for k, v in params.items() if v} or None)

    def create_task(self, task_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("task", "POST", task_data)

    def update_task(self, task_id: str, task_data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("task", "PUT", task_data, entity_id=task_id)

    def delete_task(self, task_id: str) -> Dict[str, Any]:
        return self.request("task", "DELETE", entity_id=task_id)

    # ---------- registros ----------
    def get_all_registros(
        self,
        cidade: Optional[str] = None,
        tecnico: Optional[str] = None,
        operacao: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {"cidade": cidade, "tecnico": tecnico, "operacao": operacao}
        return self.request("registro", "GET", params={k: v for k, v in params.items() if v} or None)

    def create_registro(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("registro", "POST", data)

    def update_registro(self, registro_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("registro", "PUT", data, entity_id=registro_id)

    def delete_registro(self, registro_id: str) -> Dict[str, Any]:
        return self.request("registro", "DELETE", entity_id=registro_id)

    def add_manutencao(self, registro_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("manutencao", "POST", {**data, "registro_id": registro_id})

    def get_estatisticas(self) -> Dict[str, Any]:
        return self._cached_get("/api/registros/estatisticas", cache_key("estatisticas"))

    # ---------- legacy action endpoints ----------
    def carregar_registros(self, limit: int = 1000, offset: int = 0) -> Dict[str, Any]:
        """
        Page of registros through ``carregar-ftth-registros``.

        The page and the total are kept under ``registrosFTTH`` and
        ``ftth_total_registros``; offline, the last saved page is returned.
        """
        params = {"action": "carregar-ftth-registros", "limit": limit, "offset": offset}
        try:
            result = self.api.request("GET", "/api", params=params)
        except NetworkError:
            self.mark_reachable(False)
            registros = self.store.get(REGISTROS_FTTH)
            if registros is None:
                raise
            logger.info("serving_cached_registros", count=len(registros))
            total = self.store.get(TOTAL_REGISTROS, len(registros))
            return {"success": True, "registros": registros, "total": total, "_from_cache": True}
        self.mark_reachable(True)
        self.store.set(REGISTROS_FTTH, result.get("registros", []))
        self.store.set(TOTAL_REGISTROS, result.get("total", 0))
        return result

    def salvar_registros(self, registros: List[Dict[str, Any]], tipo: str = "manual") -> Dict[str, Any]:
        """Batch insert/update through ``salvar-ftth-registros``. Not queued when offline."""
        body = {"registros": [_strip_markers(r) for r in registros], "tipo": tipo}
        try:
            result = self.api.request("POST", "/api", json=body, params={"action": "salvar-ftth-registros"})
        except NetworkError:
            self.mark_reachable(False)
            raise
        self.mark_reachable(True)
        return result

    # ---------- status ----------
    def test_connection(self) -> bool:
        try:
            result = self.api.request("GET", "/api/health")
        except NetworkError as e:
            logger.warning("connection_test_failed", error=str(e))
            self.mark_reachable(False)
            return False
        except ApiError as e:
            logger.warning("connection_test_failed", status_code=e.status_code, error=str(e))
            self.mark_reachable(True, database_connected=False)
            return False
        connected = isinstance(result, dict) and result.get("database") == "connected"
        self.mark_reachable(True, database_connected=connected)
        return connected

    def offline_queue_status(self) -> Dict[str, Any]:
        return self.queue.status()

    def safe_call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a facade call, turning client errors into ``{"success": False, ...}``."""
        try:
            return fn(*args, **kwargs)
        except ApiError as e:
            return {"success": False, "message": str(e.detail), "status_code": e.status_code}
        except FtthClientError as e:
            return {"success": False, "message": str(e)}
