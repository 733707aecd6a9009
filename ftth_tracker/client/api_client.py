"""
HTTP client for the FTTH Tracker API.
"""
from typing import Any, Dict, Optional

import httpx
import structlog

from ..config import settings


logger = structlog.get_logger(__name__)

# Gateway failures mean the API is unreachable, same as a dropped connection
NETWORK_STATUS_CODES = {502, 503, 504}

ENTITY_PATHS = {
    "user": "/api/users",
    "task": "/api/tasks",
    "registro": "/api/registros",
}


class FtthClientError(Exception):
    """Base exception for client-side failures."""


class NetworkError(FtthClientError):
    """The API could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ApiError(FtthClientError):
    """The API answered with an error status."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(f"{status_code}: {detail}")
        self.status_code = status_code
        self.detail = detail


def entity_path(entity: str, entity_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> str:
    if entity == "manutencao":
        registro_id = (data or {}).get("registro_id")
        if not registro_id:
            raise ValueError("manutencao operations need a registro_id")
        base = f"/api/registros/{registro_id}/manutencoes"
    else:
        try:
            base = ENTITY_PATHS[entity]
        except KeyError:
            raise ValueError(f"Unknown entity: {entity}")
    return f"{base}/{entity_id}" if entity_id else base


class ApiClient:
    """Thin wrapper over ``httpx.Client`` that maps failures onto client exceptions."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.token = token
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else settings.client_timeout,
            transport=transport,
        )

    def set_token(self, token: Optional[str]) -> None:
        self.token = token

    def _headers(self, idempotency_key: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = self._client.request(
                method, path, json=json, params=params or None, headers=self._headers(idempotency_key)
            )
        except httpx.TransportError as e:
            logger.warning("api_unreachable", method=method, path=path, error=str(e))
            raise NetworkError(str(e) or type(e).__name__) from e

        if response.status_code in NETWORK_STATUS_CODES:
            logger.warning("api_unavailable", method=method, path=path, status_code=response.status_code)
            raise NetworkError(f"Server unavailable ({response.status_code})", status_code=response.status_code)
        if response.status_code >= 400:
            try:
                body = response.json()
                detail = body.get("detail", body.get("message", body)) if isinstance(body, dict) else body
            except ValueError:
                detail = response.text
            raise ApiError(response.status_code, detail)

        if not response.content:
            return None
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            return response.json()
        return response.text

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
