from typing import Any, Dict, Optional

import structlog

from ..services.permissions import has_permission as _has_permission
from .api_client import ApiClient
from .storage import AUTH_TOKEN, CURRENT_USER, REFRESH_TOKEN, LocalStore


logger = structlog.get_logger(__name__)


class AuthSession:
    """Logged-in user and tokens, persisted in the local store."""

    def __init__(self, api: ApiClient, store: LocalStore):
        self.api = api
        self.store = store
        token = store.get(AUTH_TOKEN)
        if token:
            api.set_token(token)

    def login(self, username: str, password: str) -> Dict[str, Any]:
        result = self.api.request("POST", "/api/auth/login", json={"username": username, "password": password})
        self.store.set(CURRENT_USER, result["user"])
        self.store.set(AUTH_TOKEN, result["token"])
        self.store.set(REFRESH_TOKEN, result.get("refresh_token"))
        self.api.set_token(result["token"])
        logger.info("session_started", user_id=result["user"].get("id"))
        return result["user"]

    def refresh(self) -> str:
        refresh_token = self.store.get(REFRESH_TOKEN)
        if not refresh_token:
            raise ValueError("No refresh token stored")
        result = self.api.request("POST", "/api/auth/refresh", json={"refresh_token": refresh_token})
        self.store.set(AUTH_TOKEN, result["token"])
        self.store.set(REFRESH_TOKEN, result["refresh_token"])
        self.api.set_token(result["token"])
        return result["token"]

    def logout(self) -> None:
        self.store.remove(CURRENT_USER, AUTH_TOKEN, REFRESH_TOKEN)
        self.api.set_token(None)
        logger.info("session_ended")

    def get_current_user(self) -> Optional[Dict[str, Any]]:
        return self.store.get(CURRENT_USER)

    def is_authenticated(self) -> bool:
        return bool(self.store.get(AUTH_TOKEN) and self.get_current_user())

    def has_permission(self, permission: str) -> bool:
        return _has_permission(self.get_current_user(), permission)
