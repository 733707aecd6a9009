from .api_client import ApiClient, ApiError, FtthClientError, NetworkError
from .facade import DbManager
from .offline_queue import OfflineQueue
from .session import AuthSession
from .storage import LocalStore
from .sync import SyncManager

__all__ = [
    "ApiClient",
    "ApiError",
    "AuthSession",
    "DbManager",
    "FtthClientError",
    "LocalStore",
    "NetworkError",
    "OfflineQueue",
    "SyncManager",
]
