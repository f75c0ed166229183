"""
Client-side data layer for Reppy: query cache, online API client, offline
store with a sync queue, guest identity and remote error logging.
"""
from .api import ReppyClient
from .cache import QueryCache
from .errorlog import RemoteLogHandler
from .errors import ApiError, AuthError, ConflictError, LimitError, NotFoundError, OfflineError
from .offline import OfflineStore
from .repository import OfflineRepository
from .sync import SyncQueue, SyncService, sync_with_retry

__all__ = [
    "ApiError", "AuthError", "ConflictError", "LimitError", "NotFoundError", "OfflineError",
    "OfflineRepository", "OfflineStore", "QueryCache", "RemoteLogHandler", "ReppyClient",
    "SyncQueue", "SyncService", "sync_with_retry",
]
