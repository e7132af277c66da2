"""
Persistence layer for the job queue.

Single JSON document holding every job and the queue config.
Loaded wholesale at startup, rewritten wholesale on every save.
"""

from .errors import LoadError, PersistenceError, SaveError
from .store import JobStore, StoreDocument

__all__ = ["JobStore", "StoreDocument", "PersistenceError", "LoadError", "SaveError"]
