# coursestream/store.py
"""Keyed state store with per-record expiry.

Jobs, manifests and sessions are stored as JSON-compatible dicts under
string keys. Expiry is checked on read; nothing sweeps in the background.
"""
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Set, Tuple


def job_key(job_id: str) -> str:
    return f"job:{job_id}"

def user_jobs_key(user_id: str) -> str:
    return f"user_jobs:{user_id}"

def manifest_key(asset_id: str) -> str:
    return f"manifest:{asset_id}"

def session_key(session_id: str) -> str:
    return f"session:{session_id}"

def user_sessions_key(user_id: str) -> str:
    return f"user_sessions:{user_id}"


class KeyValueStore(ABC):

    @abstractmethod
    def put(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def add_to_set(self, key: str, member: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def remove_from_set(self, key: str, member: str) -> None:
        ...

    @abstractmethod
    def members(self, key: str) -> Set[str]:
        ...


class MemoryStore(KeyValueStore):
    """Process-local store, the default backend and the one tests use"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._items: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _expires(self, ttl: Optional[int]) -> Optional[float]:
        return self.clock() + ttl if ttl else None

    def _read(self, key: str):
        entry = self._items.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self._items[key]
            return None
        return value

    def put(self, key, value, ttl=None):
        with self._lock:
            self._items[key] = (dict(value), self._expires(ttl))

    def get(self, key):
        with self._lock:
            value = self._read(key)
            return dict(value) if value is not None else None

    def delete(self, key):
        with self._lock:
            self._items.pop(key, None)

    def add_to_set(self, key, member, ttl=None):
        with self._lock:
            current = self._read(key) or set()
            current = set(current)
            current.add(member)
            self._items[key] = (current, self._expires(ttl))

    def remove_from_set(self, key, member):
        with self._lock:
            current = self._read(key)
            if current is None:
                return
            current.discard(member)
            if not current:
                del self._items[key]

    def members(self, key):
        with self._lock:
            return set(self._read(key) or ())
