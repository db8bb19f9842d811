"""
Thread-safe session storage with expiration for ephemeral token mappings
"""

from typing import Callable, Dict, Optional
from datetime import datetime, timedelta
import threading

from services.mapping_store import InMemoryMappingStore


class SessionStore:
    """
    Keeps one in-memory mapping store per session, expiring idle sessions.
    Expired sessions are evicted whenever a session is opened.
    """

    def __init__(
        self,
        expiration_hours: float = 24,
        store_factory: Callable[[], InMemoryMappingStore] = InMemoryMappingStore,
    ):
        self._store: Dict[str, Dict] = {}
        self._lock = threading.Lock()
        self.expiration_hours = expiration_hours
        self.store_factory = store_factory

    def _expires_at(self) -> datetime:
        return datetime.now() + timedelta(hours=self.expiration_hours)

    def _evict_expired(self, now: datetime) -> int:
        # Caller holds the lock
        expired = [sid for sid, data in self._store.items() if now >= data['expires_at']]
        for sid in expired:
            del self._store[sid]
        return len(expired)

    def get(self, session_id: str) -> Optional[InMemoryMappingStore]:
        """Get the mapping store for a session if it exists and hasn't expired"""
        with self._lock:
            if session_id in self._store:
                session = self._store[session_id]
                if datetime.now() < session['expires_at']:
                    return session['mappings']
                del self._store[session_id]
            return None

    def get_or_create(self, session_id: str) -> InMemoryMappingStore:
        """Get the session's mapping store, creating it if needed, and refresh expiration"""
        with self._lock:
            self._evict_expired(datetime.now())
            session = self._store.get(session_id)
            if session is None:
                session = {'mappings': self.store_factory()}
                self._store[session_id] = session
            session['expires_at'] = self._expires_at()
            return session['mappings']

    def delete(self, session_id: str) -> bool:
        """Delete a session"""
        with self._lock:
            if session_id in self._store:
                del self._store[session_id]
                return True
            return False

    def cleanup_expired(self) -> int:
        """Remove expired sessions"""
        with self._lock:
            return self._evict_expired(datetime.now())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)
