# provisioning_engine/orchestrator/session_registry.py
"""Caller-facing session ids with a bounded lifetime."""

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple


@dataclass
class SessionEntry:
    session_id: str
    host: str
    username: str
    application_name: str
    application_id: Optional[int] = None
    created_at: float = field(default_factory=time.monotonic)
    expires_at: float = 0.0

    @property
    def target(self) -> Tuple[str, str, str]:
        return (self.host, self.username, self.application_name)


class SessionRegistry:
    """Map session id -> application target. Entries expire after `ttl_seconds`."""

    def __init__(self, ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, SessionEntry] = {}
        self._lock = threading.Lock()

    def register(
        self,
        host: str,
        username: str,
        application_name: str,
        application_id: Optional[int] = None,
    ) -> SessionEntry:
        now = self._clock()
        entry = SessionEntry(
            session_id=uuid.uuid4().hex,
            host=host,
            username=username,
            application_name=application_name,
            application_id=application_id,
            created_at=now,
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._evict(now)
            self._entries[entry.session_id] = entry
        return entry

    def get(self, session_id: str) -> Optional[SessionEntry]:
        now = self._clock()
        with self._lock:
            self._evict(now)
            return self._entries.get(session_id)

    def __len__(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._entries)

    def _evict(self, now: float) -> None:
        expired = [sid for sid, entry in self._entries.items() if entry.expires_at <= now]
        for sid in expired:
            del self._entries[sid]
