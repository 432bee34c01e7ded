"""In-memory bookkeeping for session affinity.

Sessions are advisory: they let the hosting application correlate repeated
requests from one browser, and never change what gets served.
"""
from dataclasses import dataclass
import secrets
import threading
import time


@dataclass
class SessionInfo:
    session_id: str
    first_seen: float
    last_seen: float
    requests: int = 0

    def as_dict(self):
        return {
            'session_id': self.session_id,
            'first_seen': self.first_seen,
            'last_seen': self.last_seen,
            'requests': self.requests,
        }


class SessionRegistry:
    def __init__(self, timeout: float, clock=time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._sessions: dict[str, SessionInfo] = {}
        self._lock = threading.Lock()

    @staticmethod
    def new_id() -> str:
        return secrets.token_urlsafe(16)

    def touch(self, session_id: str | None) -> SessionInfo:
        """Record a request for ``session_id``, issuing a new id if it is unknown or expired."""
        now = self._clock()
        with self._lock:
            self._prune(now)
            info = self._sessions.get(session_id) if session_id else None
            if info is None:
                session_id = self.new_id()
                info = SessionInfo(session_id, first_seen=now, last_seen=now)
                self._sessions[session_id] = info
            info.last_seen = now
            info.requests += 1
            return info

    def get(self, session_id: str):
        with self._lock:
            self._prune(self._clock())
            return self._sessions.get(session_id)

    def prune(self) -> int:
        with self._lock:
            return self._prune(self._clock())

    def _prune(self, now):
        expired = [sid for sid, info in self._sessions.items() if now - info.last_seen > self.timeout]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._sessions)
