from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional

from .models import RefinementRequest, RefinementResult


@dataclass(frozen=True)
class SessionRecord:
    request: RefinementRequest
    result: RefinementResult
    updated_at: float


class RefinementStore:
    """In-memory refinement sessions: the inputs of the last cycle and its outcome."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def save(self, request: RefinementRequest, result: RefinementResult) -> SessionRecord:
        record = SessionRecord(request=request, result=result, updated_at=time.time())
        with self._lock:
            self._sessions[result.session_id] = record
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            return self._sessions.get(session_id)

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
