"""In-memory request tracking.

One tracker is owned by each app instance. Entries live only in process
memory and are dropped once terminal and older than the retention window.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta

from src.models import ActionRequest, PendingRequest, RequestStatus


class RequestTracker:
    """Lock-guarded map of request_id -> PendingRequest."""

    def __init__(self, retention_seconds: float = 3600.0) -> None:
        self._retention = timedelta(seconds=retention_seconds)
        self._entries: dict[str, PendingRequest] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def register(self, request: ActionRequest) -> PendingRequest:
        """Record a newly accepted request as pending."""
        self.prune()
        entry = PendingRequest(
            request_id=request.request_id,
            action=request.action,
            params=request.params,
            webhook_url=request.webhook_url,
        )
        with self._lock:
            self._entries[request.request_id] = entry
        return entry.model_copy()

    def mark(self, request_id: str, status: RequestStatus) -> PendingRequest | None:
        """Move an entry to a new status. Returns None if it is unknown."""
        with self._lock:
            current = self._entries.get(request_id)
            if current is None:
                return None
            updated = current.model_copy(update={
                "status": status,
                "updated_at": datetime.now(UTC).isoformat(),
            })
            self._entries[request_id] = updated
            return updated.model_copy()

    def get(self, request_id: str) -> PendingRequest | None:
        with self._lock:
            entry = self._entries.get(request_id)
            return entry.model_copy() if entry else None

    def remove(self, request_id: str) -> bool:
        with self._lock:
            return self._entries.pop(request_id, None) is not None

    def prune(self, now: datetime | None = None) -> int:
        """Drop terminal entries older than the retention window."""
        cutoff = (now or datetime.now(UTC)) - self._retention
        with self._lock:
            expired = [
                request_id
                for request_id, entry in self._entries.items()
                if entry.is_terminal
                and datetime.fromisoformat(entry.updated_at) <= cutoff
            ]
            for request_id in expired:
                del self._entries[request_id]
        return len(expired)
