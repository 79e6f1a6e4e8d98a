# storage/dead_letters.py
# ============================================================================
# POLEGUESSR PREMIUM PASS: DEAD LETTER QUEUE
# ============================================================================
# Premium grants whose store write failed after the webhook was already
# acknowledged. The reconciliation loop (tasks/reconciliation.py) replays
# them; one pending entry per user is enough since the grant is a constant
# assignment.
# ============================================================================

import asyncio
import uuid
from collections import deque
from datetime import datetime, timedelta
from enum import Enum
from typing import Deque, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field


class GrantStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


class FailedGrant(BaseModel):
    """A premium grant that still has to reach the store"""
    grant_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    event_id: str
    user_id: str
    status: GrantStatus = GrantStatus.PENDING
    attempts: int = 1
    max_attempts: int = 5
    last_error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None

    @computed_field
    @property
    def is_retriable(self) -> bool:
        return self.status == GrantStatus.PENDING and self.attempts < self.max_attempts


class DeadLetterQueue:
    """
    In-process DLQ for failed grants.

    Entries live only in this process: a restart drops anything still
    pending, and each worker of a multi-worker deployment keeps its own
    queue. Pending grants are indexed by user; resolved and abandoned
    grants are kept only as a bounded history, while the stats count
    every outcome since startup.
    """

    def __init__(self, max_attempts: int = 5, retry_delay_seconds: int = 60, history_size: int = 100):
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self.history_size = history_size
        self._grants: Dict[str, FailedGrant] = {}
        self._pending_by_user: Dict[str, str] = {}
        self._history: Deque[str] = deque()
        self._resolved_count = 0
        self._abandoned_count = 0
        self._lock = asyncio.Lock()

    async def enqueue(self, event_id: str, user_id: str, error: str) -> FailedGrant:
        """Record a failed grant, folding repeats for the same user into one entry"""
        async with self._lock:
            grant_id = self._pending_by_user.get(user_id)
            if grant_id is not None:
                grant = self._grants[grant_id]
                grant.last_error = error
                return grant

            grant = FailedGrant(
                event_id=event_id,
                user_id=user_id,
                max_attempts=self.max_attempts,
                last_error=error,
                next_retry_at=datetime.utcnow() + timedelta(seconds=self.retry_delay_seconds),
            )
            self._grants[grant.grant_id] = grant
            self._pending_by_user[user_id] = grant.grant_id
            return grant

    async def get_pending(self, limit: int = 100, now: Optional[datetime] = None) -> List[FailedGrant]:
        now = now or datetime.utcnow()
        async with self._lock:
            pending = [
                g for g in (self._grants[gid] for gid in self._pending_by_user.values())
                if g.next_retry_at is None or g.next_retry_at <= now
            ]
            return pending[:limit]

    async def mark_resolved(self, grant_id: str) -> None:
        async with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None or grant.status != GrantStatus.PENDING:
                return
            grant.status = GrantStatus.RESOLVED
            grant.resolved_at = datetime.utcnow()
            self._resolved_count += 1
            self._retire(grant)

    async def mark_failed(self, grant_id: str, error: str) -> Optional[FailedGrant]:
        """Count a failed retry; back off linearly, abandon after max_attempts"""
        async with self._lock:
            grant = self._grants.get(grant_id)
            if grant is None:
                return None
            if grant.status != GrantStatus.PENDING:
                return grant
            grant.attempts += 1
            grant.last_error = error
            if grant.attempts >= grant.max_attempts:
                grant.status = GrantStatus.ABANDONED
                grant.next_retry_at = None
                self._abandoned_count += 1
                self._retire(grant)
            else:
                grant.next_retry_at = datetime.utcnow() + timedelta(
                    seconds=self.retry_delay_seconds * grant.attempts
                )
            return grant

    def _retire(self, grant: FailedGrant) -> None:
        # caller holds the lock
        self._pending_by_user.pop(grant.user_id, None)
        self._history.append(grant.grant_id)
        while len(self._history) > self.history_size:
            self._grants.pop(self._history.popleft(), None)

    async def get_stats(self) -> dict:
        async with self._lock:
            return {
                "total": len(self._pending_by_user) + self._resolved_count + self._abandoned_count,
                "retained": len(self._grants),
                "pending": len(self._pending_by_user),
                "resolved": self._resolved_count,
                "abandoned": self._abandoned_count,
            }
