"""
Reconciliation Loop - The Safety Net
====================================
Background task that replays premium grants which failed to reach the
entitlement store after the webhook had already been acknowledged.

Features:
- Runs every RECONCILE_INTERVAL_SECONDS
- Replays pending dead-lettered grants
- Linear backoff between attempts, abandons after RECONCILE_MAX_ATTEMPTS
- Logs every attempt
"""

import asyncio
from datetime import datetime
from typing import Optional

import structlog

from errors import EntitlementStoreError
from storage.dead_letters import DeadLetterQueue, GrantStatus
from storage.entitlement_store import EntitlementStore


logger = structlog.get_logger(component="reconciliation")


async def reconcile_failed_grants(
    store: EntitlementStore,
    dead_letters: DeadLetterQueue,
    limit: int = 100,
    due_only: bool = True,
) -> dict:
    """
    Replay pending grants. With due_only=False the backoff is ignored.

    Returns:
        Counts of grants retried, resolved, still failing, and abandoned
    """
    now = None if due_only else datetime.max
    pending = await dead_letters.get_pending(limit=limit, now=now)
    stats = {"retried": len(pending), "resolved": 0, "failed": 0, "abandoned": 0}

    for grant in pending:
        try:
            await store.grant_premium(grant.user_id)
        except EntitlementStoreError as e:
            updated = await dead_letters.mark_failed(grant.grant_id, str(e))
            if updated is not None and updated.status == GrantStatus.ABANDONED:
                stats["abandoned"] += 1
                logger.error("grant_abandoned",
                             grant_id=grant.grant_id,
                             user_id=grant.user_id,
                             attempts=updated.attempts,
                             error=str(e))
            else:
                stats["failed"] += 1
                logger.warning("grant_retry_failed",
                               grant_id=grant.grant_id,
                               user_id=grant.user_id,
                               error=str(e))
            continue

        await dead_letters.mark_resolved(grant.grant_id)
        stats["resolved"] += 1
        logger.info("grant_reconciled",
                    grant_id=grant.grant_id,
                    user_id=grant.user_id,
                    event_id=grant.event_id)

    if pending:
        logger.info("reconciliation_cycle_complete", **stats)
    return stats


class ReconciliationLoop:
    """Periodic driver for reconcile_failed_grants, owned by the app lifespan"""

    def __init__(
        self,
        store: EntitlementStore,
        dead_letters: DeadLetterQueue,
        interval_seconds: int = 300,
    ):
        self.store = store
        self.dead_letters = dead_letters
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("reconciliation_loop_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("reconciliation_loop_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await reconcile_failed_grants(self.store, self.dead_letters)
            except Exception as e:
                logger.error("reconciliation_cycle_error", error=str(e), exc_info=True)
