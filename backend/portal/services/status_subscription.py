"""
Status subscription - cancellable polling of a campaign's resolved state.

    unsubscribe = subscriptions.subscribe(campaign_id, on_update)
    ...
    unsubscribe()

Polls every status_poll_interval_seconds during the initial burst window,
then every status_poll_backoff_interval_seconds. on_update is only called
when the snapshot differs from the last one delivered.
"""
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from ..config import Settings, get_settings
from ..database import SessionLocal
from .campaign_state import CampaignStateResolver
from .status_store import StatusStore

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Any]
SnapshotFn = Callable[[Optional[str], Optional[str]], Snapshot]
UpdateCallback = Callable[[Snapshot], Union[None, Awaitable[None]]]


def read_status_snapshot(campaign_id: Optional[str], execution_id: Optional[str] = None) -> Snapshot:
    """Resolve a campaign once, on a fresh session."""
    settings = get_settings()
    db = SessionLocal()
    try:
        resolver = CampaignStateResolver(StatusStore(db), history_limit=settings.status_history_limit)
        return resolver.inspect(campaign_id, execution_id).snapshot()
    finally:
        db.close()


class StatusSubscription:
    """Runs one polling task per subscriber."""

    def __init__(self, snapshot_fn: Optional[SnapshotFn] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.snapshot_fn = snapshot_fn or read_status_snapshot
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active(self) -> int:
        return len(self._tasks)

    def interval_at(self, elapsed: float) -> float:
        """Poll interval after `elapsed` seconds of subscription."""
        if elapsed < self.settings.status_poll_burst_seconds:
            return self.settings.status_poll_interval_seconds
        return self.settings.status_poll_backoff_interval_seconds

    def subscribe(
        self,
        campaign_id: Optional[str],
        on_update: UpdateCallback,
        execution_id: Optional[str] = None,
    ) -> Callable[[], None]:
        """
        Start polling and return the unsubscribe function.

        Must be called from a running event loop. Unsubscribing twice is a no-op.
        """
        task = asyncio.create_task(self._poll(campaign_id, execution_id, on_update))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info(f"[Subscription] Watching campaign={campaign_id} execution={execution_id}")

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()
                logger.info(f"[Subscription] Stopped campaign={campaign_id} execution={execution_id}")

        return unsubscribe

    def close(self) -> None:
        """Cancel every running subscription."""
        for task in list(self._tasks):
            task.cancel()

    async def _poll(self, campaign_id: Optional[str], execution_id: Optional[str], on_update: UpdateCallback):
        loop = asyncio.get_running_loop()
        started = loop.time()
        last: Optional[Snapshot] = None

        while True:
            try:
                snapshot = self.snapshot_fn(campaign_id, execution_id)
            except Exception as e:
                logger.error(f"[Subscription] Poll failed for {campaign_id or execution_id}: {e}")
                snapshot = None

            if snapshot is not None and snapshot != last:
                last = snapshot
                # Learn the campaign id once n8n has created the row
                if not campaign_id and snapshot.get("campaign_id"):
                    campaign_id = snapshot["campaign_id"]
                try:
                    result = on_update(snapshot)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    logger.error(f"[Subscription] on_update failed for {campaign_id or execution_id}: {e}")

            await asyncio.sleep(self.interval_at(loop.time() - started))


# Singleton instance
_status_subscription: Optional[StatusSubscription] = None


def get_status_subscription() -> StatusSubscription:
    """Get the singleton subscription manager."""
    global _status_subscription
    if _status_subscription is None:
        _status_subscription = StatusSubscription()
    return _status_subscription
