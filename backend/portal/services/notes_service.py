"""
Notes summary service - asks n8n to summarize a user's notes, at most once
per rate window.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..config import Settings, get_settings
from .n8n_service import N8NService
from .status_store import StatusStore, StoreError

logger = logging.getLogger(__name__)


class SummaryError(Exception):
    """Summary generation failed. status_code is the HTTP status to report."""

    status_code = 502

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NoNotesError(SummaryError):
    status_code = 400


class SummaryRateLimited(SummaryError):
    status_code = 429

    def __init__(self, hours_remaining: int, window_hours: int):
        self.hours_remaining = hours_remaining
        self.window_hours = window_hours
        super().__init__(
            f"Summary was generated recently. Please try again in {hours_remaining} hour(s)."
        )


@dataclass
class NoteSummaryResult:
    summary: str
    updated_at: Optional[datetime] = None


def hours_remaining(last_generated_at: Optional[datetime], window_hours: int, now: Optional[datetime] = None) -> int:
    """Whole hours until the rate window reopens, 0 when it is open."""
    if last_generated_at is None or window_hours <= 0:
        return 0
    now = now or datetime.utcnow()
    remaining = (last_generated_at + timedelta(hours=window_hours)) - now
    if remaining.total_seconds() <= 0:
        return 0
    return max(1, math.ceil(remaining.total_seconds() / 3600))


class NoteSummaryService:
    """Generates and stores per-user note summaries."""

    def __init__(self, store: StatusStore, n8n: N8NService, settings: Optional[Settings] = None):
        self.store = store
        self.n8n = n8n
        self.settings = settings or get_settings()

    def check_rate_limit(self, user_id: str, now: Optional[datetime] = None) -> None:
        """Raise SummaryRateLimited while the last generation is inside the window."""
        try:
            existing = self.store.get_note_summary(user_id)
        except StoreError as e:
            # A failed check does not block generation
            logger.warning(f"[Notes] Rate limit check failed for {user_id}, continuing: {e}")
            return

        if existing is None:
            return
        window = self.settings.summary_rate_limit_hours
        remaining = hours_remaining(existing.last_generated_at, window, now=now)
        if remaining > 0:
            logger.info(f"[Notes] Summary for {user_id} rate limited, {remaining}h remaining")
            raise SummaryRateLimited(remaining, window)

    async def generate(self, user_id: str) -> NoteSummaryResult:
        """
        Generate a fresh summary for the user.

        Raises:
            NoNotesError: the user has no notes
            SummaryRateLimited: inside the rate window
            WebhookNotConfigured: notes webhook URL or credentials missing
            SummaryError: webhook failed or returned an empty body
        """
        try:
            has_notes = self.store.has_notes(user_id)
        except StoreError as e:
            logger.warning(f"[Notes] Could not read notes for {user_id}: {e}")
            has_notes = False
        if not has_notes:
            raise NoNotesError("Please create at least one note before generating a summary.")

        self.check_rate_limit(user_id)

        result = await self.n8n.generate_notes_summary(user_id)
        if not result.ok:
            if result.transport_error:
                raise SummaryError(f"Failed to generate summary. {result.transport_error}.")
            raise SummaryError(f"Failed to generate summary. Webhook returned status {result.status_code}.")

        body = result.body
        if isinstance(body, dict):
            body = body.get("summary") or body.get("output") or ""
        summary = str(body or "").strip()
        if not summary:
            raise SummaryError("Received empty summary from webhook.")

        updated_at = None
        try:
            record = self.store.upsert_note_summary(user_id, summary)
            updated_at = record.updated_at
        except StoreError as e:
            # The summary is still returned to the caller
            logger.warning(f"[Notes] Failed to store summary for {user_id}: {e}")

        logger.info(f"[Notes] Summary generated for {user_id} ({len(summary)} chars)")
        return NoteSummaryResult(summary=summary, updated_at=updated_at)
