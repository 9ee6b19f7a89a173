"""
Status store accessor - the one place that reads and writes the campaign
lifecycle tables.

Every call is a single statement (or a single commit) against the store;
there is no cross-call transaction. SQLAlchemy errors are rolled back and
re-raised as StoreError so the next step of a multi-step command can still
use the session.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    Asset,
    Audience,
    Campaign,
    CampaignAsset,
    CampaignAudience,
    CampaignStatusUpdate,
    Note,
    NoteSummary,
)

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for insufficient_privilege (RLS / missing GRANT)
INSUFFICIENT_PRIVILEGE = "42501"


class StoreError(Exception):
    """A store read or write failed."""

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation}: {detail}")


class StoreAccessDenied(StoreError):
    """The configured role cannot read or write the table."""


def is_permission_error(exc: Exception) -> bool:
    """Check whether a DBAPI error is a privilege failure."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == INSUFFICIENT_PRIVILEGE:
        return True
    return "permission denied" in str(exc).lower()


def merge_meta(meta: Optional[Dict[str, Any]], patch: Dict[str, Any]) -> Dict[str, Any]:
    """Merge patch into a JSONB meta value without dropping sibling keys of nested objects."""
    merged = dict(meta or {})
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = {**current, **value}
        else:
            merged[key] = value
    return merged


class StatusStore:
    """Accessor for campaign, campaign_audience, audience, asset and status update rows."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            if is_permission_error(e):
                logger.warning(f"[Store] Access denied on {operation}: {e}")
                raise StoreAccessDenied(operation, str(e)) from e
            logger.error(f"[Store] {operation} failed: {e}")
            raise StoreError(operation, str(e)) from e

    # ===== CAMPAIGN =====

    def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Zero-or-one fetch of a campaign."""
        with self._guard("get_campaign"):
            return self.db.query(Campaign).filter(Campaign.id == campaign_id).first()

    def find_latest_campaign(self, status: str) -> Optional[Campaign]:
        """Most recently updated campaign with the given status."""
        with self._guard("find_latest_campaign"):
            return (
                self.db.query(Campaign)
                .filter(Campaign.status == status)
                .order_by(desc(Campaign.updated_at))
                .first()
            )

    def list_campaigns(self, status: str) -> List[Campaign]:
        """All campaigns with the given status, newest first."""
        with self._guard("list_campaigns"):
            return (
                self.db.query(Campaign)
                .filter(Campaign.status == status)
                .order_by(desc(Campaign.updated_at))
                .all()
            )

    def set_campaign_status(
        self,
        campaign_ids: Iterable[str],
        status: str,
        at: Optional[datetime] = None,
    ) -> int:
        """Set status on the given campaigns. Returns the number of rows changed."""
        ids = list(campaign_ids)
        if not ids:
            return 0
        with self._guard("set_campaign_status"):
            count = (
                self.db.query(Campaign)
                .filter(Campaign.id.in_(ids))
                .update(
                    {"status": status, "updated_at": at or datetime.utcnow()},
                    synchronize_session=False,
                )
            )
            self.db.commit()
        return count

    # ===== STATUS UPDATES =====

    def list_status_updates(
        self,
        campaign_id: Optional[str] = None,
        execution_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[CampaignStatusUpdate]:
        """Most recent status updates for a campaign (or execution), newest first."""
        if not campaign_id and not execution_id:
            return []
        with self._guard("list_status_updates"):
            query = self.db.query(CampaignStatusUpdate)
            if campaign_id:
                query = query.filter(CampaignStatusUpdate.campaign_id == campaign_id)
            else:
                query = query.filter(CampaignStatusUpdate.execution_id == execution_id)
            return (
                query.order_by(
                    desc(CampaignStatusUpdate.updated_at),
                    desc(CampaignStatusUpdate.created_at),
                )
                .limit(limit)
                .all()
            )

    def list_marker_updates(self, messages: Iterable[str], limit: int = 100) -> List[CampaignStatusUpdate]:
        """Most recent status updates across all campaigns whose message is one of the given tokens."""
        with self._guard("list_marker_updates"):
            return (
                self.db.query(CampaignStatusUpdate)
                .filter(
                    CampaignStatusUpdate.message.in_(list(messages)),
                    CampaignStatusUpdate.campaign_id.isnot(None),
                )
                .order_by(
                    desc(CampaignStatusUpdate.updated_at),
                    desc(CampaignStatusUpdate.created_at),
                )
                .limit(limit)
                .all()
            )

    def add_status_updates(self, records: List[Dict[str, Any]]) -> int:
        """Append status update records. Never updates existing ones."""
        if not records:
            return 0
        with self._guard("add_status_updates"):
            for record in records:
                fields = dict(record)
                fields["meta_data"] = fields.pop("metadata", None) or {}
                self.db.add(CampaignStatusUpdate(**fields))
            self.db.commit()
        return len(records)

    def add_status_update(self, **fields) -> None:
        """Append one status update record."""
        self.add_status_updates([fields])

    # ===== CAMPAIGN AUDIENCE =====

    def list_audience_rows(self, campaign_id: str, with_content: bool = False) -> List[CampaignAudience]:
        """campaign_audience rows for a campaign, newest first. Duplicates are returned as stored."""
        with self._guard("list_audience_rows"):
            query = self.db.query(CampaignAudience).filter(CampaignAudience.campaign_id == campaign_id)
            if with_content:
                query = query.filter(
                    CampaignAudience.broadcast_content.isnot(None),
                    CampaignAudience.broadcast_content != "",
                )
            return query.order_by(desc(CampaignAudience.updated_at)).all()

    def linked_audience_ids(self, campaign_id: str) -> Set[str]:
        """Distinct audience ids linked to a campaign."""
        with self._guard("linked_audience_ids"):
            rows = (
                self.db.query(CampaignAudience.audience_id)
                .filter(CampaignAudience.campaign_id == campaign_id)
                .distinct()
                .all()
            )
        return {row[0] for row in rows}

    def latest_audience_row(self, campaign_id: str, audience_id: str) -> Optional[CampaignAudience]:
        """Most recently updated row for a (campaign, audience) pair."""
        with self._guard("latest_audience_row"):
            return (
                self.db.query(CampaignAudience)
                .filter(
                    CampaignAudience.campaign_id == campaign_id,
                    CampaignAudience.audience_id == audience_id,
                )
                .order_by(desc(CampaignAudience.updated_at))
                .first()
            )

    def update_audience_rows(
        self,
        campaign_id: str,
        values: Dict[str, Any],
        audience_ids: Optional[Iterable[str]] = None,
        meta_patch: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> int:
        """
        Apply values to every campaign_audience row of the campaign.

        Args:
            campaign_id: Campaign the rows belong to
            values: Column values to set
            audience_ids: Restrict to these audiences (None = all rows of the campaign)
            meta_patch: Keys merged into each row's meta (nested dicts merged one level)
            at: updated_at stamp

        Returns:
            Number of rows written (duplicates included)
        """
        ids = None if audience_ids is None else list(audience_ids)
        if ids is not None and not ids:
            return 0

        with self._guard("update_audience_rows"):
            query = self.db.query(CampaignAudience).filter(CampaignAudience.campaign_id == campaign_id)
            if ids is not None:
                query = query.filter(CampaignAudience.audience_id.in_(ids))
            rows = query.all()

            stamp = at or datetime.utcnow()
            for row in rows:
                for key, value in values.items():
                    setattr(row, key, value)
                if meta_patch:
                    row.meta = merge_meta(row.meta, meta_patch)
                row.updated_at = stamp
            self.db.commit()
        return len(rows)

    # ===== AUDIENCE / ASSETS =====

    def get_audiences(self, audience_ids: Iterable[str]) -> Dict[str, Audience]:
        """Batch fetch audiences, keyed by id."""
        ids = list(audience_ids)
        if not ids:
            return {}
        with self._guard("get_audiences"):
            rows = self.db.query(Audience).filter(Audience.id.in_(ids)).all()
        return {row.id: row for row in rows}

    def get_audience(self, audience_id: str) -> Optional[Audience]:
        """Zero-or-one fetch of an audience."""
        with self._guard("get_audience"):
            return self.db.query(Audience).filter(Audience.id == audience_id).first()

    def find_campaign_image_url(self, campaign_id: str) -> Optional[str]:
        """Image URL for a campaign, preferring the primary_visual asset."""
        with self._guard("find_campaign_image_url"):
            assets = (
                self.db.query(Asset)
                .join(CampaignAsset, CampaignAsset.asset_id == Asset.id)
                .filter(
                    CampaignAsset.campaign_id == campaign_id,
                    Asset.type == "image",
                    Asset.media_url.isnot(None),
                )
                .all()
            )
        if not assets:
            return None
        primary = next((a for a in assets if a.usage_type == "primary_visual"), None)
        return (primary or assets[0]).media_url

    # ===== NOTES =====

    def has_notes(self, user_id: str) -> bool:
        with self._guard("has_notes"):
            return self.db.query(Note.id).filter(Note.user_id == user_id).first() is not None

    def get_note_summary(self, user_id: str) -> Optional[NoteSummary]:
        with self._guard("get_note_summary"):
            return self.db.query(NoteSummary).filter(NoteSummary.user_id == user_id).first()

    def upsert_note_summary(self, user_id: str, summary: str, at: Optional[datetime] = None) -> NoteSummary:
        """Insert or update the summary row keyed on user_id."""
        stamp = at or datetime.utcnow()
        with self._guard("upsert_note_summary"):
            record = self.db.query(NoteSummary).filter(NoteSummary.user_id == user_id).first()
            if record is None:
                record = NoteSummary(user_id=user_id, generation_count=0)
                self.db.add(record)
            record.summary = summary
            record.last_generated_at = stamp
            record.generation_count = (record.generation_count or 0) + 1
            record.updated_at = stamp
            self.db.commit()
            self.db.refresh(record)
        return record
