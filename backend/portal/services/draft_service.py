"""
Draft assembly - builds the operator-reviewable view of a drafted campaign.

Display fields come from one ordered fallback chain:
    campaign columns -> campaign.meta (research_payload.campaign_brief)
    -> status update metadata (when the campaign table is not readable)

Every sub-query is optional: a failed read drops its part of the payload and
adds a warning instead of failing the request.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from ..models import Audience, Campaign, CampaignAudience, CampaignStatus, CampaignStatusUpdate
from ..schemas.draft import DraftAudience, DraftPayload
from .campaign_state import (
    CampaignState,
    CampaignStateResolver,
    DRAFTED_MARKERS,
    LIFECYCLE_MARKERS,
    clean_campaign_id,
    latest_drafted_campaign_id,
)
from .status_store import StatusStore, StoreAccessDenied, StoreError

logger = logging.getLogger(__name__)

WARNING_CAMPAIGN_UNREADABLE = "campaign_table_unavailable"
WARNING_AUDIENCES_UNREADABLE = "audiences_unavailable"
WARNING_AUDIENCE_DETAILS_UNREADABLE = "audience_details_unavailable"
WARNING_IMAGE_UNREADABLE = "image_unavailable"


def dedupe_latest(rows: Iterable[CampaignAudience]) -> List[CampaignAudience]:
    """Keep the most recently updated row per audience_id."""
    latest: Dict[str, CampaignAudience] = {}
    for row in rows:
        current = latest.get(row.audience_id)
        if current is None or (row.updated_at or row.created_at) > (current.updated_at or current.created_at):
            latest[row.audience_id] = row
    return list(latest.values())


def resolve_channel(audience: Optional[Audience]) -> str:
    """WhatsApp when opted in, Telegram when a handle exists, WhatsApp otherwise."""
    if audience is None:
        return "whatsapp"
    if audience.wa_opt_in:
        return "whatsapp"
    if audience.telegram_username:
        return "telegram"
    return "whatsapp"


def telegram_handle(username: Optional[str]) -> str:
    if not username:
        return ""
    return username if username.startswith("@") else f"@{username}"


def resolve_send_to(audience: Optional[Audience], channel: str) -> str:
    """Channel-appropriate contact identifier, or '' when there is none."""
    if audience is None:
        return ""
    if channel == "telegram":
        return telegram_handle(audience.telegram_username) or audience.source_contact_id or ""
    return audience.phone_e164 or audience.source_contact_id or ""


def as_dict(value: Any) -> Dict[str, Any]:
    """JSON column value as a dict; anything else reads as empty."""
    return value if isinstance(value, dict) else {}


def guardrails_tag(meta: Any) -> str:
    tag = as_dict(as_dict(meta).get("guardrails")).get("tag") or "needs_review"
    if not isinstance(tag, str):
        return "needs_review"
    # Legacy value written before the review step existed
    return "passed" if tag == "approved" else tag


@dataclass
class DraftLookup:
    """Result of a draft lookup. draft is None when there is nothing to review."""
    draft: Optional[DraftPayload]
    campaign_id: Optional[str] = None
    state: Optional[CampaignState] = None
    message: Optional[str] = None


@dataclass
class _DisplayFields:
    name: Optional[str] = None
    objective: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    origin_notes: str = ""
    total_matched: int = 0


class DraftAssemblyService:
    """Assembles DraftPayloads from campaign, campaign_audience and audience rows."""

    def __init__(self, store: StatusStore, resolver: Optional[CampaignStateResolver] = None):
        self.store = store
        self.resolver = resolver or CampaignStateResolver(store)

    def locate_drafted_campaign(self) -> Optional[str]:
        """
        Most recently updated campaign awaiting review.

        Reads campaign.status directly; falls back to scanning the status
        update log when the campaign table is not readable.
        """
        try:
            campaign = self.store.find_latest_campaign(CampaignStatus.CONTENT_DRAFTED.value)
            return campaign.id if campaign else None
        except StoreAccessDenied:
            logger.info("[Drafts] Campaign table not readable, scanning status log for drafts")

        markers = self.store.list_marker_updates(LIFECYCLE_MARKERS, limit=self.resolver.history_limit)
        return latest_drafted_campaign_id(markers)

    def get_draft(self, campaign_id: Optional[str] = None) -> DraftLookup:
        """
        Draft for a campaign, or for the current drafted campaign when no id is given.

        Never raises on store failures.
        """
        campaign_id = clean_campaign_id(campaign_id)
        if campaign_id is None:
            try:
                campaign_id = self.locate_drafted_campaign()
            except StoreError as e:
                logger.error(f"[Drafts] Could not locate a drafted campaign: {e}")
                return DraftLookup(draft=None, message="Error querying campaigns")
            if campaign_id is None:
                return DraftLookup(draft=None, message="No draft campaign found")

        state = self.resolver.resolve(campaign_id)
        if state != CampaignState.DRAFTED:
            logger.info(f"[Drafts] Campaign {campaign_id} is '{state.value}', no draft to review")
            return DraftLookup(
                draft=None,
                campaign_id=campaign_id,
                state=state,
                message=f"Campaign state is '{state.value}', not 'drafted'",
            )

        return DraftLookup(
            draft=self.assemble(campaign_id),
            campaign_id=campaign_id,
            state=state,
        )

    def assemble(self, campaign_id: str) -> DraftPayload:
        """Build the payload for a campaign without checking its state."""
        warnings: List[str] = []

        campaign: Optional[Campaign] = None
        try:
            campaign = self.store.get_campaign(campaign_id)
        except StoreError as e:
            logger.warning(f"[Drafts] Campaign {campaign_id} not readable, using status log metadata: {e}")
            warnings.append(WARNING_CAMPAIGN_UNREADABLE)

        fields = self._display_fields(campaign, campaign_id)

        try:
            rows = self.store.list_audience_rows(campaign_id, with_content=True)
        except StoreError as e:
            logger.warning(f"[Drafts] Could not fetch audiences for {campaign_id}: {e}")
            warnings.append(WARNING_AUDIENCES_UNREADABLE)
            rows = []

        deduped = dedupe_latest(rows)
        if len(deduped) != len(rows):
            logger.warning(
                f"[Drafts] Campaign {campaign_id} has {len(rows) - len(deduped)} duplicate audience row(s)"
            )

        details: Dict[str, Audience] = {}
        try:
            details = self.store.get_audiences(row.audience_id for row in deduped)
        except StoreError as e:
            logger.warning(f"[Drafts] Could not fetch audience details for {campaign_id}: {e}")
            warnings.append(WARNING_AUDIENCE_DETAILS_UNREADABLE)

        image_url = None
        try:
            image_url = self.store.find_campaign_image_url(campaign_id)
        except StoreError as e:
            logger.warning(f"[Drafts] Could not fetch image for {campaign_id}: {e}")
            warnings.append(WARNING_IMAGE_UNREADABLE)

        audiences = [self._draft_audience(row, details.get(row.audience_id)) for row in deduped]
        audiences.sort(key=lambda a: (a.audience_name or "").lower())

        return DraftPayload(
            campaign_id=campaign_id,
            campaign_name=fields.name or "Untitled Campaign",
            campaign_objective=fields.objective or "",
            campaign_image_url=image_url,
            campaign_tags=fields.tags,
            origin_notes=fields.origin_notes,
            total_matched_audience=fields.total_matched or len(deduped),
            audiences=audiences,
            warnings=warnings,
            created_at=campaign.created_at if campaign else None,
            updated_at=campaign.updated_at if campaign else None,
        )

    def _display_fields(self, campaign: Optional[Campaign], campaign_id: str) -> _DisplayFields:
        fields = _DisplayFields()

        if campaign is not None:
            meta = as_dict(campaign.meta)
            brief = as_dict(as_dict(meta.get("research_payload")).get("campaign_brief"))
            strategy = as_dict(campaign.matchmaker_strategy)

            fields.name = campaign.name or brief.get("title")
            fields.objective = campaign.objective or brief.get("objective")
            if isinstance(strategy.get("tags"), list):
                fields.tags = strategy["tags"]
            elif isinstance(brief.get("tags"), list):
                fields.tags = brief["tags"]
            notes = meta.get("origin_raw_admin_notes")
            fields.origin_notes = notes if isinstance(notes, str) else ""
            fields.total_matched = as_dict(meta.get("matchmaker_result")).get("total_matched") or 0

        if fields.name and fields.objective:
            return fields

        audit = self._audit_metadata(campaign_id)
        fields.name = fields.name or audit.get("campaign_name")
        fields.objective = fields.objective or audit.get("campaign_objective")
        if not fields.tags and isinstance(audit.get("campaign_tags"), list):
            fields.tags = audit["campaign_tags"]
        fields.origin_notes = fields.origin_notes or audit.get("origin_notes") or ""
        fields.total_matched = fields.total_matched or audit.get("total_matched") or 0
        return fields

    def _audit_metadata(self, campaign_id: str) -> Dict[str, Any]:
        """Campaign descriptors carried in status update metadata, newest wins."""
        try:
            updates = self.store.list_status_updates(campaign_id=campaign_id, limit=self.resolver.history_limit)
        except StoreError as e:
            logger.warning(f"[Drafts] Status log not readable for {campaign_id}: {e}")
            return {}

        merged: Dict[str, Any] = {}
        # Oldest first so newer records overwrite
        for update in sorted(updates, key=self._update_key):
            meta = as_dict(update.meta_data)
            for key in ("campaign_name", "campaign_objective", "campaign_tags", "origin_notes", "total_matched"):
                if meta.get(key):
                    merged[key] = meta[key]
            if update.message in DRAFTED_MARKERS and meta.get("audience_count") and not merged.get("total_matched"):
                merged["total_matched"] = meta["audience_count"]
        return merged

    @staticmethod
    def _update_key(update: CampaignStatusUpdate):
        return (update.updated_at or update.created_at, update.created_at)

    @staticmethod
    def _draft_audience(row: CampaignAudience, audience: Optional[Audience]) -> DraftAudience:
        meta = as_dict(row.meta)
        guardrails = as_dict(meta.get("guardrails"))
        violations = guardrails.get("violations")
        channel = resolve_channel(audience)
        content = row.broadcast_content or ""

        return DraftAudience(
            campaign_id=row.campaign_id,
            audience_id=row.audience_id,
            audience_name=(audience.full_name or audience.source_contact_id) if audience else "Unknown",
            source_contact_id=(audience.source_contact_id or "") if audience else "",
            telegram_username=(audience.telegram_username or "") if audience else "",
            send_to=resolve_send_to(audience, channel) or "Unknown",
            channel=channel,
            broadcast_content=content,
            character_count=len(content),
            guardrails_tag=guardrails_tag(meta),
            guardrails_violations=violations if isinstance(violations, list) else [],
            matchmaker_reason=meta.get("matchmaker_reason"),
            target_status=row.target_status or "pending",
            scheduled_at=row.scheduled_at,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )
