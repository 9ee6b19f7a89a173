"""
Lifecycle commands - approve, reject, send, update-content and cleanup.

Each command is a sequence of independent store writes with no transaction
around them. The first write (the authoritative step) decides the outcome:
its failure aborts the command with AuthoritativeStepError. Failures of the
later writes are logged and returned as warnings.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..models import CampaignStatus, TargetStatus
from .campaign_state import MARKER_APPROVED, MARKER_BROADCAST_TRIGGERED, MARKER_REJECTED, clean_campaign_id
from .draft_service import resolve_channel, resolve_send_to
from .n8n_service import N8NService, WebhookResult
from .status_store import StatusStore, StoreError

logger = logging.getLogger(__name__)


class CommandValidationError(Exception):
    """A required command field is missing or malformed. Nothing was written."""


class AuthoritativeStepError(Exception):
    """The write that defines the command's outcome failed."""

    def __init__(self, message: str, detail: str = ""):
        self.message = message
        self.detail = detail
        super().__init__(f"{message}: {detail}" if detail else message)


@dataclass
class ApproveResult:
    campaign_id: str
    approved_count: int
    rejected_count: int
    warnings: List[str] = field(default_factory=list)


@dataclass
class RejectResult:
    campaign_id: str
    rejected_rows: int = 0
    warnings: List[str] = field(default_factory=list)


@dataclass
class RecipientOutcome:
    audience_id: str
    success: bool
    channel: Optional[str] = None
    send_to: Optional[str] = None
    simulated: bool = False
    error: Optional[str] = None


@dataclass
class SendResult:
    campaign_id: str
    success: bool
    results: List[RecipientOutcome] = field(default_factory=list)
    webhook_result: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.success)


@dataclass
class CleanupResult:
    kept_campaign_id: Optional[str] = None
    updated_campaign_ids: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def kept(self) -> int:
        return 1 if self.kept_campaign_id else 0

    @property
    def updated(self) -> int:
        return len(self.updated_campaign_ids)

    @property
    def message(self) -> str:
        if not self.kept_campaign_id:
            return 'No campaigns with status "content_drafted" found. Nothing to cleanup.'
        if not self.updated_campaign_ids:
            return "Only one draft campaign found. No cleanup needed."
        return "Cleanup completed successfully"


def _require_campaign_id(campaign_id: Optional[str]) -> str:
    cleaned = clean_campaign_id(campaign_id)
    if cleaned is None:
        raise CommandValidationError("campaign_id is required")
    return cleaned


def _require_audience_ids(audience_ids: Optional[List[str]]) -> List[str]:
    if not isinstance(audience_ids, list) or not audience_ids:
        raise CommandValidationError("audience_ids is required and must be non-empty array")
    cleaned = []
    for audience_id in audience_ids:
        if not isinstance(audience_id, str) or not audience_id.strip():
            raise CommandValidationError("audience_ids must contain non-empty strings")
        if audience_id.strip() not in cleaned:
            cleaned.append(audience_id.strip())
    return cleaned


class LifecycleCommands:
    """Operator commands that move a campaign through its lifecycle."""

    def __init__(self, store: StatusStore, n8n: Optional[N8NService] = None):
        self.store = store
        self.n8n = n8n

    def _audit(self, warnings: List[str], tag: str, **record) -> bool:
        """Append one status update record. Failure is a warning, never an abort."""
        try:
            self.store.add_status_update(**record)
            return True
        except StoreError as e:
            logger.warning(f"[{tag}] Status update insert failed for {record.get('campaign_id')}: {e}")
            warnings.append("status_update_failed")
            return False

    # ===== APPROVE =====

    def approve(
        self,
        campaign_id: Optional[str],
        audience_ids: Optional[List[str]],
        actor: str = "admin",
    ) -> ApproveResult:
        """
        Approve the selected recipients and reject every other linked recipient.

        Raises:
            CommandValidationError: campaign_id or audience_ids missing
            AuthoritativeStepError: campaign.status could not be set
        """
        campaign_id = _require_campaign_id(campaign_id)
        selected = _require_audience_ids(audience_ids)
        now = datetime.utcnow()
        warnings: List[str] = []

        logger.info(f"[Approve] Campaign {campaign_id}: {len(selected)} audience(s) selected")

        try:
            updated = self.store.set_campaign_status([campaign_id], CampaignStatus.APPROVED.value, at=now)
        except StoreError as e:
            logger.error(f"[Approve] Failed to approve campaign {campaign_id}: {e}")
            raise AuthoritativeStepError("Failed to update campaign status", e.detail) from e
        if updated == 0:
            logger.warning(f"[Approve] Campaign {campaign_id} not found; updating audience rows only")
            warnings.append("campaign_not_found")

        try:
            linked = self.store.linked_audience_ids(campaign_id)
        except StoreError as e:
            logger.warning(f"[Approve] Could not read linked audiences for {campaign_id}: {e}")
            warnings.append("linked_audiences_unavailable")
            linked = set(selected)
        non_selected = sorted(linked - set(selected))
        unknown = [a for a in selected if a not in linked]
        if unknown:
            logger.warning(f"[Approve] {len(unknown)} audience id(s) not linked to {campaign_id}: {unknown}")
            warnings.append("unknown_audience_ids")
        approved_count = len(selected) - len(unknown)

        stamp = now.isoformat()
        try:
            self.store.update_audience_rows(
                campaign_id,
                {"target_status": TargetStatus.APPROVED.value},
                audience_ids=selected,
                meta_patch={
                    "guardrails": {"tag": "approved", "status": "approved", "approved_at": stamp},
                    "approval": {"approved_at": stamp, "approved_by": actor},
                },
                at=now,
            )
        except StoreError as e:
            logger.warning(f"[Approve] Failed to approve audience rows for {campaign_id}: {e}")
            warnings.append("approve_rows_failed")

        if non_selected:
            try:
                self.store.update_audience_rows(
                    campaign_id,
                    {"target_status": TargetStatus.REJECTED.value},
                    audience_ids=non_selected,
                    meta_patch={"rejection": {"rejected_at": stamp, "reason": "not_selected"}},
                    at=now,
                )
            except StoreError as e:
                logger.warning(f"[Approve] Failed to reject non-selected rows for {campaign_id}: {e}")
                warnings.append("reject_rows_failed")

        self._audit(
            warnings,
            "Approve",
            campaign_id=campaign_id,
            agent_name="broadcast_approve",
            status="completed",
            message=MARKER_APPROVED,
            progress=100,
            metadata={
                "workflow_point": "broadcast_approved",
                "approved_count": approved_count,
                "rejected_count": len(non_selected),
                "approved_at": stamp,
                "approved_by": actor,
            },
        )

        logger.info(
            f"[Approve] Campaign {campaign_id} approved: {approved_count} approved, {len(non_selected)} rejected"
        )
        return ApproveResult(
            campaign_id=campaign_id,
            approved_count=approved_count,
            rejected_count=len(non_selected),
            warnings=warnings,
        )

    # ===== REJECT =====

    def reject(self, campaign_id: Optional[str], actor: str = "admin") -> RejectResult:
        """
        Reject the whole campaign.

        The campaign status is the binding decision; the audit record and the
        per-row propagation are best effort.
        """
        campaign_id = _require_campaign_id(campaign_id)
        now = datetime.utcnow()
        stamp = now.isoformat()
        warnings: List[str] = []

        try:
            updated = self.store.set_campaign_status([campaign_id], CampaignStatus.REJECTED.value, at=now)
        except StoreError as e:
            logger.error(f"[Reject] Failed to reject campaign {campaign_id}: {e}")
            raise AuthoritativeStepError("Failed to update campaign status", e.detail) from e
        if updated == 0:
            logger.warning(f"[Reject] Campaign {campaign_id} not found")
            warnings.append("campaign_not_found")

        self._audit(
            warnings,
            "Reject",
            campaign_id=campaign_id,
            agent_name="broadcast_reject",
            status="rejected",
            message=MARKER_REJECTED,
            progress=0,
            metadata={
                "workflow_point": "broadcast_rejected",
                "rejected_at": stamp,
                "rejected_by": actor,
            },
        )

        rejected_rows = 0
        try:
            rejected_rows = self.store.update_audience_rows(
                campaign_id,
                {"target_status": TargetStatus.REJECTED.value},
                meta_patch={"rejection": {"rejected_at": stamp, "rejected_by": actor, "reason": "campaign_rejected"}},
                at=now,
            )
        except StoreError as e:
            logger.warning(f"[Reject] Failed to reject audience rows for {campaign_id}: {e}")
            warnings.append("reject_rows_failed")

        logger.info(f"[Reject] Campaign {campaign_id} rejected ({rejected_rows} audience row(s))")
        return RejectResult(campaign_id=campaign_id, rejected_rows=rejected_rows, warnings=warnings)

    # ===== SEND =====

    async def send(self, campaign_id: Optional[str], audience_ids: Optional[List[str]]) -> SendResult:
        """
        Hand the approved messages to the n8n broadcast engine.

        Recipients without a message or contact are reported as failed and
        left out of the batch. Without a broadcast webhook the recipients are
        marked sent directly (simulated). One audit record is written either way.
        """
        campaign_id = _require_campaign_id(campaign_id)
        selected = _require_audience_ids(audience_ids)
        warnings: List[str] = []

        campaign_status = None
        try:
            campaign = self.store.get_campaign(campaign_id)
            campaign_status = campaign.status if campaign else None
        except StoreError as e:
            logger.warning(f"[Send] Could not read campaign {campaign_id}: {e}")
        if campaign_status is not None and campaign_status != CampaignStatus.APPROVED.value:
            logger.warning(f"[Send] Campaign {campaign_id} is '{campaign_status}', not approved; sending anyway")
            warnings.append("campaign_not_approved")

        image_url = None
        try:
            image_url = self.store.find_campaign_image_url(campaign_id)
        except StoreError as e:
            logger.warning(f"[Send] Image lookup failed for {campaign_id}: {e}")
            warnings.append("image_unavailable")

        outcomes: List[RecipientOutcome] = []
        batch: List[Dict[str, Any]] = []
        for audience_id in selected:
            outcome, item = self._prepare_recipient(campaign_id, audience_id, image_url)
            outcomes.append(outcome)
            if item is not None:
                batch.append(item)

        logger.info(f"[Send] Campaign {campaign_id}: {len(batch)}/{len(selected)} recipient(s) ready")

        simulated = self.n8n is None or not self.n8n.broadcast_configured
        if not batch:
            webhook = {"success": False, "status_code": None, "message": "No deliverable recipients"}
        elif simulated:
            logger.warning("[Send] No broadcast webhook configured, simulating direct send")
            webhook = {"success": True, "status_code": None, "message": "No webhook configured - direct send simulated"}
        else:
            result = await self.n8n.trigger_broadcast(campaign_id, batch)
            webhook = result.to_dict()
            self._apply_webhook_result(outcomes, result)

        ready = [o for o in outcomes if o.success]
        if simulated and ready:
            for outcome in ready:
                outcome.simulated = True

        self._record_send_rows(campaign_id, outcomes, simulated, warnings)

        triggered_at = datetime.utcnow().isoformat()
        self._audit(
            warnings,
            "Send",
            campaign_id=campaign_id,
            agent_name="broadcast_send",
            status="completed" if webhook["success"] else "error",
            message=MARKER_BROADCAST_TRIGGERED,
            progress=100,
            metadata={
                "workflow_point": "broadcast_triggered",
                "audience_count": len(batch),
                "sent_count": sum(1 for o in outcomes if o.success),
                "failed_count": sum(1 for o in outcomes if not o.success),
                "webhook_result": webhook,
                "simulated": simulated,
                "campaign_status": campaign_status,
                "triggered_at": triggered_at,
            },
        )

        return SendResult(
            campaign_id=campaign_id,
            success=bool(webhook["success"]),
            results=outcomes,
            webhook_result=webhook,
            warnings=warnings,
        )

    def _prepare_recipient(self, campaign_id: str, audience_id: str, image_url: Optional[str]):
        try:
            row = self.store.latest_audience_row(campaign_id, audience_id)
            audience = self.store.get_audience(audience_id)
        except StoreError as e:
            logger.error(f"[Send] Lookup failed for audience {audience_id}: {e}")
            return RecipientOutcome(audience_id=audience_id, success=False, error="Lookup failed"), None

        if row is None or not row.broadcast_content:
            logger.error(f"[Send] No message for audience {audience_id}")
            return RecipientOutcome(audience_id=audience_id, success=False, error="Missing broadcast content"), None
        if audience is None:
            logger.error(f"[Send] Audience {audience_id} not found")
            return RecipientOutcome(audience_id=audience_id, success=False, error="Audience not found"), None

        channel = row.channel or resolve_channel(audience)
        send_to = resolve_send_to(audience, channel)
        if not send_to:
            logger.error(f"[Send] No {channel} contact for audience {audience_id}")
            return RecipientOutcome(
                audience_id=audience_id, success=False, channel=channel, error="Missing contact"
            ), None

        item = {
            "audience_id": audience_id,
            "campaign_id": campaign_id,
            "full_name": audience.full_name or "Unknown",
            "source_contact_id": audience.source_contact_id,
            "phone_e164": audience.phone_e164,
            "telegram_username": audience.telegram_username,
            "channel": channel,
            "send_to": send_to,
            "broadcast_content": row.broadcast_content,
            "scheduled_at": row.scheduled_at.isoformat() if row.scheduled_at else None,
            "image_url": image_url,
        }
        return RecipientOutcome(audience_id=audience_id, success=True, channel=channel, send_to=send_to), item

    @staticmethod
    def _apply_webhook_result(outcomes: List[RecipientOutcome], result: WebhookResult) -> None:
        if result.ok:
            return
        for outcome in outcomes:
            if outcome.success:
                outcome.success = False
                outcome.error = result.message

    def _record_send_rows(
        self,
        campaign_id: str,
        outcomes: List[RecipientOutcome],
        simulated: bool,
        warnings: List[str],
    ) -> None:
        now = datetime.utcnow()
        stamp = now.isoformat()
        succeeded = [o.audience_id for o in outcomes if o.success]
        failed = [o.audience_id for o in outcomes if not o.success]

        try:
            if succeeded and simulated:
                self.store.update_audience_rows(
                    campaign_id,
                    {"target_status": TargetStatus.SENT.value},
                    audience_ids=succeeded,
                    meta_patch={"send": {"sent_at": stamp, "simulated": True}},
                    at=now,
                )
            elif succeeded:
                self.store.update_audience_rows(
                    campaign_id,
                    {},
                    audience_ids=succeeded,
                    meta_patch={"send": {"triggered_at": stamp, "via": "n8n_broadcast"}},
                    at=now,
                )
            if failed:
                errors = {o.audience_id: o.error for o in outcomes if not o.success}
                for audience_id in failed:
                    self.store.update_audience_rows(
                        campaign_id,
                        {"target_status": TargetStatus.FAILED.value},
                        audience_ids=[audience_id],
                        meta_patch={"send": {"failed_at": stamp, "error": errors.get(audience_id)}},
                        at=now,
                    )
        except StoreError as e:
            logger.warning(f"[Send] Failed to record send outcome on audience rows for {campaign_id}: {e}")
            warnings.append("send_rows_failed")

    # ===== UPDATE CONTENT =====

    def update_content(
        self,
        campaign_id: Optional[str],
        audience_id: Optional[str],
        broadcast_content: Optional[str] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> int:
        """
        Edit the message and/or schedule of one recipient.

        Every duplicate row of the (campaign, audience) pair is written so no
        stale copy survives. The stored value is read back and compared;
        a mismatch is logged only.

        Returns:
            Number of rows written
        """
        campaign_id = _require_campaign_id(campaign_id)
        if not audience_id or not str(audience_id).strip():
            raise CommandValidationError("audience_id is required")
        if broadcast_content is None and scheduled_at is None:
            raise CommandValidationError("broadcast_content or scheduled_at is required")
        if broadcast_content is not None and not broadcast_content.strip():
            raise CommandValidationError("broadcast_content must not be empty")

        values: Dict[str, Any] = {}
        if broadcast_content is not None:
            values["broadcast_content"] = broadcast_content
        if scheduled_at is not None:
            values["scheduled_at"] = scheduled_at

        try:
            count = self.store.update_audience_rows(campaign_id, values, audience_ids=[audience_id])
        except StoreError as e:
            logger.error(f"[UpdateContent] Failed to update {campaign_id}/{audience_id}: {e}")
            raise AuthoritativeStepError("Failed to update content", e.detail) from e

        if count == 0:
            logger.warning(f"[UpdateContent] No rows for {campaign_id}/{audience_id}")
        elif count > 1:
            logger.warning(f"[UpdateContent] {count} duplicate rows updated for {campaign_id}/{audience_id}")

        self._verify_content(campaign_id, audience_id, values)
        return count

    def _verify_content(self, campaign_id: str, audience_id: str, values: Dict[str, Any]) -> None:
        try:
            row = self.store.latest_audience_row(campaign_id, audience_id)
        except StoreError as e:
            logger.warning(f"[UpdateContent] Verification read failed for {campaign_id}/{audience_id}: {e}")
            return
        if row is None:
            return
        for key, expected in values.items():
            stored = getattr(row, key)
            if stored != expected:
                logger.warning(
                    f"[UpdateContent] Verification mismatch on {key} for {campaign_id}/{audience_id}: "
                    f"stored={stored!r} submitted={expected!r}"
                )

    # ===== CLEANUP =====

    def cleanup(self, actor: str = "cleanup_api") -> CleanupResult:
        """Keep the most recently updated drafted campaign and reject the rest."""
        try:
            drafts = self.store.list_campaigns(CampaignStatus.CONTENT_DRAFTED.value)
        except StoreError as e:
            logger.error(f"[Cleanup] Failed to fetch draft campaigns: {e}")
            raise AuthoritativeStepError("Failed to fetch draft campaigns", e.detail) from e

        if not drafts:
            return CleanupResult()

        kept, older = drafts[0], drafts[1:]
        result = CleanupResult(kept_campaign_id=kept.id)
        if not older:
            return result

        now = datetime.utcnow()
        ids = [c.id for c in older]
        try:
            self.store.set_campaign_status(ids, CampaignStatus.REJECTED.value, at=now)
        except StoreError as e:
            logger.error(f"[Cleanup] Failed to reject older drafts: {e}")
            raise AuthoritativeStepError("Failed to update campaigns", e.detail) from e
        result.updated_campaign_ids = ids

        records = [
            {
                "campaign_id": cid,
                "agent_name": "broadcast_reject",
                "status": "rejected",
                "message": MARKER_REJECTED,
                "progress": 0,
                "metadata": {
                    "workflow_point": "broadcast_rejected",
                    "rejected_at": now.isoformat(),
                    "rejected_by": actor,
                    "reason": "Auto-rejected by cleanup (multiple draft campaigns)",
                },
            }
            for cid in ids
        ]
        try:
            self.store.add_status_updates(records)
        except StoreError as e:
            logger.warning(f"[Cleanup] Failed to insert status updates: {e}")
            result.warnings.append("status_update_failed")

        logger.info(f"[Cleanup] Kept {kept.id}, rejected {len(ids)} older draft(s)")
        return result
