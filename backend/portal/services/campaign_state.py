"""
Campaign state resolver.

Derives one logical lifecycle state for a campaign from the rows written by
both this portal and the n8n agents:

    idle | processing | drafted | approved | rejected

Resolution order:
  1. no campaign (or execution) id -> idle
  2. any agent whose latest status update is thinking/processing -> processing
  3. campaign.status, when the row is readable (authoritative)
  4. otherwise the most recent lifecycle marker in the status update log

Resolution is read-only and never raises: read failures resolve to idle.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..models import CampaignStatus, CampaignStatusUpdate
from .status_store import StatusStore, StoreAccessDenied, StoreError

logger = logging.getLogger(__name__)


class CampaignState(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    DRAFTED = "drafted"
    APPROVED = "approved"
    REJECTED = "rejected"


# Agent statuses that mean a run is still in flight
PROCESSING_STATUSES = {"processing", "thinking"}

# Lifecycle markers (status_update.message tokens)
MARKER_APPROVED = "cpgApproved"
MARKER_REJECTED = "cpgRejected"
MARKER_BROADCAST_TRIGGERED = "cpgBroadcastTriggered"
APPROVED_MARKERS = {MARKER_APPROVED, MARKER_BROADCAST_TRIGGERED, "cpgSent"}
REJECTED_MARKERS = {MARKER_REJECTED}
DRAFTED_MARKERS = {"cpgDrafted", "cpgContentDrafted"}
LIFECYCLE_MARKERS = APPROVED_MARKERS | REJECTED_MARKERS | DRAFTED_MARKERS

CAMPAIGN_STATUS_STATES = {
    CampaignStatus.CONTENT_DRAFTED.value: CampaignState.DRAFTED,
    CampaignStatus.APPROVED.value: CampaignState.APPROVED,
    CampaignStatus.SENT.value: CampaignState.APPROVED,
    CampaignStatus.REJECTED.value: CampaignState.REJECTED,
}

# Values clients send when they have no real id yet
_ABSENT_IDS = {"", "pending", "null", "undefined", "none"}


def clean_campaign_id(value: Optional[str]) -> Optional[str]:
    """Return the id, or None for blanks and placeholder values like 'pending'."""
    if value is None:
        return None
    value = str(value).strip()
    if value.lower() in _ABSENT_IDS:
        return None
    return value


def marker_state(message: Optional[str]) -> Optional[CampaignState]:
    """Lifecycle state signalled by one status update message, if any."""
    if message in APPROVED_MARKERS:
        return CampaignState.APPROVED
    if message in REJECTED_MARKERS:
        return CampaignState.REJECTED
    if message in DRAFTED_MARKERS:
        return CampaignState.DRAFTED
    return None


def _newest_first(updates: Iterable[CampaignStatusUpdate]) -> List[CampaignStatusUpdate]:
    # The store is an unordered bag of observations; never trust arrival order
    return sorted(
        updates,
        key=lambda u: (u.updated_at or u.created_at, u.created_at),
        reverse=True,
    )


def latest_per_agent(updates: Iterable[CampaignStatusUpdate]) -> Dict[str, CampaignStatusUpdate]:
    """Max-timestamp status update per agent_name."""
    latest: Dict[str, CampaignStatusUpdate] = {}
    for update in _newest_first(updates):
        if update.agent_name not in latest:
            latest[update.agent_name] = update
    return latest


def state_from_markers(updates: Iterable[CampaignStatusUpdate]) -> Optional[CampaignState]:
    """State from the most recent lifecycle marker."""
    for update in _newest_first(updates):
        state = marker_state(update.message)
        if state is not None:
            return state
    return None


def latest_drafted_campaign_id(marker_updates: Iterable[CampaignStatusUpdate]) -> Optional[str]:
    """
    Most recent campaign whose latest lifecycle marker is a drafted marker.

    Used when the campaign table cannot be read.
    """
    seen = set()
    for update in _newest_first(marker_updates):
        if update.campaign_id in seen:
            continue
        seen.add(update.campaign_id)
        if marker_state(update.message) == CampaignState.DRAFTED:
            return update.campaign_id
    return None


@dataclass
class Resolution:
    """Resolved state plus the observations it was derived from."""
    state: CampaignState
    campaign_id: Optional[str] = None
    source: str = "none"  # none | campaign | audit_log | error
    campaign_status: Optional[str] = None
    agents: Dict[str, CampaignStatusUpdate] = field(default_factory=dict)

    @property
    def input_locked(self) -> bool:
        return self.state == CampaignState.PROCESSING

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view used by the status endpoint and the subscription."""
        agents = []
        for name, update in sorted(self.agents.items()):
            stamp = update.updated_at or update.created_at
            agents.append({
                "agent_name": name,
                "status": update.status,
                "message": update.message,
                "progress": update.progress or 0,
                "error_message": update.error_message,
                "updated_at": stamp.isoformat() if stamp else None,
            })
        return {
            "campaign_id": self.campaign_id,
            "state": self.state.value,
            "source": self.source,
            "campaign_status": self.campaign_status,
            "input_locked": self.input_locked,
            "agents": agents,
        }


class CampaignStateResolver:
    """Resolves the lifecycle state of a campaign."""

    def __init__(self, store: StatusStore, history_limit: int = 100):
        self.store = store
        self.history_limit = history_limit

    def resolve(self, campaign_id: Optional[str]) -> CampaignState:
        """Logical state of a campaign."""
        return self.inspect(campaign_id).state

    def inspect(self, campaign_id: Optional[str] = None, execution_id: Optional[str] = None) -> Resolution:
        """
        Resolve the state and keep the per-agent view.

        Args:
            campaign_id: Campaign to resolve (placeholders count as absent)
            execution_id: n8n execution id, used until a campaign id is known
        """
        campaign_id = clean_campaign_id(campaign_id)
        execution_id = clean_campaign_id(execution_id)
        if not campaign_id and not execution_id:
            return Resolution(state=CampaignState.IDLE)

        log_readable = True
        try:
            updates = self.store.list_status_updates(
                campaign_id=campaign_id,
                execution_id=execution_id,
                limit=self.history_limit,
            )
        except StoreError as e:
            logger.warning(f"[Resolver] Status updates unavailable for {campaign_id or execution_id}: {e}")
            updates = []
            log_readable = False

        if not campaign_id:
            campaign_id = next((u.campaign_id for u in _newest_first(updates) if u.campaign_id), None)

        agents = latest_per_agent(updates)
        if any(u.status in PROCESSING_STATUSES for u in agents.values()):
            return Resolution(
                state=CampaignState.PROCESSING,
                campaign_id=campaign_id,
                source="audit_log",
                agents=agents,
            )

        if campaign_id:
            try:
                campaign = self.store.get_campaign(campaign_id)
            except StoreAccessDenied:
                logger.info(f"[Resolver] Campaign table not readable, using status log for {campaign_id}")
                campaign = None
            except StoreError:
                if not log_readable:
                    return Resolution(state=CampaignState.IDLE, campaign_id=campaign_id, source="error")
                campaign = None

            if campaign is not None:
                return Resolution(
                    state=CAMPAIGN_STATUS_STATES.get(campaign.status, CampaignState.IDLE),
                    campaign_id=campaign_id,
                    source="campaign",
                    campaign_status=campaign.status,
                    agents=agents,
                )

        if not log_readable:
            return Resolution(state=CampaignState.IDLE, campaign_id=campaign_id, source="error")

        return Resolution(
            state=state_from_markers(updates) or CampaignState.IDLE,
            campaign_id=campaign_id,
            source="audit_log",
            agents=agents,
        )
