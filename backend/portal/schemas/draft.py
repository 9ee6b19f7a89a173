"""
Draft and lifecycle command schemas.

Request fields are optional at the schema level: missing or empty values
are rejected by the command handlers with a 400, not by FastAPI with a 422.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class DraftAudience(BaseModel):
    """One recipient of a drafted campaign."""
    campaign_id: str
    audience_id: str
    audience_name: str = "Unknown"
    source_contact_id: str = ""
    telegram_username: str = ""
    send_to: str = "Unknown"
    channel: str = "whatsapp"
    broadcast_content: str = ""
    character_count: int = 0
    guardrails_tag: str = "needs_review"
    guardrails_violations: List[Any] = Field(default_factory=list)
    matchmaker_reason: Optional[Any] = None
    target_status: str = "pending"
    scheduled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DraftPayload(BaseModel):
    """Operator-reviewable view of a drafted campaign."""
    campaign_id: str
    campaign_name: str = "Untitled Campaign"
    campaign_objective: str = ""
    campaign_image_url: Optional[str] = None
    campaign_tags: List[str] = Field(default_factory=list)
    origin_notes: str = ""
    total_matched_audience: int = 0
    audiences: List[DraftAudience] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DraftResponse(BaseModel):
    """GET /api/drafts - always 200, draft is null when nothing to review."""
    draft: Optional[DraftPayload] = None
    campaign_id: Optional[str] = None
    state: Optional[str] = None
    message: Optional[str] = None


class ApproveRequest(BaseModel):
    campaign_id: Optional[str] = None
    audience_ids: Optional[List[str]] = None


class ApproveResponse(BaseModel):
    success: bool
    approved_count: int
    rejected_count: int
    message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class RejectRequest(BaseModel):
    campaign_id: Optional[str] = None


class RejectResponse(BaseModel):
    success: bool
    campaign_id: str
    message: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class SendRequest(BaseModel):
    campaign_id: Optional[str] = None
    audience_ids: Optional[List[str]] = None


class SendRecipientResult(BaseModel):
    """Per-recipient outcome of a broadcast trigger."""
    audience_id: str
    success: bool
    channel: Optional[str] = None
    send_to: Optional[str] = None
    simulated: bool = False
    error: Optional[str] = None


class SendResponse(BaseModel):
    success: bool
    results: List[SendRecipientResult] = Field(default_factory=list)
    sent_count: int = 0
    failed_count: int = 0
    webhook_result: Dict[str, Any] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)


class UpdateContentRequest(BaseModel):
    campaign_id: Optional[str] = None
    audience_id: Optional[str] = None
    broadcast_content: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class UpdateContentResponse(BaseModel):
    success: bool


class CleanupResponse(BaseModel):
    success: bool
    message: str
    kept: int
    updated: int
    kept_campaign_id: Optional[str] = None
    updated_campaign_ids: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
