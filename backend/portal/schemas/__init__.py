"""
Pydantic schemas for request/response validation.
"""
from .draft import (
    DraftAudience, DraftPayload, DraftResponse,
    ApproveRequest, ApproveResponse, RejectRequest, RejectResponse,
    SendRequest, SendResponse, SendRecipientResult,
    UpdateContentRequest, UpdateContentResponse, CleanupResponse,
)
from .broadcast import CreateCampaignResponse, SyncRequest, SyncResponse, AgentStatus, CampaignStatusResponse
from .notes import SummaryResponse
from .auth import CurrentUser

__all__ = [
    "DraftAudience", "DraftPayload", "DraftResponse",
    "ApproveRequest", "ApproveResponse", "RejectRequest", "RejectResponse",
    "SendRequest", "SendResponse", "SendRecipientResult",
    "UpdateContentRequest", "UpdateContentResponse", "CleanupResponse",
    "CreateCampaignResponse", "SyncRequest", "SyncResponse", "AgentStatus", "CampaignStatusResponse",
    "SummaryResponse",
    "CurrentUser",
]
