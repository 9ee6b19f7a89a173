"""
Broadcast creation and status schemas.
"""
from typing import Any, List, Optional

from pydantic import BaseModel, Field


class CreateCampaignResponse(BaseModel):
    """Campaign id is null until n8n has created the row."""
    campaign_id: Optional[str] = None
    execution_id: Optional[str] = None
    message: Optional[str] = None


class SyncRequest(BaseModel):
    campaign_id: Optional[str] = None


class SyncResponse(BaseModel):
    success: bool
    message: str
    data: Any = None


class AgentStatus(BaseModel):
    """Latest status of one n8n agent."""
    agent_name: str
    status: str
    message: Optional[str] = None
    progress: int = 0
    error_message: Optional[str] = None
    updated_at: Optional[str] = None


class CampaignStatusResponse(BaseModel):
    """Resolved lifecycle state plus the per-agent view."""
    campaign_id: Optional[str] = None
    state: str
    source: str
    campaign_status: Optional[str] = None
    input_locked: bool = False
    agents: List[AgentStatus] = Field(default_factory=list)
