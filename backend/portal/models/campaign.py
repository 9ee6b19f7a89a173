"""
Campaign models - broadcast campaigns, their per-recipient drafts and the
status update log written by the n8n agents and by this portal.

These tables are owned by the Citia datamart; n8n creates the rows and the
portal mutates lifecycle fields on them.
"""
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, Text, Integer, Index
from sqlalchemy.dialects.postgresql import JSONB

from ..database import Base


class CampaignStatus(str, Enum):
    """Campaign.status values the portal reads or writes."""
    CONTENT_DRAFTED = "content_drafted"  # Waiting for operator review
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"


class TargetStatus(str, Enum):
    """Delivery status of one campaign_audience row."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SENT = "sent"
    FAILED = "failed"


class Campaign(Base):
    """One broadcast effort with a single lifecycle status."""

    __tablename__ = "campaign"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=True)
    objective = Column(Text, nullable=True)
    status = Column(String(50), nullable=True, index=True)

    # research_payload, matchmaker_result, origin_raw_admin_notes, ...
    meta = Column(JSONB, nullable=True)
    matchmaker_strategy = Column(JSONB, nullable=True)  # {"tags": [...]}

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Campaign {self.id} status={self.status}>"


class CampaignAudience(Base):
    """
    One (campaign, recipient) pairing with its generated message.

    The pair is not unique in practice: n8n may insert duplicates. Readers
    take the most recently updated row, writers update every matching row.
    """

    __tablename__ = "campaign_audience"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    campaign_id = Column(String(36), nullable=False, index=True)
    audience_id = Column(String(36), nullable=False, index=True)

    broadcast_content = Column(Text, nullable=True)
    target_status = Column(String(20), default=TargetStatus.PENDING.value)
    channel = Column(String(20), nullable=True)
    scheduled_at = Column(DateTime, nullable=True)

    # guardrails {tag, violations}, matchmaker_reason, send outcome, rejection
    meta = Column(JSONB, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<CampaignAudience {self.campaign_id}/{self.audience_id} {self.target_status}>"


class CampaignStatusUpdate(Base):
    """Append-only status/audit record. Not a source of truth for lifecycle state."""

    __tablename__ = "campaign_status_updates"
    __table_args__ = (
        Index("idx_campaign_status_updates_agent_status", "campaign_id", "agent_name", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    campaign_id = Column(String(36), nullable=True, index=True)
    execution_id = Column(Text, nullable=True)  # n8n execution id

    agent_name = Column(Text, nullable=False)  # guardrails, research_agent, broadcast_approve, ...
    status = Column(Text, nullable=False)  # thinking, processing, completed, error, rejected
    message = Column(Text, nullable=True)
    progress = Column(Integer, default=0)  # 0-100
    error_message = Column(Text, nullable=True)
    meta_data = Column("metadata", JSONB, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<CampaignStatusUpdate {self.agent_name}={self.status}>"
