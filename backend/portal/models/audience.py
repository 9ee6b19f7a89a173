"""
Audience and asset models - read-only reference data owned by the datamart.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Boolean, DateTime, Text

from ..database import Base


class Audience(Base):
    """A broadcast recipient with per-channel contact details."""

    __tablename__ = "audience"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    full_name = Column(String(255), nullable=True)
    source_contact_id = Column(String(255), nullable=True)

    # Channels
    phone_e164 = Column(String(50), nullable=True)
    telegram_username = Column(String(255), nullable=True)
    wa_opt_in = Column(Boolean, default=False)
    telegram_opt_in = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Audience {self.full_name or self.id}>"


class Asset(Base):
    """Uploaded media (campaign images)."""

    __tablename__ = "asset"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(50), nullable=True)  # image, video, ...
    media_url = Column(Text, nullable=True)
    usage_type = Column(String(50), nullable=True)  # primary_visual, ...

    created_at = Column(DateTime, default=datetime.utcnow)


class CampaignAsset(Base):
    """Link between a campaign and its assets."""

    __tablename__ = "campaign_asset"

    campaign_id = Column(String(36), primary_key=True)
    asset_id = Column(String(36), primary_key=True)

    created_at = Column(DateTime, default=datetime.utcnow)
