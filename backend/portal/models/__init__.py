"""
SQLAlchemy models for the Metagapura Portal.
"""
from .campaign import Campaign, CampaignAudience, CampaignStatusUpdate, CampaignStatus, TargetStatus
from .audience import Audience, Asset, CampaignAsset
from .note import Note, NoteSummary

__all__ = [
    "Campaign",
    "CampaignAudience",
    "CampaignStatusUpdate",
    "CampaignStatus",
    "TargetStatus",
    "Audience",
    "Asset",
    "CampaignAsset",
    "Note",
    "NoteSummary",
]
