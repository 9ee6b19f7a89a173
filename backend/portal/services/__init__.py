"""
Business logic services.
"""
from .status_store import StatusStore, StoreError, StoreAccessDenied
from .campaign_state import CampaignState, CampaignStateResolver
from .draft_service import DraftAssemblyService
from .lifecycle import LifecycleCommands, CommandValidationError, AuthoritativeStepError
from .n8n_service import N8NService, WebhookResult, WebhookNotConfigured
from .notes_service import NoteSummaryService
from .status_subscription import StatusSubscription

__all__ = [
    "StatusStore",
    "StoreError",
    "StoreAccessDenied",
    "CampaignState",
    "CampaignStateResolver",
    "DraftAssemblyService",
    "LifecycleCommands",
    "CommandValidationError",
    "AuthoritativeStepError",
    "N8NService",
    "WebhookResult",
    "WebhookNotConfigured",
    "NoteSummaryService",
    "StatusSubscription",
]
