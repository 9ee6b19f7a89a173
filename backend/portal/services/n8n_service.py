"""
N8N service for triggering automation workflows.

Every dispatch returns a WebhookResult; transport failures and timeouts are
reported in the result, never raised. The only exception raised here is
WebhookNotConfigured, before any request is made.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


class WebhookNotConfigured(Exception):
    """The webhook URL for an operation is missing."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Webhook for '{operation}' is not configured")


@dataclass
class WebhookResult:
    """Outcome of one webhook call."""
    ok: bool
    status_code: Optional[int] = None
    body: Any = None
    transport_error: Optional[str] = None

    @property
    def message(self) -> str:
        if self.ok:
            return "Webhook triggered successfully"
        if self.transport_error:
            return f"Webhook error: {self.transport_error}"
        return f"Webhook failed: {self.status_code} {str(self.body or '')[:200]}"

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.ok, "status_code": self.status_code, "message": self.message}


class N8NService:
    """Service for triggering N8N webhooks."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.timeout = self.settings.webhook_timeout_seconds

    @staticmethod
    def _basic_auth(user: str, password: str) -> Optional[Tuple[str, str]]:
        if user and password:
            return (user, password)
        return None

    async def dispatch(
        self,
        url: str,
        method: str = "POST",
        json: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        auth: Optional[Tuple[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> WebhookResult:
        """
        Send one request to an n8n webhook.

        Returns:
            WebhookResult - ok on 2xx, status/body on other statuses,
            transport_error when no response was received
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method,
                    url,
                    json=json,
                    data=data,
                    files=files,
                    params=params,
                    auth=auth,
                    headers=headers,
                )
        except httpx.TimeoutException:
            logger.error(f"[Webhook] Timeout calling {url}")
            return WebhookResult(ok=False, transport_error="Webhook timeout")
        except Exception as e:
            # Includes httpx.InvalidURL, which is not an HTTPError
            logger.error(f"[Webhook] Transport error calling {url}: {e}")
            return WebhookResult(ok=False, transport_error=str(e) or type(e).__name__)

        body: Any = response.text
        if "application/json" in response.headers.get("content-type", ""):
            try:
                body = response.json()
            except ValueError:
                logger.warning(f"[Webhook] Invalid JSON body from {url}")

        if response.is_success:
            logger.info(f"[Webhook] {method} {url} -> {response.status_code}")
            return WebhookResult(ok=True, status_code=response.status_code, body=body)

        logger.error(f"[Webhook] {method} {url} failed: {response.status_code} - {response.text[:200]}")
        return WebhookResult(ok=False, status_code=response.status_code, body=body)

    async def create_campaign(
        self,
        notes: str,
        image: Optional[Tuple[str, bytes, str]] = None,
    ) -> WebhookResult:
        """
        Start campaign planning (research, matchmaking, drafting) in n8n.

        Args:
            notes: Campaign planning notes
            image: Optional (filename, content, content_type) upload

        Returns:
            WebhookResult; body may carry campaign_id / execution_id
        """
        url = self.settings.n8n_campaign_webhook_url
        auth = self._basic_auth(
            self.settings.n8n_campaign_webhook_user,
            self.settings.n8n_campaign_webhook_pass,
        )
        if not url or auth is None:
            raise WebhookNotConfigured("create_campaign")

        files = {"Campaign image": image} if image else None
        return await self.dispatch(
            url,
            data={"Campaign planning notes": notes},
            files=files,
            auth=auth,
        )

    async def trigger_sync(self, campaign_id: Optional[str]) -> WebhookResult:
        """Ask n8n to sync campaign data to the Citia DB."""
        url = self.settings.n8n_sync_webhook_url
        if not url:
            raise WebhookNotConfigured("sync")

        payload = {
            "campaign_id": campaign_id,
            "triggered_at": datetime.utcnow().isoformat(),
            "source": "web_portal",
        }
        return await self.dispatch(
            url,
            json=payload,
            auth=self._basic_auth(self.settings.n8n_webhook_username, self.settings.n8n_webhook_password),
        )

    @property
    def broadcast_configured(self) -> bool:
        return bool(self.settings.n8n_broadcast_webhook_url)

    async def trigger_broadcast(self, campaign_id: str, audiences: List[Dict[str, Any]]) -> WebhookResult:
        """
        Hand a batch of approved messages to the n8n broadcast engine.

        Fire-and-forget: delivery is n8n's job, this only reports whether
        the trigger was accepted.
        """
        url = self.settings.n8n_broadcast_webhook_url
        if not url:
            raise WebhookNotConfigured("broadcast")

        payload = {
            "campaign_id": campaign_id,
            "audiences": audiences,
            "triggered_at": datetime.utcnow().isoformat(),
            "triggered_by": "web_portal",
        }
        return await self.dispatch(url, json=payload)

    async def generate_notes_summary(self, user_id: str) -> WebhookResult:
        """Ask n8n to summarize a user's notes. The body is plain text."""
        url = self.settings.n8n_notes_webhook_url
        auth = self._basic_auth(
            self.settings.n8n_notes_webhook_user,
            self.settings.n8n_notes_webhook_pass,
        )
        if not url or auth is None:
            raise WebhookNotConfigured("notes_summary")

        return await self.dispatch(
            url,
            method="GET",
            params={"user_id": user_id},
            auth=auth,
            headers={"Accept": "text/plain"},
        )


# Singleton instance
_n8n_service: Optional[N8NService] = None


def get_n8n_service() -> N8NService:
    """Get the singleton N8N service instance."""
    global _n8n_service
    if _n8n_service is None:
        _n8n_service = N8NService()
    return _n8n_service
