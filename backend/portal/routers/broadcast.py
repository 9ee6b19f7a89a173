"""
Broadcast router - campaign creation, sync and agent status.
"""
import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Request, Response, UploadFile
from fastapi.responses import StreamingResponse

from ..dependencies import get_current_user, get_n8n, get_resolver
from ..schemas.auth import CurrentUser
from ..schemas.broadcast import CampaignStatusResponse, CreateCampaignResponse, SyncRequest, SyncResponse
from ..services.campaign_state import CampaignStateResolver, clean_campaign_id
from ..services.n8n_service import N8NService, WebhookNotConfigured
from ..services.status_subscription import StatusSubscription, get_status_subscription
from .drafts import NO_CACHE_HEADERS, error_response, no_cache

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/broadcast", tags=["broadcast"])

# Comment line sent to keep idle SSE connections open
SSE_KEEPALIVE_SECONDS = 15.0


@router.post("/create", response_model=CreateCampaignResponse)
async def create_campaign(
    notes: Optional[str] = Form(None, alias="Campaign planning notes"),
    image: Optional[UploadFile] = File(None, alias="Campaign image"),
    current_user: CurrentUser = Depends(get_current_user),
    n8n: N8NService = Depends(get_n8n),
):
    """Start campaign planning in n8n from the operator's notes and optional image."""
    notes = (notes or "").strip()
    if not notes:
        return error_response(400, "Campaign planning notes are required.")

    upload = None
    if image is not None and image.filename:
        content = await image.read()
        upload = (image.filename, content, image.content_type or "application/octet-stream")

    logger.info(f"[Broadcast] Campaign create by {current_user.id} (image={'yes' if upload else 'no'})")
    try:
        result = await n8n.create_campaign(notes, image=upload)
    except WebhookNotConfigured:
        logger.error("[Broadcast] Campaign webhook configuration missing")
        return error_response(500, "Campaign service is not configured. Please contact support.")

    if not result.ok:
        if result.transport_error:
            return error_response(502, "Failed to create campaign.", result.transport_error)
        return error_response(
            502,
            f"Failed to create campaign. Webhook returned status {result.status_code}.",
            str(result.body or ""),
        )

    data = result.body if isinstance(result.body, dict) else {}
    campaign_id = clean_campaign_id(data.get("campaign_id") or data.get("id"))
    execution_id = data.get("execution_id") or data.get("executionId")
    return CreateCampaignResponse(
        campaign_id=campaign_id,
        execution_id=str(execution_id) if execution_id is not None else None,
        message="Campaign planning started",
    )


@router.post("/sync", response_model=SyncResponse)
async def sync_campaign(
    request: Optional[SyncRequest] = None,
    n8n: N8NService = Depends(get_n8n),
):
    """Ask n8n to sync campaign data to the Citia DB."""
    try:
        campaign_id = clean_campaign_id(request.campaign_id) if request else None
        result = await n8n.trigger_sync(campaign_id)
    except WebhookNotConfigured:
        return error_response(500, "Sync webhook not configured")

    if not result.ok:
        if result.transport_error:
            return error_response(502, "Failed to trigger sync", result.transport_error)
        return error_response(result.status_code, f"Webhook failed: {result.status_code}", str(result.body or ""))

    return SyncResponse(
        success=True,
        message="Sync triggered successfully",
        data=result.body if isinstance(result.body, (dict, list)) else {"success": True},
    )


@router.get("/status", response_model=CampaignStatusResponse)
def get_status(
    response: Response,
    campaign_id: Optional[str] = Query(None),
    execution_id: Optional[str] = Query(None),
    resolver: CampaignStateResolver = Depends(get_resolver),
):
    """Resolved lifecycle state plus the latest record of each agent."""
    no_cache(response)
    return resolver.inspect(campaign_id, execution_id).snapshot()


@router.get("/status/stream")
async def stream_status(
    request: Request,
    campaign_id: Optional[str] = Query(None),
    execution_id: Optional[str] = Query(None),
    subscriptions: StatusSubscription = Depends(get_status_subscription),
):
    """Server-Sent Events feed of status snapshots; stops when the client disconnects."""
    queue: asyncio.Queue = asyncio.Queue()

    async def events():
        unsubscribe = subscriptions.subscribe(
            clean_campaign_id(campaign_id),
            queue.put_nowait,
            execution_id=clean_campaign_id(execution_id),
        )
        try:
            while not await request.is_disconnected():
                try:
                    snapshot = await asyncio.wait_for(queue.get(), timeout=SSE_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"event: status\ndata: {json.dumps(snapshot)}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(events(), media_type="text/event-stream", headers=NO_CACHE_HEADERS)
