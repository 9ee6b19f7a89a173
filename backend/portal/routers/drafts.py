"""
Drafts router - draft review and the lifecycle commands.

Every response is marked uncacheable; polling clients must always see the
current lifecycle state.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse

from ..dependencies import get_draft_service, get_lifecycle
from ..schemas.draft import (
    ApproveRequest,
    ApproveResponse,
    CleanupResponse,
    DraftResponse,
    RejectRequest,
    RejectResponse,
    SendRecipientResult,
    SendRequest,
    SendResponse,
    UpdateContentRequest,
    UpdateContentResponse,
)
from ..services.draft_service import DraftAssemblyService
from ..services.lifecycle import AuthoritativeStepError, CommandValidationError, LifecycleCommands

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/drafts", tags=["drafts"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Error details returned to the caller are truncated to this length
MAX_ERROR_DETAIL = 200


def error_response(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    """JSON error body {error, details?} with no-cache headers."""
    content = {"error": error}
    if details:
        content["details"] = details[:MAX_ERROR_DETAIL]
    return JSONResponse(status_code=status_code, content=content, headers=NO_CACHE_HEADERS)


def command_error(e: Exception) -> JSONResponse:
    if isinstance(e, CommandValidationError):
        return error_response(400, str(e))
    if isinstance(e, AuthoritativeStepError):
        return error_response(500, e.message, e.detail)
    raise e


def no_cache(response: Response) -> None:
    for key, value in NO_CACHE_HEADERS.items():
        response.headers[key] = value


@router.get("", response_model=DraftResponse)
def get_draft(
    response: Response,
    campaign_id: Optional[str] = Query(None),
    drafts: DraftAssemblyService = Depends(get_draft_service),
):
    """Draft for a campaign (or the current drafted campaign). draft is null when there is nothing to review."""
    no_cache(response)
    lookup = drafts.get_draft(campaign_id)
    return DraftResponse(
        draft=lookup.draft,
        campaign_id=lookup.campaign_id,
        state=lookup.state.value if lookup.state else None,
        message=lookup.message,
    )


@router.post("/approve", response_model=ApproveResponse)
def approve_draft(
    request: ApproveRequest,
    response: Response,
    commands: LifecycleCommands = Depends(get_lifecycle),
):
    """Approve the selected recipients; every other linked recipient is rejected."""
    try:
        result = commands.approve(request.campaign_id, request.audience_ids)
    except (CommandValidationError, AuthoritativeStepError) as e:
        return command_error(e)

    no_cache(response)
    return ApproveResponse(
        success=True,
        approved_count=result.approved_count,
        rejected_count=result.rejected_count,
        message=f"Campaign approved for {result.approved_count} audience(s)",
        warnings=result.warnings,
    )


@router.post("/reject", response_model=RejectResponse)
def reject_draft(
    request: RejectRequest,
    response: Response,
    commands: LifecycleCommands = Depends(get_lifecycle),
):
    """Reject the whole campaign."""
    try:
        result = commands.reject(request.campaign_id)
    except (CommandValidationError, AuthoritativeStepError) as e:
        return command_error(e)

    no_cache(response)
    return RejectResponse(
        success=True,
        campaign_id=result.campaign_id,
        message="Campaign rejected",
        warnings=result.warnings,
    )


@router.post("/send", response_model=SendResponse)
async def send_draft(
    request: SendRequest,
    response: Response,
    commands: LifecycleCommands = Depends(get_lifecycle),
):
    """Trigger the broadcast engine for approved recipients."""
    try:
        result = await commands.send(request.campaign_id, request.audience_ids)
    except (CommandValidationError, AuthoritativeStepError) as e:
        return command_error(e)

    no_cache(response)
    return SendResponse(
        success=result.success,
        results=[SendRecipientResult(**vars(outcome)) for outcome in result.results],
        sent_count=result.sent_count,
        failed_count=result.failed_count,
        webhook_result=result.webhook_result,
        warnings=result.warnings,
    )


@router.post("/update-content", response_model=UpdateContentResponse)
def update_content(
    request: UpdateContentRequest,
    response: Response,
    commands: LifecycleCommands = Depends(get_lifecycle),
):
    """Edit one recipient's message and/or schedule."""
    try:
        commands.update_content(
            request.campaign_id,
            request.audience_id,
            broadcast_content=request.broadcast_content,
            scheduled_at=request.scheduled_at,
        )
    except (CommandValidationError, AuthoritativeStepError) as e:
        return command_error(e)

    no_cache(response)
    return UpdateContentResponse(success=True)


@router.post("/cleanup", response_model=CleanupResponse)
def cleanup_drafts(
    response: Response,
    commands: LifecycleCommands = Depends(get_lifecycle),
):
    """Keep only the most recent drafted campaign; reject the others."""
    try:
        result = commands.cleanup()
    except AuthoritativeStepError as e:
        return command_error(e)

    no_cache(response)
    return CleanupResponse(
        success=True,
        message=result.message,
        kept=result.kept,
        updated=result.updated,
        kept_campaign_id=result.kept_campaign_id,
        updated_campaign_ids=result.updated_campaign_ids,
        warnings=result.warnings,
    )
