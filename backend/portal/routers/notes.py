"""
Notes router - AI summary of the caller's notes.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_current_user, get_notes_service
from ..schemas.auth import CurrentUser
from ..schemas.notes import SummaryResponse
from ..services.n8n_service import WebhookNotConfigured
from ..services.notes_service import NoteSummaryService, SummaryError, SummaryRateLimited
from .drafts import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notes", tags=["notes"])


@router.get("/summary", response_model=SummaryResponse, response_model_exclude_none=True)
async def get_summary(
    current_user: CurrentUser = Depends(get_current_user),
    notes: NoteSummaryService = Depends(get_notes_service),
):
    """Generate a summary of the caller's notes, at most once per rate window."""
    try:
        result = await notes.generate(current_user.id)
    except SummaryRateLimited as e:
        return JSONResponse(
            status_code=e.status_code,
            content={
                "error": e.message,
                "rateLimited": True,
                "hoursRemaining": e.hours_remaining,
            },
        )
    except SummaryError as e:
        return error_response(e.status_code, e.message)
    except WebhookNotConfigured:
        logger.error("[Notes] Notes webhook configuration missing")
        return error_response(500, "Summary service is not configured. Please contact support.")

    return SummaryResponse(summary=result.summary, updated_at=result.updated_at)
