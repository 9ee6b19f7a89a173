"""
FastAPI dependencies for authentication and service wiring.
"""
import logging
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from .config import get_settings
from .database import get_db
from .schemas.auth import CurrentUser
from .services.auth_service import get_auth_service
from .services.campaign_state import CampaignStateResolver
from .services.draft_service import DraftAssemblyService
from .services.lifecycle import LifecycleCommands
from .services.n8n_service import N8NService, get_n8n_service
from .services.notes_service import NoteSummaryService
from .services.status_store import StatusStore

logger = logging.getLogger(__name__)

# HTTP Bearer scheme for JWT tokens
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """
    Dependency to get the current authenticated caller.

    Raises:
        HTTPException 401: If the token is missing or invalid
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized. Please log in.",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    user = get_auth_service().verify_access_token(credentials.credentials)
    if user is None:
        raise credentials_exception
    return user


def get_store(db: Session = Depends(get_db)) -> StatusStore:
    return StatusStore(db)


def get_resolver(store: StatusStore = Depends(get_store)) -> CampaignStateResolver:
    return CampaignStateResolver(store, history_limit=get_settings().status_history_limit)


def get_draft_service(
    store: StatusStore = Depends(get_store),
    resolver: CampaignStateResolver = Depends(get_resolver),
) -> DraftAssemblyService:
    return DraftAssemblyService(store, resolver)


def get_n8n() -> N8NService:
    return get_n8n_service()


def get_lifecycle(
    store: StatusStore = Depends(get_store),
    n8n: N8NService = Depends(get_n8n),
) -> LifecycleCommands:
    return LifecycleCommands(store, n8n)


def get_notes_service(
    store: StatusStore = Depends(get_store),
    n8n: N8NService = Depends(get_n8n),
) -> NoteSummaryService:
    return NoteSummaryService(store, n8n)
