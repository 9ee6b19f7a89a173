"""
API routers.
"""
from .drafts import router as drafts_router
from .broadcast import router as broadcast_router
from .notes import router as notes_router

__all__ = ["drafts_router", "broadcast_router", "notes_router"]
