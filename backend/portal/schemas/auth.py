"""
Authentication schemas.
"""
from typing import Optional

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Caller identity taken from a verified Supabase access token."""
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
