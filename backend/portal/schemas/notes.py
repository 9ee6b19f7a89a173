"""
Notes summary schemas.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class SummaryResponse(BaseModel):
    summary: str
    updated_at: Optional[datetime] = Field(None, serialization_alias="updatedAt")
