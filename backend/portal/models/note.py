"""
Notes models - personal notes and their AI generated summary.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Integer, DateTime, Text

from ..database import Base


class Note(Base):
    """A personal note. Only read here, to check the caller has something to summarize."""

    __tablename__ = "notes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), nullable=False, index=True)
    content = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class NoteSummary(Base):
    """Latest summary per user, plus the rate limit bookkeeping."""

    __tablename__ = "note_summaries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), unique=True, nullable=False, index=True)
    summary = Column(Text, nullable=True)

    last_generated_at = Column(DateTime, nullable=True)
    generation_count = Column(Integer, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<NoteSummary {self.user_id}>"
