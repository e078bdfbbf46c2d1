"""
ConnectionAttempt model: history of completed OAuth callbacks.

Kept separate from Business so "never connected" and "connected, then broke" are not
conflated. Never stores credentials.
"""
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, Uuid
from sqlalchemy.sql import func
import uuid
from inboop.database import Base


class ConnectionAttempt(Base):
    __tablename__ = "connection_attempts"

    OUTCOME_CONNECTED = "connected"
    OUTCOME_FAILED = "failed"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    facebook_user_id = Column(String(100), nullable=True)
    outcome = Column(String(20), nullable=False)
    error_reason = Column(String(50), nullable=True)
    pages_checked = Column(Integer, nullable=False, default=0)
    page_ids = Column(Text, nullable=True)
    # Primary account first, then any secondary candidates found on later Pages
    instagram_account_ids = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<ConnectionAttempt(id={self.id}, owner_id={self.owner_id}, outcome={self.outcome}, error={self.error_reason})>"
