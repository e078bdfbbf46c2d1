"""
Business model: one tenant-owned mapping to an Instagram Business Account.

Rows are created (or replaced wholesale on reconnect) by the connection flow and
mutated in place by integration status checks.
"""
from sqlalchemy import Column, String, DateTime, Text, Boolean, ForeignKey, Uuid
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import uuid
from inboop.database import Base


PLACEHOLDER_BUSINESS_NAME = "Pending Connection"


class Business(Base):
    __tablename__ = "businesses"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String(255), nullable=False, default=PLACEHOLDER_BUSINESS_NAME)

    # External linkage
    facebook_user_id = Column(String(100), nullable=True)
    facebook_page_id = Column(String(100), nullable=True)
    instagram_business_account_id = Column(String(100), nullable=True, index=True)
    instagram_username = Column(String(255), nullable=True)

    # Credential (never serialized)
    access_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Discovery bookkeeping
    available_page_ids = Column(Text, nullable=True)  # Comma separated Page ids seen at last discovery
    selected_page_id = Column(String(100), nullable=True)
    last_ig_account_id_seen = Column(String(100), nullable=True)

    # Verification bookkeeping
    is_active = Column(Boolean, nullable=False, default=False)
    last_connection_error = Column(String(50), nullable=True)  # BlockedReason value
    last_status_check_at = Column(DateTime(timezone=True), nullable=True)
    connection_retry_at = Column(DateTime(timezone=True), nullable=True)  # Admin cooldown expiry

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    owner = relationship("User", back_populates="businesses")

    def __repr__(self):
        return (
            f"<Business(id={self.id}, owner_id={self.owner_id}, "
            f"ig_account={self.instagram_business_account_id}, page_id={self.facebook_page_id}, "
            f"is_active={self.is_active}, error={self.last_connection_error})>"
        )

    @property
    def page_id_list(self) -> list[str]:
        if not self.available_page_ids:
            return []
        return [p for p in self.available_page_ids.split(",") if p]

    @page_id_list.setter
    def page_id_list(self, page_ids: list[str]) -> None:
        self.available_page_ids = ",".join(page_ids) if page_ids else None

    def has_credential(self) -> bool:
        return bool(self.access_token)
