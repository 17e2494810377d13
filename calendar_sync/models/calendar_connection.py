# ===== calendar_sync/models/calendar_connection.py =====
from sqlalchemy import (
    Column, String, Boolean, DateTime, Integer, LargeBinary, Text, ForeignKey, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from calendar_sync.models.base import Base
import uuid


class CalendarConnection(Base):
    """OAuth credentials, chosen calendar and sync settings for one professional"""
    __tablename__ = "calendar_connections"
    __table_args__ = (
        UniqueConstraint("account_id", "provider", name="uq_calendar_connections_account_provider"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(32), nullable=False, default="google")

    # OAuth tokens (Fernet-encrypted)
    access_token_encrypted = Column(LargeBinary, nullable=False)
    refresh_token_encrypted = Column(LargeBinary, nullable=False)
    token_expires_at = Column(DateTime(timezone=True))
    token_version = Column(Integer, nullable=False, default=0)  # bumped on every credential write

    # Target calendar
    calendar_id = Column(String, nullable=True)
    time_zone = Column(String(64), nullable=True)

    # Sync settings
    sync_enabled = Column(Boolean, nullable=False, default=True)
    needs_reauth = Column(Boolean, nullable=False, default=False)
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_error = Column(Text, nullable=True)

    # Push notification channel
    webhook_channel_id = Column(String(64), nullable=True, index=True)
    webhook_resource_id = Column(String, nullable=True)
    webhook_expiration = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
