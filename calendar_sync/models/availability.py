# ===== calendar_sync/models/availability.py =====
from sqlalchemy import Column, String, Boolean, Time, Date, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from calendar_sync.models.base import Base
import uuid

# Rows carrying this reason belong to the import reconciler
GOOGLE_CALENDAR_SYNC_REASON = "google_calendar_sync"


class AvailabilityOverride(Base):
    """Specific date overrides (time-off, imported busy time, special hours)"""
    __tablename__ = "availability_overrides"
    __table_args__ = (
        Index("ix_availability_overrides_account_reason_date", "account_id", "reason", "override_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    account_id = Column(UUID(as_uuid=True), ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False)

    override_date = Column(Date, nullable=False)
    is_available = Column(Boolean, nullable=False, default=False)  # False = blocked
    start_time = Column(Time, nullable=True)  # both NULL = whole day
    end_time = Column(Time, nullable=True)
    reason = Column(String, nullable=True)  # "Vacation", GOOGLE_CALENDAR_SYNC_REASON, etc.
