# ===== calendar_sync/models/booking.py =====
"""
Read-side view of the booking store.

Only the columns the calendar export touches are mapped here; the booking
lifecycle itself lives in the surrounding platform.
"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from calendar_sync.models.base import Base
import uuid


class Professional(Base):
    __tablename__ = "professionals"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)

    locations = relationship("ProfessionalLocation", back_populates="professional")


class ProfessionalLocation(Base):
    __tablename__ = "professional_locations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    professional_id = Column(UUID(as_uuid=True), ForeignKey("professionals.id", ondelete="CASCADE"), nullable=False)
    timezone = Column(String(64), nullable=True)

    professional = relationship("Professional", back_populates="locations")


class Client(Base):
    __tablename__ = "clients"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    booking_number = Column(String(32), nullable=False, unique=True)

    # References
    professional_id = Column(UUID(as_uuid=True), ForeignKey("professionals.id"), nullable=False, index=True)
    client_id = Column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)

    # Appointment details
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    consultation_type = Column(String(32), nullable=False, default="in_person")  # video, in_person
    client_notes = Column(Text, nullable=True)
    status = Column(String(32), default="confirmed")

    # Calendar sync
    external_event_id = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    professional = relationship("Professional")
    client = relationship("Client")
