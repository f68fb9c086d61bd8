"""Webhook endpoint model — one intake route bound to one destination URL."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, ForeignKey, Index, String
from sqlalchemy.orm import relationship, validates

from ..database import UTCDateTime
from ..utils.validation import is_https_url
from .base import Base


class Endpoint(Base):
    """User-configured intake route. Soft-deleted only, so log history survives."""

    __tablename__ = "webhook_endpoints"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False, default="Untitled endpoint")
    destination_url = Column(String(2048), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(UTCDateTime)

    # Enrichment toggles
    enable_reschedule_detection = Column(Boolean, nullable=False, default=True)
    enable_utm_tracking = Column(Boolean, nullable=False, default=True)
    enable_question_parsing = Column(Boolean, nullable=False, default=True)

    failure_notification_sent_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = relationship("User", back_populates="endpoints")

    __table_args__ = (
        Index("ix_endpoints_user_active", "user_id", "is_active"),
    )

    @validates("destination_url")
    def _validate_destination_url(self, key, value):
        if not is_https_url(value):
            raise ValueError("Destination URL must use HTTPS")
        return value
