"""Delivery log — one immutable row per processed inbound event."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


class DeliveryLog(Base):
    __tablename__ = "webhook_logs"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    endpoint_id = Column(String(36), ForeignKey("webhook_endpoints.id"), nullable=False)
    calendly_event_uuid = Column(String(255), nullable=False)
    event_type = Column(String(100), nullable=False)
    invitee_email = Column(String(255))
    original_payload = Column(JSON)
    enriched_payload = Column(JSON)
    is_reschedule = Column(Boolean, nullable=False, default=False)
    utm_source = Column(String(255))
    utm_medium = Column(String(255))
    utm_campaign = Column(String(255))
    status = Column(String(20), nullable=False)  # success | failed
    response_code = Column(Integer)
    error_message = Column(Text)
    failure_kind = Column(String(40))  # forwarder classification, NULL on success
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    endpoint = relationship("Endpoint", foreign_keys=[endpoint_id])

    __table_args__ = (
        UniqueConstraint(
            "endpoint_id", "calendly_event_uuid", "event_type", name="uq_webhook_logs_event"
        ),
        Index("ix_webhook_logs_invitee", "invitee_email", "event_type", "created_at"),
        Index("ix_webhook_logs_endpoint_recent", "endpoint_id", "created_at"),
    )


@event.listens_for(DeliveryLog, "before_update")
def _reject_update(mapper, connection, target):
    raise ValueError(f"Delivery log {target.id} is append-only")
