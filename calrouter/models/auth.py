"""Account & subscription models."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Index, String
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base

SUBSCRIPTION_TRIAL = "trial"
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_EXPIRED = "expired"
SUBSCRIPTION_CANCELLED = "cancelled"

# Statuses that keep endpoints forwarding
LIVE_SUBSCRIPTION_STATUSES = (SUBSCRIPTION_ACTIVE, SUBSCRIPTION_TRIAL)


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), nullable=False)
    subscription_status = Column(
        String(20), nullable=False, default=SUBSCRIPTION_TRIAL
    )  # trial | active | expired | cancelled
    trial_ends_at = Column(UTCDateTime)
    trial_reminder_sent_at = Column(UTCDateTime)
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    endpoints = relationship("Endpoint", back_populates="user")

    __table_args__ = (
        Index("ix_users_status_trial_end", "subscription_status", "trial_ends_at"),
    )

    @property
    def has_live_subscription(self) -> bool:
        return self.subscription_status in LIVE_SUBSCRIPTION_STATUSES
