"""Claimed Stripe webhook events.

A row exists while an event is being handled or once it has been handled;
a failed handler deletes its claim so Stripe's redelivery is processed.
"""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String

from saaskit.db.base import Base


class StripeWebhookEvent(Base):
    __tablename__ = "stripe_webhook_events"

    # Stripe event id (evt_...)
    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(100), nullable=False, index=True)
    livemode = Column(Boolean, nullable=False, default=False)
    claimed_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
