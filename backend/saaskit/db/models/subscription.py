"""Subscription model: one row per user, mirrored from Stripe."""

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, Uuid

from saaskit.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)

    price_stripe_id = Column(String(255), nullable=False)
    stripe_id = Column(String(255), unique=True, nullable=False, index=True)
    currency = Column(String(3), nullable=False)
    interval = Column(String(10), nullable=False)
    status = Column(String(50), nullable=False)

    # Epoch seconds, as reported by Stripe
    current_period_start = Column(BigInteger, nullable=False)
    current_period_end = Column(BigInteger, nullable=False)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
