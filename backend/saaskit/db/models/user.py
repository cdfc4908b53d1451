"""User model: profile, avatar references, and Stripe customer identity."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, Uuid

from saaskit.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clerk_user_id = Column(String(255), unique=True, nullable=False, index=True)

    # Profile fields (from JWT claims and user-provided)
    name = Column(String(255), nullable=True)
    username = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    image = Column(String(500), nullable=True)  # external avatar URL from the identity provider
    image_key = Column(String(500), nullable=True)  # uploaded avatar object key

    # Stripe customer, set once during onboarding
    customer_id = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC))
