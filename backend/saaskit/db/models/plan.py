"""Plan model: local mirror of a Stripe product and its recurring prices."""

from sqlalchemy import JSON, Column, Integer, String, Text

from saaskit.db.base import Base


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(20), nullable=False, index=True)  # free | pro | business
    stripe_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")

    # {"month": {"usd": {"stripe_id": "price_...", "amount": 900}}, "year": {...}}
    prices = Column(JSON, nullable=False, default=dict)
