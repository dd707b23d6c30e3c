"""
Credit account model.
One row per user holding the two credit pools and the billing cycle.
"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime
from datetime import datetime
from clipgen.models.base import Base


class CreditAccountRow(Base):
    """Two-pool credit balance (subscription + top-up) for one account."""

    __tablename__ = "credit_accounts"

    id = Column(String(128), primary_key=True)  # Account id issued by the auth layer
    plan = Column(String(32), nullable=False, default="free")
    subscription_credits = Column(Integer, nullable=False, default=0)
    topup_credits = Column(Integer, nullable=False, default=0)
    billing_cycle_start = Column(DateTime, nullable=False, default=datetime.utcnow)
    billing_cycle_end = Column(DateTime, nullable=False, default=datetime.utcnow)
    auto_buy_enabled = Column(Boolean, nullable=False, default=False)
    total_used_this_cycle = Column(Integer, nullable=False, default=0)
    total_used_all_time = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)  # Compared on every update

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return (
            f"<CreditAccountRow(id={self.id}, plan={self.plan}, "
            f"subscription={self.subscription_credits}, topup={self.topup_credits})>"
        )
