"""
Credit transaction model.
Append-only: rows are inserted with the balance change and never updated.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Index, Enum as SQLEnum
from datetime import datetime

from clipgen.entities import CreditSource, TransactionType, new_id
from clipgen.models.base import Base


class CreditTransactionRow(Base):
    """Ledger entry for every balance-affecting operation."""

    __tablename__ = "credit_transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(128), ForeignKey("credit_accounts.id"), nullable=False)
    type = Column(SQLEnum(TransactionType), nullable=False)
    amount = Column(Integer, nullable=False)  # Signed: negative for charges
    source = Column(SQLEnum(CreditSource), nullable=False)
    balance_after = Column(Integer, nullable=False)
    job_id = Column(String(36), nullable=True)
    model_id = Column(String(64), nullable=True)
    preset_id = Column(String(64), nullable=True)
    description = Column(String(255), nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_credit_tx_account_created", "account_id", "created_at"),
        Index("idx_credit_tx_job", "job_id"),
    )

    def __repr__(self):
        return f"<CreditTransactionRow(id={self.id}, type={self.type}, amount={self.amount})>"
