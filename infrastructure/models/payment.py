"""
Payment session ORM model.
Infrastructure detail only; business rules live in domain.payment.entity.PaymentSession.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text,
    Index, UniqueConstraint,
)
from datetime import datetime, timezone

from .base import Base


class PaymentSessionModel(Base):
    """One checkout attempt against bKash or Nagad"""
    __tablename__ = "payment_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)

    order_id = Column(String(100), nullable=False, index=True, comment="Order ID")
    store_id = Column(String(100), nullable=False, index=True, comment="Store ID")

    gateway = Column(String(20), nullable=False, comment="bkash/nagad")
    provider_session_id = Column(String(200), nullable=False, comment="bKash paymentID or Nagad paymentReferenceId")

    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="Charged amount")
    currency = Column(String(3), nullable=False, default="BDT", comment="ISO-4217 currency")

    status = Column(
        String(20),
        nullable=False,
        default="created",
        index=True,
        comment="created/settled/failed/cancelled",
    )
    redirect_url = Column(String(1000), nullable=True, comment="Provider-hosted checkout URL")
    transaction_id = Column(String(200), nullable=True, comment="Provider transaction ID once settled")
    failure_reason = Column(Text, nullable=True, comment="Failure or cancellation reason")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Created at",
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Updated at",
    )
    settled_at = Column(DateTime(timezone=True), nullable=True, comment="Settled at")

    __table_args__ = (
        UniqueConstraint("gateway", "provider_session_id", name="uq_payment_sessions_provider_ref"),
        Index("ix_payment_sessions_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentSessionModel(id={self.id}, order_id='{self.order_id}', "
            f"gateway='{self.gateway}', status='{self.status}')>"
        )
