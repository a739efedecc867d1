"""
Storefront-owned tables the payment core reads and settles.

Only the columns the payment core touches are mapped; the storefront keeps
the rest (line items, shipping, customer) in the same rows.
"""
from sqlalchemy import Column, String, Numeric, DateTime, Text, JSON
from datetime import datetime, timezone

from .base import Base


class StoreModel(Base):
    __tablename__ = "stores"

    id = Column(String(100), primary_key=True)
    name = Column(String(200), nullable=True, comment="Store name")
    # JSON text or object: {"bkash": {...}, "nagad": {...}, "payment_methods": {...}}
    payment_settings = Column(JSON, nullable=True, comment="Per-store gateway credentials")


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(100), primary_key=True)
    store_id = Column(String(100), nullable=False, index=True, comment="Store ID")
    order_number = Column(String(100), nullable=True, comment="Shopper-facing order number")

    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="Amount due")
    currency = Column(String(3), nullable=False, default="BDT", comment="ISO-4217 currency")

    status = Column(String(30), nullable=False, default="pending", comment="Fulfilment-facing order status")
    payment_status = Column(
        String(20),
        nullable=False,
        default="unpaid",
        index=True,
        comment="unpaid/pending/paid/failed",
    )
    payment_details = Column(JSON, nullable=True, comment="{method, transactionId, providerPaymentId, amount, paidAt}")
    payment_failure_reason = Column(Text, nullable=True, comment="Last payment failure reason")

    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="Updated at",
    )

    def __repr__(self):
        return f"<OrderModel(id='{self.id}', payment_status='{self.payment_status}')>"
