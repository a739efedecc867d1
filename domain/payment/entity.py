"""
Payment domain entities - PaymentSession aggregate and the order view it settles.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException


class GatewayType(str, Enum):
    """Supported mobile-money gateways"""
    BKASH = "bkash"  # bearer-token tokenized checkout
    NAGAD = "nagad"  # RSA challenge/response


class PaymentSessionStatus(str, Enum):
    """Payment session status"""
    CREATED = "created"
    SETTLED = "settled"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, Enum):
    """orders.payment_status as written by the settlement reconciler"""
    UNPAID = "unpaid"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


ORDER_STATUS_CANCELLED = "cancelled"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class PaymentSession:
    """
    One attempt to pay one order through one gateway.

    Business rules:
    1. (gateway, provider_session_id) is unique
    2. amount must be positive
    3. settled / failed / cancelled are terminal
    4. at most one session per order may be settled (enforced together with the order ledger)
    """

    id: Optional[int]
    order_id: str
    store_id: str
    gateway: GatewayType
    provider_session_id: str  # bKash paymentID or Nagad paymentReferenceId
    amount: Decimal
    currency: str
    status: PaymentSessionStatus = PaymentSessionStatus.CREATED

    redirect_url: Optional[str] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        self.gateway = GatewayType(self.gateway)
        self.status = PaymentSessionStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.settled_at = _ensure_utc(self.settled_at)

    def is_final_status(self) -> bool:
        return self.status in (
            PaymentSessionStatus.SETTLED,
            PaymentSessionStatus.FAILED,
            PaymentSessionStatus.CANCELLED,
        )

    def can_settle(self) -> bool:
        # A locally failed session may still settle once the provider confirms it
        return self.status in (PaymentSessionStatus.CREATED, PaymentSessionStatus.FAILED)

    def _require_open(self, target: PaymentSessionStatus) -> None:
        if self.status != PaymentSessionStatus.CREATED:
            raise DomainValidationException(
                f"Cannot move payment session from {self.status.value} to {target.value}",
                field="status",
            )

    def mark_settled(self, transaction_id: str) -> None:
        if not self.can_settle():
            raise DomainValidationException(
                f"Cannot move payment session from {self.status.value} to settled",
                field="status",
            )
        self.status = PaymentSessionStatus.SETTLED
        self.transaction_id = transaction_id
        self.settled_at = datetime.now(timezone.utc)
        self.updated_at = self.settled_at
        self.failure_reason = None

    def mark_failed(self, reason: Optional[str] = None) -> None:
        self._require_open(PaymentSessionStatus.FAILED)
        self.status = PaymentSessionStatus.FAILED
        self.failure_reason = reason
        self.updated_at = datetime.now(timezone.utc)

    def mark_cancelled(self, reason: Optional[str] = None) -> None:
        self._require_open(PaymentSessionStatus.CANCELLED)
        self.status = PaymentSessionStatus.CANCELLED
        self.failure_reason = reason
        self.updated_at = datetime.now(timezone.utc)


@dataclass(frozen=True)
class PaymentDetails:
    """Structured record written to orders.payment_details on settlement"""

    method: GatewayType
    transaction_id: str
    provider_payment_id: str
    amount: Decimal
    paid_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict[str, Any]:
        return {
            "method": self.method.value,
            "transactionId": self.transaction_id,
            "providerPaymentId": self.provider_payment_id,
            "amount": str(self.amount),
            "paidAt": _ensure_utc(self.paid_at).isoformat().replace("+00:00", "Z"),
        }


@dataclass(frozen=True)
class OrderSnapshot:
    """Read-only view of an externally owned order"""

    id: str
    store_id: str
    total: Decimal
    currency: str
    payment_status: OrderPaymentStatus
    status: str
    payment_details: Optional[dict] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == OrderPaymentStatus.PAID
