"""
Ports for collaborators owned outside the payment core.

The storefront owns orders, stores and carts; the payment core reaches them
only through these protocols.
"""
from __future__ import annotations

from typing import Any, AsyncContextManager, Optional, Protocol, runtime_checkable

from domain.payment.entity import OrderSnapshot, PaymentDetails
from domain.payment.repository import PaymentSessionRepository


@runtime_checkable
class StoreCredentialLookup(Protocol):
    async def get_payment_settings(self, store_id: str) -> Optional[Any]:
        """Raw payment_settings blob (JSON string or dict), or None if the store does not exist."""
        ...


@runtime_checkable
class OrderLedger(Protocol):
    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]: ...

    async def mark_pending(self, order_id: str) -> None:
        """unpaid/failed -> pending; never touches a paid order."""
        ...

    async def mark_paid(self, order_id: str, details: PaymentDetails) -> bool:
        """Compare-and-set to paid. Returns False when the order was already paid."""
        ...

    async def mark_failed(self, order_id: str, reason: str, *, cancel: bool = False) -> None:
        """Record a failed payment; cancel=True also moves the order status to cancelled."""
        ...


@runtime_checkable
class CartClearer(Protocol):
    async def clear(self, store_id: str, order_id: str) -> None:
        """Idempotent: clearing an empty cart is a no-op."""
        ...


@runtime_checkable
class SettlementLock(Protocol):
    def hold(self, key: str) -> AsyncContextManager[None]: ...


class PaymentUnitOfWork(Protocol):
    """Transaction scope handing out the payment-side repositories; commits on clean exit."""

    payment_sessions: PaymentSessionRepository
    orders: OrderLedger
    stores: StoreCredentialLookup

    async def __aenter__(self) -> "PaymentUnitOfWork": ...

    async def __aexit__(self, exc_type, exc, tb) -> None: ...
