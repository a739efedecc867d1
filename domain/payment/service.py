"""
Payment domain service - business rules around payment sessions.
"""
from decimal import Decimal
from typing import List, Optional
from datetime import datetime, timezone

from .entity import GatewayType, OrderSnapshot, PaymentSession, PaymentSessionStatus
from .events import PaymentCancelled, PaymentFailed, PaymentSettled
from .exceptions import AmountMismatchError, VerificationError
from .money import amounts_match
from .repository import PaymentSessionRepository
from domain.common.exceptions import BusinessException, OrderNotFoundException
from shared.codes import BusinessCode


class OrderAlreadyPaidException(BusinessException):
    """Order is already paid; no new payment may be started for it"""
    def __init__(self, order_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="Order is already paid",
            error_type="OrderAlreadyPaid",
            details={"order_id": order_id},
        )


class PaymentDomainService:
    """
    Payment domain service - orchestrates the session lifecycle

    Responsibilities:
    1. checks an order may be paid with a given amount
    2. opens sessions and applies terminal transitions
    3. collects domain events for the caller to publish
    """

    def __init__(self, session_repository: PaymentSessionRepository):
        self.session_repository = session_repository
        self.events: List = []

    @staticmethod
    def ensure_payable(order: Optional[OrderSnapshot], *, order_id: str, store_id: str, amount: Decimal) -> OrderSnapshot:
        """
        Business rules:
        1. the order exists and belongs to the store
        2. it is not paid yet
        3. the requested amount equals the order total in minor units
        """
        if order is None or order.store_id != store_id:
            raise OrderNotFoundException(order_id)
        if order.is_paid:
            raise OrderAlreadyPaidException(order_id)
        if not amounts_match(order.total, amount, order.currency):
            raise AmountMismatchError(
                expected=order.total,
                actual=amount,
                currency=order.currency,
                order_id=order_id,
            )
        return order

    @staticmethod
    def ensure_settled_amount(
        order: OrderSnapshot,
        actual: Optional[Decimal],
        *,
        gateway: GatewayType,
        raw_amount: Optional[str] = None,
    ) -> Decimal:
        """The amount the provider reports as paid must equal the order total."""
        if actual is None or not amounts_match(order.total, actual, order.currency):
            raise AmountMismatchError(
                expected=order.total,
                actual=actual if actual is not None else raw_amount,
                currency=order.currency,
                provider=gateway.value,
                order_id=order.id,
            )
        return actual

    async def open_session(
        self,
        order: OrderSnapshot,
        *,
        gateway: GatewayType,
        provider_session_id: str,
        amount: Decimal,
        redirect_url: Optional[str] = None,
    ) -> PaymentSession:
        now = datetime.now(timezone.utc)
        session = PaymentSession(
            id=None,
            order_id=order.id,
            store_id=order.store_id,
            gateway=gateway,
            provider_session_id=provider_session_id,
            amount=amount,
            currency=order.currency.upper(),
            status=PaymentSessionStatus.CREATED,
            redirect_url=redirect_url,
            created_at=now,
            updated_at=now,
        )
        return await self.session_repository.create(session)

    async def find_open_session(
        self,
        gateway: GatewayType,
        order_id: str,
        provider_session_id: Optional[str] = None,
    ) -> Optional[PaymentSession]:
        """Session to settle: by provider reference when known, else the newest open one."""
        if provider_session_id:
            session = await self.session_repository.get_by_provider_ref(gateway, provider_session_id)
            if session is not None and session.order_id == order_id and not session.is_final_status():
                return session
            return None
        for session in reversed(await self.session_repository.list_by_order(order_id)):
            if session.gateway == gateway and not session.is_final_status():
                return session
        return None

    async def resolve_settlement_session(
        self,
        order: OrderSnapshot,
        *,
        gateway: GatewayType,
        provider_session_id: str,
    ) -> PaymentSession:
        """
        The session a callback may settle.

        The provider reference must be one this order opened with this gateway.
        A settled session is returned as is; the caller treats it as a replay.
        """
        session = await self.session_repository.get_by_provider_ref(gateway, provider_session_id)
        if session is None or session.order_id != order.id or session.store_id != order.store_id:
            raise VerificationError(
                "Payment reference does not belong to this order",
                provider=gateway.value,
                details={"order_id": order.id, "provider_session_id": provider_session_id},
            )
        if session.status == PaymentSessionStatus.CANCELLED:
            raise VerificationError(
                "Payment session was cancelled",
                provider=gateway.value,
                details={"order_id": order.id, "provider_session_id": provider_session_id},
            )
        return session

    async def settle(
        self,
        order: OrderSnapshot,
        session: PaymentSession,
        *,
        transaction_id: str,
        amount: Decimal,
    ) -> PaymentSession:
        session.mark_settled(transaction_id)
        session = await self.session_repository.update(session)

        self.events.append(PaymentSettled(
            order_id=order.id,
            store_id=order.store_id,
            gateway=session.gateway.value,
            provider_ref=session.provider_session_id,
            transaction_id=transaction_id,
            amount=str(amount),
        ))
        return session

    async def fail(
        self,
        *,
        order_id: str,
        store_id: str,
        gateway: GatewayType,
        reason: str,
        error_type: Optional[str] = None,
        provider_session_id: Optional[str] = None,
    ) -> Optional[PaymentSession]:
        session = await self.find_open_session(gateway, order_id, provider_session_id)
        if session is not None:
            session.mark_failed(reason)
            session = await self.session_repository.update(session)

        self.events.append(PaymentFailed(
            order_id=order_id,
            store_id=store_id,
            gateway=gateway.value,
            provider_ref=provider_session_id,
            reason=reason,
            error_type=error_type,
        ))
        return session

    async def cancel(
        self,
        *,
        order_id: str,
        store_id: str,
        gateway: GatewayType,
        reason: str,
        provider_session_id: Optional[str] = None,
    ) -> Optional[PaymentSession]:
        session = await self.find_open_session(gateway, order_id, provider_session_id)
        if session is not None:
            session.mark_cancelled(reason)
            session = await self.session_repository.update(session)

        self.events.append(PaymentCancelled(
            order_id=order_id,
            store_id=store_id,
            gateway=gateway.value,
            provider_ref=provider_session_id,
        ))
        return session

    def clear_events(self) -> List:
        """Return and clear collected domain events"""
        events = self.events.copy()
        self.events.clear()
        return events
