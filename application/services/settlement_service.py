"""
Settlement reconciler: the only writer of orders.payment_status.

Runs once the customer's browser comes back from the provider with the
callback query string. Confirms the payment with the provider, checks the
settled amount against the order and marks the order paid exactly once.
The cart is cleared by `clear_cart` after the caller has committed.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.payments import (
    CallbackParams,
    SettlementOutcome,
    SettlementResult,
)
from application.ports.ledger import CartClearer, OrderLedger, SettlementLock, StoreCredentialLookup
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import load_store_settings
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.payment.entity import OrderSnapshot, PaymentDetails, PaymentSessionStatus
from domain.payment.exceptions import VerificationError, shopper_message
from domain.payment.repository import PaymentSessionRepository
from domain.payment.service import PaymentDomainService


logger = get_logger(__name__)

GENERIC_SETTLEMENT_FAILURE = "Payment could not be verified"


class SettlementReconciler:
    def __init__(
        self,
        gateway: PaymentGateway,
        credentials: StoreCredentialLookup,
        ledger: OrderLedger,
        sessions: PaymentSessionRepository,
        cart: CartClearer,
        lock: SettlementLock,
    ) -> None:
        self.gateway = gateway
        self.credentials = credentials
        self.ledger = ledger
        self.cart = cart
        self.lock = lock
        self.domain = PaymentDomainService(sessions)

    async def reconcile(self, params: CallbackParams) -> SettlementResult:
        gateway = params.method
        order_id = params.order_id
        logger.info(
            "settlement_callback_received",
            order_id=order_id,
            gateway=gateway.value,
            status=params.normalized_status or None,
        )

        if params.is_cancelled or params.is_failure:
            return await self._abandon(params)

        order = await self.ledger.get_order(order_id)
        if order is None or (params.store_id and order.store_id != params.store_id):
            logger.warning("settlement_order_not_found", order_id=order_id, store_id=params.store_id)
            return SettlementResult(
                success=False,
                outcome=SettlementOutcome.FAILED,
                order_id=order_id,
                gateway=gateway,
                reason="Order not found",
                error_type="OrderNotFound",
            )
        if order.is_paid:
            logger.info("settlement_already_paid", order_id=order_id)
            return self._already_settled(order, params)

        try:
            return await self._settle(order, params)
        except BusinessException as exc:
            logger.warning(
                "settlement_failed",
                order_id=order_id,
                gateway=gateway.value,
                error_type=exc.error_type,
                error=exc.message,
            )
            return await self._fail(order, params, exc.message, exc.error_type, shown=shopper_message(exc))
        except Exception:
            logger.error("settlement_unexpected_error", order_id=order_id, gateway=gateway.value, exc_info=True)
            return await self._fail(order, params, GENERIC_SETTLEMENT_FAILURE, "SystemError")

    async def _settle(self, order: OrderSnapshot, params: CallbackParams) -> SettlementResult:
        gateway = params.method
        token = params.session_token
        if not token:
            raise VerificationError(
                "Callback is missing the payment reference",
                provider=gateway.value,
                details={"order_id": order.id},
            )

        session = await self.domain.resolve_settlement_session(order, gateway=gateway, provider_session_id=token)
        if session.status == PaymentSessionStatus.SETTLED:
            logger.info("settlement_session_already_settled", order_id=order.id, provider_session_id=token)
            return self._already_settled(order, params, transaction_id=session.transaction_id)

        settings = await load_store_settings(self.credentials, order.store_id)
        config = settings.require(gateway, allow_disabled=True)
        confirmed = await self.gateway.confirm_payment(config=config, session_id=token)
        if confirmed.order_id and confirmed.order_id != order.id:
            raise VerificationError(
                "Provider reports the payment for a different order",
                provider=gateway.value,
                details={"order_id": order.id, "provider_order_id": confirmed.order_id},
            )
        amount = self.domain.ensure_settled_amount(
            order, confirmed.amount, gateway=gateway, raw_amount=confirmed.raw_amount,
        )

        details = PaymentDetails(
            method=gateway,
            transaction_id=confirmed.transaction_id,
            provider_payment_id=confirmed.provider_payment_id or token,
            amount=amount,
        )
        async with self.lock.hold(f"settlement:{order.id}"):
            written = await self.ledger.mark_paid(order.id, details)
            if not written:
                logger.info("settlement_already_paid", order_id=order.id, transaction_id=confirmed.transaction_id)
                return self._already_settled(order, params, transaction_id=confirmed.transaction_id)

            await self.domain.settle(order, session, transaction_id=confirmed.transaction_id, amount=amount)

        for event in self.domain.clear_events():
            logger.info("payment_event", event_type=type(event).__name__, order_id=event.order_id, event_id=event.event_id)
        logger.info(
            "settlement_paid",
            order_id=order.id,
            gateway=gateway.value,
            transaction_id=confirmed.transaction_id,
        )
        return SettlementResult(
            success=True,
            outcome=SettlementOutcome.SETTLED,
            order_id=order.id,
            store_id=order.store_id,
            gateway=gateway,
            transaction_id=confirmed.transaction_id,
            amount=str(amount),
        )

    async def _abandon(self, params: CallbackParams) -> SettlementResult:
        gateway = params.method
        cancelled = params.is_cancelled
        reason = "Payment cancelled by customer" if cancelled else "Payment failed at provider"
        await self.ledger.mark_failed(params.order_id, reason, cancel=True)

        store_id = params.store_id or ""
        if cancelled:
            await self.domain.cancel(
                order_id=params.order_id,
                store_id=store_id,
                gateway=gateway,
                reason=reason,
                provider_session_id=params.session_token,
            )
        else:
            await self.domain.fail(
                order_id=params.order_id,
                store_id=store_id,
                gateway=gateway,
                reason=reason,
                error_type="ProviderFailure",
                provider_session_id=params.session_token,
            )
        self.domain.clear_events()
        logger.info("settlement_cancelled", order_id=params.order_id, gateway=gateway.value, status=params.normalized_status)
        return SettlementResult(
            success=False,
            outcome=SettlementOutcome.CANCELLED,
            order_id=params.order_id,
            gateway=gateway,
            reason=reason,
        )

    async def _fail(
        self,
        order: OrderSnapshot,
        params: CallbackParams,
        reason: str,
        error_type: Optional[str],
        *,
        shown: Optional[str] = None,
    ) -> SettlementResult:
        await self.ledger.mark_failed(order.id, reason, cancel=False)
        await self.domain.fail(
            order_id=order.id,
            store_id=order.store_id,
            gateway=params.method,
            reason=reason,
            error_type=error_type,
            provider_session_id=params.session_token,
        )
        self.domain.clear_events()
        return SettlementResult(
            success=False,
            outcome=SettlementOutcome.FAILED,
            order_id=order.id,
            gateway=params.method,
            reason=shown or reason,
            error_type=error_type,
        )

    async def clear_cart(self, result: SettlementResult) -> None:
        """Drop the shopper's cart once a fresh settlement is committed."""
        if result.outcome == SettlementOutcome.SETTLED and result.store_id:
            await self.cart.clear(result.store_id, result.order_id)

    @staticmethod
    def _already_settled(
        order: OrderSnapshot,
        params: CallbackParams,
        *,
        transaction_id: Optional[str] = None,
    ) -> SettlementResult:
        recorded = order.payment_details or {}
        return SettlementResult(
            success=True,
            outcome=SettlementOutcome.ALREADY_SETTLED,
            order_id=order.id,
            gateway=params.method,
            transaction_id=recorded.get("transactionId") or transaction_id,
            amount=recorded.get("amount") or str(order.total),
        )
