"""
Application service orchestrating the create and execute-or-verify use cases.

Depends only on application ports and DTOs. Gateway, ledger and credential
implementations are injected from the composition root (api/dependencies.py),
keeping dependencies one-way.
"""
from __future__ import annotations

from application.dtos.payments import (
    ConfirmPaymentRequest,
    ConfirmPaymentResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    StorePaymentSettings,
)
from application.ports.ledger import OrderLedger, StoreCredentialLookup
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.payment.entity import GatewayType
from domain.payment.exceptions import ConfigurationError
from domain.payment.repository import PaymentSessionRepository
from domain.payment.service import PaymentDomainService


logger = get_logger(__name__)


async def load_store_settings(credentials: StoreCredentialLookup, store_id: str) -> StorePaymentSettings:
    raw = await credentials.get_payment_settings(store_id)
    if raw is None:
        raise ConfigurationError("Store not found", details={"store_id": store_id})
    return StorePaymentSettings.parse(store_id, raw)


class PaymentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        credentials: StoreCredentialLookup,
        ledger: OrderLedger,
        sessions: PaymentSessionRepository,
    ) -> None:
        self.gateway = gateway
        self.credentials = credentials
        self.ledger = ledger
        self.domain = PaymentDomainService(sessions)

    async def create_payment(self, req: CreatePaymentRequest) -> CreatePaymentResponse:
        logger.info(
            "payment_create_request",
            store_id=req.store_id,
            order_id=req.order_id,
            gateway=req.gateway.value,
        )
        settings = await load_store_settings(self.credentials, req.store_id)
        config = settings.require(req.gateway)

        order = self.domain.ensure_payable(
            await self.ledger.get_order(req.order_id),
            order_id=req.order_id,
            store_id=req.store_id,
            amount=req.amount,
        )

        redirect = await self.gateway.create_payment(
            config=config,
            order_id=req.order_id,
            amount=req.amount,
            callback_url=req.settlement_callback_url(),
        )
        await self.domain.open_session(
            order,
            gateway=redirect.gateway,
            provider_session_id=redirect.session_id,
            amount=req.amount,
            redirect_url=redirect.redirect_url,
        )
        await self.ledger.mark_pending(req.order_id)

        logger.info(
            "payment_create_response",
            order_id=req.order_id,
            gateway=redirect.gateway.value,
            session_id=redirect.session_id,
        )
        return CreatePaymentResponse(
            gateway=redirect.gateway,
            session_id=redirect.session_id,
            redirect_url=redirect.redirect_url,
        )

    async def confirm_payment(self, req: ConfirmPaymentRequest) -> ConfirmPaymentResponse:
        """Raw execute (bKash) or verify (Nagad). Writes nothing to the ledger."""
        logger.info("payment_confirm_request", store_id=req.store_id, gateway=req.gateway.value)
        settings = await load_store_settings(self.credentials, req.store_id)
        config = settings.require(GatewayType(req.gateway), allow_disabled=True)
        confirmed = await self.gateway.confirm_payment(config=config, session_id=req.session_token)
        logger.info(
            "payment_confirm_response",
            gateway=confirmed.gateway.value,
            transaction_id=confirmed.transaction_id,
        )
        return ConfirmPaymentResponse(
            transaction_id=confirmed.transaction_id,
            amount=confirmed.raw_amount,
            provider_payment_id=confirmed.provider_payment_id,
        )
