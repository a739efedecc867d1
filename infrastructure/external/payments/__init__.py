"""
Gateway registry and factory.

`PaymentGatewayRegistry` implements the application PaymentGateway port over
the concrete bKash and Nagad adapters, dispatching on the credentials' tag.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Union

import httpx

from application.dtos.payments import (
    BkashCredentials,
    ConfirmedPayment,
    NagadCredentials,
    PaymentRedirect,
)
from application.ports.payment_gateway import PaymentGateway
from core.settings import payment_settings
from domain.payment.entity import GatewayType
from domain.payment.money import parse_amount
from infrastructure.external.payments.bkash_client import BkashClient
from infrastructure.external.payments.nagad_client import NagadClient
from infrastructure.external.payments.token_cache import TokenCache


class PaymentGatewayRegistry:
    def __init__(
        self,
        token_cache: TokenCache,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.bkash = BkashClient(token_cache, http_client=http_client)
        self.nagad = NagadClient(http_client=http_client)

    async def create_payment(
        self,
        *,
        config: Union[BkashCredentials, NagadCredentials],
        order_id: str,
        amount: Decimal,
        callback_url: str,
    ) -> PaymentRedirect:
        if isinstance(config, BkashCredentials):
            created = await self.bkash.create_payment(
                amount=amount, order_id=order_id, callback_url=callback_url, creds=config,
            )
            return PaymentRedirect(
                gateway=GatewayType.BKASH,
                session_id=created.payment_id,
                redirect_url=created.bkash_url,
            )
        initialized, completed = await self.nagad.create_payment(
            amount=amount, order_id=order_id, callback_url=callback_url, creds=config,
        )
        return PaymentRedirect(
            gateway=GatewayType.NAGAD,
            session_id=initialized.payment_reference_id,
            redirect_url=completed.redirect_url,
        )

    async def confirm_payment(
        self,
        *,
        config: Union[BkashCredentials, NagadCredentials],
        session_id: str,
    ) -> ConfirmedPayment:
        if isinstance(config, BkashCredentials):
            executed = await self.bkash.execute_or_query(session_id, config)
            return ConfirmedPayment(
                gateway=GatewayType.BKASH,
                transaction_id=executed.transaction_id,
                provider_payment_id=executed.payment_id,
                amount=parse_amount(executed.amount),
                raw_amount=executed.amount,
                order_id=executed.merchant_invoice_number or executed.payer_reference,
            )
        verified = await self.nagad.verify(session_id, config)
        return ConfirmedPayment(
            gateway=GatewayType.NAGAD,
            transaction_id=verified.transaction_id,
            provider_payment_id=verified.payment_reference_id,
            amount=parse_amount(verified.amount),
            raw_amount=verified.amount,
            order_id=verified.order_id,
        )

    async def aclose(self) -> None:
        try:
            await self.bkash.aclose()
        finally:
            await self.nagad.aclose()


def get_payment_gateway(
    token_cache: Optional[TokenCache] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> PaymentGateway:
    cache = token_cache or TokenCache(
        safety_margin=float(payment_settings.bkash.token_safety_margin_seconds),
    )
    return PaymentGatewayRegistry(cache, http_client=http_client)


__all__ = ["PaymentGatewayRegistry", "get_payment_gateway", "TokenCache"]
