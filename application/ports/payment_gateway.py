"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable

from application.dtos.payments import (
    ConfirmedPayment,
    GatewayConfig,
    PaymentRedirect,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Provider-agnostic view over the bKash and Nagad adapters.

    Implementations convert every provider failure into the domain payment
    error taxonomy; nothing else may escape.
    """

    async def create_payment(
        self,
        *,
        config: GatewayConfig,
        order_id: str,
        amount: Decimal,
        callback_url: str,
    ) -> PaymentRedirect: ...

    async def confirm_payment(self, *, config: GatewayConfig, session_id: str) -> ConfirmedPayment: ...

    async def aclose(self) -> None: ...
