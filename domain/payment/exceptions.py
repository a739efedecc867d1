"""
Payment gateway error taxonomy.

Adapters convert every provider-facing failure into one of these before it
reaches the application layer, so services never see raw httpx or
cryptography errors.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentGatewayError(BusinessException):
    """Base for all gateway-facing failures."""

    default_code: int = PaymentCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        provider_code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=self.default_code,
            message=message,
            error_type=type(self).__name__,
            details=full_details,
        )


class ConfigurationError(PaymentGatewayError):
    """Gateway disabled or credentials missing/malformed for a store. Merchant-visible only."""

    default_code = PaymentCode.CONFIGURATION_ERROR


class GatewayAuthError(PaymentGatewayError):
    """Token grant failed."""

    default_code = PaymentCode.GATEWAY_AUTH_ERROR
    retryable = True


class HandshakeError(PaymentGatewayError):
    """Signature or decryption failure on a signed/encrypted provider response."""

    default_code = PaymentCode.HANDSHAKE_ERROR


class PaymentCreateError(PaymentGatewayError):
    default_code = PaymentCode.PAYMENT_CREATE_ERROR


class PaymentExecuteError(PaymentGatewayError):
    default_code = PaymentCode.PAYMENT_EXECUTE_ERROR


class VerificationError(PaymentGatewayError):
    default_code = PaymentCode.VERIFICATION_ERROR


class AmountMismatchError(PaymentGatewayError):
    default_code = PaymentCode.AMOUNT_MISMATCH

    def __init__(
        self,
        *,
        expected: Decimal,
        actual: Optional[Decimal | str],
        currency: str,
        provider: Optional[str] = None,
        order_id: Optional[str] = None,
    ):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Settled amount {actual} does not match order total {expected} {currency}",
            provider=provider,
            details={
                "expected": str(expected),
                "actual": None if actual is None else str(actual),
                "currency": currency,
                "order_id": order_id,
            },
        )


GENERIC_PAYMENT_FAILED = "Payment failed, please try again"

# Store configuration and crypto failures are for the merchant's eyes only
_MERCHANT_ONLY = (ConfigurationError, HandshakeError)


def shopper_message(exc: BusinessException) -> str:
    """Message safe to show the shopper for a business error."""
    if isinstance(exc, _MERCHANT_ONLY):
        return GENERIC_PAYMENT_FAILED
    return exc.message or GENERIC_PAYMENT_FAILED
