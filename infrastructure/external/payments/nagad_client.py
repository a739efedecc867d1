"""
Nagad checkout adapter.

Two-phase handshake: initialize exchanges signed/encrypted challenges and
yields a paymentReferenceId; complete submits the amount against that
reference and returns the page the customer is redirected to. Settlement is
confirmed with a plain verify call.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    NagadCompleted,
    NagadCredentials,
    NagadInitialized,
    NagadVerified,
)
from core.settings import payment_settings
from domain.payment.exceptions import (
    HandshakeError,
    PaymentCreateError,
    VerificationError,
)
from domain.payment.money import format_amount
from infrastructure.external.payments import crypto
from infrastructure.external.payments.base import BasePaymentClient, logger


class NagadClient(BasePaymentClient):
    provider = "nagad"

    def __init__(self, *, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            http_client=http_client,
        )
        self._cfg = payment_settings.nagad

    def _headers(self, creds: NagadCredentials) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-KM-Api-Version": creds.api_version or self._cfg.default_api_version,
            "X-KM-IP-V4": self._cfg.client_ip,
            "X-KM-Client-Type": self._cfg.client_type,
        }

    @staticmethod
    def _seal(payload: dict[str, Any], creds: NagadCredentials) -> tuple[str, str]:
        """(encrypted sensitiveData, signature) for a JSON payload."""
        plaintext = json.dumps(payload, separators=(",", ":"))
        try:
            signature = crypto.sign(plaintext, creds.merchant_private_key.get_secret_value())
            sealed = crypto.encrypt(plaintext, creds.gateway_public_key)
        except crypto.CryptoError as exc:
            raise HandshakeError(
                f"Unable to seal Nagad request: {exc}",
                provider="nagad",
            ) from exc
        return sealed, signature

    def _reject(self, reason: str, *, order_id: str, provider_code: Optional[str] = None) -> HandshakeError:
        logger.warning("nagad_handshake_rejected", provider=self.provider, order_id=order_id, reason=reason)
        return HandshakeError(
            f"Nagad handshake rejected: {reason}",
            provider=self.provider,
            provider_code=provider_code,
            details={"order_id": order_id},
        )

    async def initialize(
        self,
        order_id: str,
        creds: NagadCredentials,
        *,
        now: Optional[datetime] = None,
    ) -> NagadInitialized:
        timestamp = crypto.nagad_timestamp(now)
        sensitive = {
            "merchantId": creds.merchant_id,
            "datetime": timestamp,
            "orderId": order_id,
            "challenge": crypto.random_challenge(),
        }
        sealed, signature = self._seal(sensitive, creds)
        resp = await self._call(
            "POST",
            f"{creds.base_url}/api/dfs/check-out/initialize/{creds.merchant_id}/{order_id}",
            headers=self._headers(creds),
            json={
                "accountNumber": creds.merchant_number,
                "dateTime": timestamp,
                "sensitiveData": sealed,
                "signature": signature,
            },
            error=HandshakeError,
            operation="initialize",
        )

        reply_sealed = resp.get("sensitiveData")
        reply_signature = resp.get("signature")
        if not reply_sealed or not reply_signature:
            raise self._reject(
                str(resp.get("message") or "response missing sensitiveData or signature"),
                order_id=order_id,
                provider_code=resp.get("reason"),
            )
        try:
            plaintext = crypto.decrypt(reply_sealed, creds.merchant_private_key.get_secret_value())
            authentic = crypto.verify(plaintext, reply_signature, creds.gateway_public_key)
        except crypto.CryptoError as exc:
            raise self._reject(str(exc), order_id=order_id) from exc
        if not authentic:
            raise self._reject("signature verification failed", order_id=order_id)
        try:
            decoded = json.loads(plaintext)
        except ValueError as exc:
            raise self._reject("sensitiveData is not JSON", order_id=order_id) from exc
        if not isinstance(decoded, dict):
            raise self._reject("sensitiveData is not an object", order_id=order_id)

        reference = decoded.get("paymentReferenceId")
        challenge = decoded.get("challenge")
        if not reference or not challenge:
            raise self._reject("paymentReferenceId or challenge missing", order_id=order_id)
        self._log("nagad_initialized", order_id=order_id, payment_reference_id=reference)
        return NagadInitialized(payment_reference_id=str(reference), challenge=str(challenge))

    async def complete(
        self,
        *,
        payment_reference_id: str,
        challenge: str,
        order_id: str,
        amount: Decimal,
        callback_url: str,
        creds: NagadCredentials,
    ) -> NagadCompleted:
        payload = {
            "merchantId": creds.merchant_id,
            "orderId": order_id,
            "currencyCode": self._cfg.currency_code,
            "amount": format_amount(amount),
            "challenge": challenge,
        }
        sealed, signature = self._seal(payload, creds)
        resp = await self._call(
            "POST",
            f"{creds.base_url}/api/dfs/check-out/complete/{payment_reference_id}",
            headers=self._headers(creds),
            json={
                "sensitiveData": sealed,
                "signature": signature,
                "merchantCallbackURL": callback_url,
            },
            error=PaymentCreateError,
            operation="complete",
        )
        redirect = resp.get("callBackUrl")
        if not redirect:
            self._log("nagad_complete_rejected", order_id=order_id, status=resp.get("status"))
            raise PaymentCreateError(
                str(resp.get("message") or "Failed to complete Nagad payment initialization"),
                provider=self.provider,
                provider_code=resp.get("reason"),
                details={"order_id": order_id, "payment_reference_id": payment_reference_id},
            )
        self._log("nagad_completed", order_id=order_id, payment_reference_id=payment_reference_id)
        return NagadCompleted(redirect_url=str(redirect), status=resp.get("status"))

    async def create_payment(
        self,
        *,
        amount: Decimal,
        order_id: str,
        callback_url: str,
        creds: NagadCredentials,
    ) -> tuple[NagadInitialized, NagadCompleted]:
        initialized = await self.initialize(order_id, creds)
        completed = await self.complete(
            payment_reference_id=initialized.payment_reference_id,
            challenge=initialized.challenge,
            order_id=order_id,
            amount=amount,
            callback_url=callback_url,
            creds=creds,
        )
        return initialized, completed

    async def verify(self, payment_reference_id: str, creds: NagadCredentials) -> NagadVerified:
        resp = await self._call(
            "GET",
            f"{creds.base_url}/api/dfs/verify/payment/{payment_reference_id}",
            headers=self._headers(creds),
            error=VerificationError,
            operation="verify",
        )
        status = str(resp.get("status") or "")
        transaction_id = resp.get("issuerPaymentRefNo")
        if status != "Success" or not transaction_id:
            self._log(
                "nagad_verify_rejected",
                payment_reference_id=payment_reference_id,
                status=self._map_status(status) if status else None,
            )
            raise VerificationError(
                str(resp.get("message") or "Payment verification failed"),
                provider=self.provider,
                provider_code=status or None,
                details={"payment_reference_id": payment_reference_id},
            )
        self._log("nagad_verified", payment_reference_id=payment_reference_id, trx_id=transaction_id)
        return NagadVerified(
            payment_reference_id=str(resp.get("paymentRefId") or payment_reference_id),
            transaction_id=str(transaction_id),
            amount=None if resp.get("amount") is None else str(resp.get("amount")),
            order_id=None if resp.get("orderId") is None else str(resp.get("orderId")),
            status=status,
        )
