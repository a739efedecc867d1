"""
bKash tokenized checkout adapter.

Flow: token grant -> create (customer redirected to bkashURL) -> execute on
callback, with a status query when execute is rejected. Every authenticated
call carries the account-level username and password headers, the app key
and the id_token from the shared TokenCache.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Type

import httpx

from application.dtos.payments import (
    BkashCredentials,
    BkashPaymentCreated,
    BkashPaymentExecuted,
)
from core.settings import payment_settings
from domain.payment.exceptions import (
    GatewayAuthError,
    PaymentCreateError,
    PaymentExecuteError,
    PaymentGatewayError,
    VerificationError,
)
from domain.payment.money import format_amount
from infrastructure.external.payments.base import BasePaymentClient, ProviderResponse
from infrastructure.external.payments.token_cache import TokenCache, credential_key
from shared.codes.payment_codes import BKASH_SUCCESS_CODE


class BkashClient(BasePaymentClient):
    provider = "bkash"

    def __init__(
        self,
        token_cache: TokenCache,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(
            timeouts=payment_settings.timeouts.model_dump(),
            retry={"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff},
            http_client=http_client,
        )
        self._tokens = token_cache
        self._cfg = payment_settings.bkash

    @staticmethod
    def cache_key(creds: BkashCredentials) -> str:
        return credential_key(
            creds.base_url,
            creds.app_key,
            creds.app_secret.get_secret_value(),
            creds.username,
        )

    @staticmethod
    def _account_headers(creds: BkashCredentials) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "username": creds.username,
            "password": creds.password.get_secret_value(),
        }

    def _auth_headers(self, creds: BkashCredentials, token: str) -> dict[str, str]:
        headers = self._account_headers(creds)
        headers["Authorization"] = token
        headers["X-APP-Key"] = creds.app_key
        return headers

    @staticmethod
    def _status_message(resp: ProviderResponse, fallback: str) -> str:
        return str(resp.get("statusMessage") or resp.get("errorMessage") or resp.get("message") or fallback)

    @staticmethod
    def _status_code(resp: ProviderResponse) -> Optional[str]:
        code = resp.get("statusCode") or resp.get("errorCode")
        return None if code is None else str(code)

    async def grant_token(self, creds: BkashCredentials) -> tuple[str, float]:
        resp = await self._call(
            "POST",
            f"{creds.base_url}/tokenized/checkout/token/grant",
            headers=self._account_headers(creds),
            json={
                "app_key": creds.app_key,
                "app_secret": creds.app_secret.get_secret_value(),
            },
            error=GatewayAuthError,
            operation="token_grant",
        )
        token = resp.get("id_token")
        if self._status_code(resp) != BKASH_SUCCESS_CODE or not token:
            self._log("bkash_token_grant_rejected", status_code=self._status_code(resp), http_status=resp.status_code)
            raise GatewayAuthError(
                self._status_message(resp, "Failed to get bKash token"),
                provider=self.provider,
                provider_code=self._status_code(resp),
            )
        try:
            lifetime = float(resp.get("expires_in") or self._cfg.token_lifetime_seconds)
        except (TypeError, ValueError):
            lifetime = float(self._cfg.token_lifetime_seconds)
        self._log("bkash_token_granted", lifetime=lifetime)
        return str(token), lifetime

    async def get_token(self, creds: BkashCredentials) -> str:
        return await self._tokens.get_token(self.cache_key(creds), lambda: self.grant_token(creds))

    async def _authorized_call(
        self,
        path: str,
        body: dict,
        creds: BkashCredentials,
        *,
        error: Type[PaymentGatewayError],
        operation: str,
    ) -> ProviderResponse:
        """POST with a cached token; on 401 drop the token and retry once with a fresh grant."""
        key = self.cache_key(creds)
        url = f"{creds.base_url}{path}"
        token = await self.get_token(creds)
        resp = await self._call("POST", url, headers=self._auth_headers(creds, token), json=body, error=error, operation=operation)
        if resp.status_code == httpx.codes.UNAUTHORIZED:
            self._log("bkash_token_rejected", operation=operation)
            self._tokens.invalidate(key, token)
            token = await self.get_token(creds)
            resp = await self._call("POST", url, headers=self._auth_headers(creds, token), json=body, error=error, operation=operation)
        return resp

    async def create_payment(
        self,
        *,
        amount: Decimal,
        order_id: str,
        callback_url: str,
        creds: BkashCredentials,
    ) -> BkashPaymentCreated:
        body = {
            "mode": self._cfg.mode,
            "payerReference": order_id,
            "callbackURL": callback_url,
            "amount": format_amount(amount, self._cfg.currency),
            "currency": self._cfg.currency,
            "intent": "sale",
            "merchantInvoiceNumber": order_id,
        }
        resp = await self._authorized_call(
            "/tokenized/checkout/create", body, creds,
            error=PaymentCreateError, operation="create",
        )
        payment_id = resp.get("paymentID")
        bkash_url = resp.get("bkashURL")
        if self._status_code(resp) != BKASH_SUCCESS_CODE or not payment_id or not bkash_url:
            self._log("bkash_create_rejected", order_id=order_id, status_code=self._status_code(resp))
            raise PaymentCreateError(
                self._status_message(resp, "Failed to create bKash payment"),
                provider=self.provider,
                provider_code=self._status_code(resp),
                details={"order_id": order_id},
            )
        self._log("bkash_payment_created", order_id=order_id, payment_id=payment_id)
        return BkashPaymentCreated(
            payment_id=str(payment_id),
            bkash_url=str(bkash_url),
            amount=None if resp.get("amount") is None else str(resp.get("amount")),
            merchant_invoice_number=resp.get("merchantInvoiceNumber"),
        )

    def _parse_executed(self, resp: ProviderResponse, payment_id: str) -> BkashPaymentExecuted:
        return BkashPaymentExecuted(
            payment_id=str(resp.get("paymentID") or payment_id),
            transaction_id=str(resp.get("trxID") or ""),
            transaction_status=str(resp.get("transactionStatus") or ""),
            amount=None if resp.get("amount") is None else str(resp.get("amount")),
            currency=resp.get("currency"),
            merchant_invoice_number=resp.get("merchantInvoiceNumber"),
            payer_reference=resp.get("payerReference"),
        )

    async def execute_payment(self, payment_id: str, creds: BkashCredentials) -> BkashPaymentExecuted:
        resp = await self._authorized_call(
            "/tokenized/checkout/execute", {"paymentID": payment_id}, creds,
            error=PaymentExecuteError, operation="execute",
        )
        executed = self._parse_executed(resp, payment_id)
        if (
            self._status_code(resp) != BKASH_SUCCESS_CODE
            or executed.transaction_status != "Completed"
            or not executed.transaction_id
        ):
            self._log(
                "bkash_execute_rejected",
                payment_id=payment_id,
                status_code=self._status_code(resp),
                transaction_status=executed.transaction_status or None,
            )
            raise PaymentExecuteError(
                self._status_message(resp, "Payment execution failed"),
                provider=self.provider,
                provider_code=self._status_code(resp),
                details={"payment_id": payment_id, "transaction_status": executed.transaction_status or None},
            )
        self._log("bkash_payment_executed", payment_id=payment_id, trx_id=executed.transaction_id)
        return executed

    async def execute_or_query(self, payment_id: str, creds: BkashCredentials) -> BkashPaymentExecuted:
        """
        Execute, falling back to a status query when execute is rejected.

        bKash refuses to execute a payment twice, so a retry after an execute
        that timed out on our side only succeeds through the query. Only a
        `Completed` query with a transaction id counts; otherwise the original
        execute error stands.
        """
        try:
            return await self.execute_payment(payment_id, creds)
        except PaymentExecuteError as exc:
            try:
                queried = await self.query_payment(payment_id, creds)
            except PaymentGatewayError:
                raise exc
            if queried.transaction_status != "Completed" or not queried.transaction_id:
                raise exc
            self._log("bkash_execute_recovered", payment_id=payment_id, trx_id=queried.transaction_id)
            return queried

    async def query_payment(self, payment_id: str, creds: BkashCredentials) -> BkashPaymentExecuted:
        """Status lookup used to recover a payment whose execute was rejected."""
        resp = await self._authorized_call(
            "/tokenized/checkout/payment/status", {"paymentID": payment_id}, creds,
            error=VerificationError, operation="query",
        )
        if self._status_code(resp) != BKASH_SUCCESS_CODE:
            raise VerificationError(
                self._status_message(resp, "Payment status query failed"),
                provider=self.provider,
                provider_code=self._status_code(resp),
                details={"payment_id": payment_id},
            )
        queried = self._parse_executed(resp, payment_id)
        self._log(
            "bkash_payment_queried",
            payment_id=payment_id,
            status=self._map_status(queried.transaction_status),
        )
        return queried
