"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers subclass and implement provider-specific framing.
"""
from __future__ import annotations

from typing import Any, Optional, Type

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.exceptions import PaymentGatewayError
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

# Only retry failures where the request never reached the provider; a read
# timeout on create/execute may already have taken effect upstream.
RETRYABLE_TRANSPORT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


class ProviderResponse:
    __slots__ = ("status_code", "data")

    def __init__(self, status_code: int, data: dict[str, Any]):
        self.status_code = status_code
        self.data = data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or payment_settings.timeouts.model_dump()
        self._retry_cfg = retry or {"max": payment_settings.retry.max, "base": payment_settings.retry.base_backoff}
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            pool=self._timeouts_cfg["total"],
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts)
        return self._client

    async def aclose(self) -> None:
        """Close underlying HTTP client if we created it."""
        if self._client is not None and self._owns_client:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _send(self, method: str, url: str, *, headers: dict[str, str], json: Any = None) -> httpx.Response:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(RETRYABLE_TRANSPORT_ERRORS),
            reraise=True,
        ):
            with attempt:
                return await self.client.request(method, url, headers=headers, json=json)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _call(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        json: Any = None,
        error: Type[PaymentGatewayError],
        operation: str,
    ) -> ProviderResponse:
        """Issue one provider call; transport failures and non-JSON bodies become `error`."""
        try:
            response = await self._send(method, url, headers=headers, json=json)
        except httpx.TimeoutException as exc:
            logger.warning("gateway_timeout", provider=self.provider, operation=operation)
            raise error(
                f"{self.provider} {operation} timed out",
                provider=self.provider,
                details={"operation": operation},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway_transport_error", provider=self.provider, operation=operation, error=str(exc))
            raise error(
                f"{self.provider} {operation} failed: {exc.__class__.__name__}",
                provider=self.provider,
                details={"operation": operation},
            ) from exc

        try:
            data = response.json()
        except ValueError as exc:
            logger.warning(
                "gateway_invalid_response",
                provider=self.provider,
                operation=operation,
                status_code=response.status_code,
            )
            raise error(
                f"{self.provider} {operation} returned a non-JSON response",
                provider=self.provider,
                details={"operation": operation, "http_status": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise error(
                f"{self.provider} {operation} returned an unexpected payload",
                provider=self.provider,
                details={"operation": operation, "http_status": response.status_code},
            )
        return ProviderResponse(response.status_code, data)

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
