"""
Payment DTOs (Pydantic v2) used at application boundaries.

Store credentials arrive as an ad hoc `payment_settings` JSON blob (sometimes a
string, sometimes already decoded). They are parsed once here into a tagged
union and validated before any network call is made.
"""
from __future__ import annotations

import json
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.types import condecimal
from typing import Literal

from domain.payment.entity import GatewayType
from domain.payment.exceptions import ConfigurationError
from shared.codes.payment_codes import CALLBACK_CANCEL_STATUSES, CALLBACK_FAILURE_STATUSES


# ---------------------------------------------------------------------------
# Store gateway configuration
# ---------------------------------------------------------------------------


class _GatewayCredentials(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    base_url: str
    enabled: bool = False

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, v: str) -> str:
        v = (v or "").strip().rstrip("/")
        if not v.startswith(("https://", "http://")):
            raise ValueError("base_url must be an http(s) URL")
        return v


class BkashCredentials(_GatewayCredentials):
    gateway: Literal["bkash"] = "bkash"
    app_key: str = Field(validation_alias=AliasChoices("app_key", "key"), min_length=1)
    app_secret: SecretStr = Field(validation_alias=AliasChoices("app_secret", "secret"))
    username: str = Field(min_length=1)
    password: SecretStr


class NagadCredentials(_GatewayCredentials):
    gateway: Literal["nagad"] = "nagad"
    merchant_id: str = Field(min_length=1)
    merchant_number: str = Field(validation_alias=AliasChoices("merchant_number", "account_number"), min_length=1)
    merchant_private_key: SecretStr = Field(
        validation_alias=AliasChoices("merchant_private_key", "private_key"),
    )
    gateway_public_key: str = Field(
        validation_alias=AliasChoices("gateway_public_key", "public_key"),
        min_length=1,
    )
    api_version: str = "v-0.2.0"


GatewayConfig = Annotated[Union[BkashCredentials, NagadCredentials], Field(discriminator="gateway")]
_gateway_config_adapter: TypeAdapter = TypeAdapter(GatewayConfig)


class StorePaymentSettings(BaseModel):
    """Validated per-store gateway configuration."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    store_id: str
    gateways: dict[GatewayType, Union[BkashCredentials, NagadCredentials]] = Field(default_factory=dict)
    # gateway -> validation error for sections present but malformed
    errors: dict[GatewayType, str] = Field(default_factory=dict)

    @classmethod
    def parse(cls, store_id: str, raw: Any) -> "StorePaymentSettings":
        if raw is None or raw == "":
            return cls(store_id=store_id)
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw)
            except ValueError as exc:
                raise ConfigurationError(
                    "Store payment settings are not valid JSON",
                    details={"store_id": store_id},
                ) from exc
        if not isinstance(raw, dict):
            raise ConfigurationError(
                "Store payment settings must be an object",
                details={"store_id": store_id},
            )

        methods = raw.get("payment_methods") or {}
        gateways: dict[GatewayType, Union[BkashCredentials, NagadCredentials]] = {}
        errors: dict[GatewayType, str] = {}
        for gateway in GatewayType:
            section = raw.get(gateway.value)
            if section is None:
                continue
            if not isinstance(section, dict):
                errors[gateway] = "section must be an object"
                continue
            data = dict(section)
            data["gateway"] = gateway.value
            if gateway.value in methods and "enabled" not in data:
                data["enabled"] = bool(methods[gateway.value])
            try:
                gateways[gateway] = _gateway_config_adapter.validate_python(data)
            except ValidationError as exc:
                errors[gateway] = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
                )
        return cls(store_id=store_id, gateways=gateways, errors=errors)

    def require(self, gateway: GatewayType, *, allow_disabled: bool = False):
        """Return the credentials for `gateway` or raise ConfigurationError.

        Settlement of an already-created payment passes allow_disabled=True so a
        merchant switching a gateway off cannot strand a payment the customer made.
        """
        gateway = GatewayType(gateway)
        if gateway in self.errors:
            raise ConfigurationError(
                f"{gateway.value} credentials are invalid",
                provider=gateway.value,
                details={"store_id": self.store_id, "reason": self.errors[gateway]},
            )
        config = self.gateways.get(gateway)
        if config is None:
            raise ConfigurationError(
                f"{gateway.value} is not configured for this store",
                provider=gateway.value,
                details={"store_id": self.store_id},
            )
        if not config.enabled and not allow_disabled:
            raise ConfigurationError(
                f"{gateway.value} is not enabled for this store",
                provider=gateway.value,
                details={"store_id": self.store_id},
            )
        return config


# ---------------------------------------------------------------------------
# Inbound requests / responses
# ---------------------------------------------------------------------------


class CreatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_id: str = Field(alias="storeId", min_length=1)
    order_id: str = Field(alias="orderId", min_length=1)
    amount: condecimal(gt=0, max_digits=15, decimal_places=2)  # type: ignore[valid-type]
    callback_url: str = Field(alias="callbackURL", min_length=1)
    gateway: GatewayType = Field(default=GatewayType.BKASH, alias="gateway")

    @field_validator("callback_url")
    @classmethod
    def _validate_callback_url(cls, v: str) -> str:
        parts = urlsplit(v)
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ValueError("callbackURL must be an absolute http(s) URL")
        return v

    def settlement_callback_url(self) -> str:
        """Callback URL carrying storeId/orderId/method so the redirect is self-describing."""
        parts = urlsplit(self.callback_url)
        query = [
            (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if k not in {"storeId", "orderId", "method"}
        ]
        query += [("storeId", self.store_id), ("orderId", self.order_id), ("method", self.gateway.value)]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class CreatePaymentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    gateway: GatewayType
    session_id: str = Field(serialization_alias="sessionId")
    redirect_url: str = Field(serialization_alias="redirectURL")

    def to_payload(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        if self.gateway == GatewayType.BKASH:
            data.update(paymentID=self.session_id, bkashURL=self.redirect_url)
        else:
            data.update(paymentReferenceId=self.session_id, nagadURL=self.redirect_url)
        return data


class ConfirmPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    store_id: str = Field(alias="storeId", min_length=1)
    session_token: str = Field(
        validation_alias=AliasChoices("sessionToken", "paymentID", "paymentReferenceId", "session_token"),
        min_length=1,
    )
    gateway: GatewayType = GatewayType.BKASH


class ConfirmPaymentResponse(BaseModel):
    success: bool = True
    transaction_id: str = Field(serialization_alias="transactionId")
    amount: Optional[str] = None
    provider_payment_id: Optional[str] = Field(default=None, serialization_alias="providerPaymentId")


# ---------------------------------------------------------------------------
# Gateway port results
# ---------------------------------------------------------------------------


class PaymentRedirect(BaseModel):
    gateway: GatewayType
    session_id: str
    redirect_url: str


class ConfirmedPayment(BaseModel):
    gateway: GatewayType
    transaction_id: str
    provider_payment_id: str
    amount: Optional[Decimal] = None  # None when the provider echoed something unparsable
    raw_amount: Optional[str] = None
    order_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------


class BkashPaymentCreated(BaseModel):
    payment_id: str
    bkash_url: str
    amount: Optional[str] = None
    merchant_invoice_number: Optional[str] = None


class BkashPaymentExecuted(BaseModel):
    payment_id: str
    transaction_id: str
    transaction_status: str
    amount: Optional[str] = None
    currency: Optional[str] = None
    merchant_invoice_number: Optional[str] = None
    payer_reference: Optional[str] = None


class NagadInitialized(BaseModel):
    payment_reference_id: str
    challenge: str


class NagadCompleted(BaseModel):
    redirect_url: str
    status: Optional[str] = None


class NagadVerified(BaseModel):
    payment_reference_id: str
    transaction_id: str
    amount: Optional[str] = None
    order_id: Optional[str] = None
    status: str


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


class CallbackParams(BaseModel):
    """Query string the provider echoes back on redirect."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    store_id: Optional[str] = Field(default=None, alias="storeId")
    order_id: str = Field(alias="orderId", min_length=1)
    method: GatewayType = GatewayType.BKASH
    payment_id: Optional[str] = Field(default=None, alias="paymentID")
    payment_ref_id: Optional[str] = Field(default=None, alias="payment_ref_id")
    status: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def _lower_method(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @property
    def session_token(self) -> Optional[str]:
        if self.method == GatewayType.NAGAD:
            return self.payment_ref_id
        return self.payment_id

    @property
    def normalized_status(self) -> str:
        return (self.status or "").strip().lower()

    @property
    def is_cancelled(self) -> bool:
        return self.normalized_status in CALLBACK_CANCEL_STATUSES

    @property
    def is_failure(self) -> bool:
        return self.normalized_status in CALLBACK_FAILURE_STATUSES


class SettlementOutcome(str, Enum):
    SETTLED = "settled"
    ALREADY_SETTLED = "already_settled"
    CANCELLED = "cancelled"
    FAILED = "failed"


class SettlementResult(BaseModel):
    success: bool
    outcome: SettlementOutcome
    order_id: str = Field(serialization_alias="orderId")
    store_id: Optional[str] = Field(default=None, exclude=True)
    gateway: GatewayType
    transaction_id: Optional[str] = Field(default=None, serialization_alias="transactionId")
    amount: Optional[str] = None
    reason: Optional[str] = Field(default=None, serialization_alias="error")
    error_type: Optional[str] = Field(default=None, serialization_alias="errorType")
