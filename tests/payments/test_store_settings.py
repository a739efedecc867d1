import json
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import pytest
from pydantic import ValidationError

from application.dtos.payments import (
    BkashCredentials,
    CallbackParams,
    CreatePaymentRequest,
    CreatePaymentResponse,
    StorePaymentSettings,
)
from domain.payment.entity import GatewayType
from domain.payment.exceptions import ConfigurationError


def test_legacy_aliases_and_payment_methods_flag(store_payment_settings):
    parsed = StorePaymentSettings.parse("store-1", store_payment_settings)

    bkash = parsed.require(GatewayType.BKASH)
    assert isinstance(bkash, BkashCredentials)
    assert bkash.app_key == "app-key-1"
    assert bkash.app_secret.get_secret_value() == "app-secret-1"
    assert bkash.enabled is True
    assert parsed.require(GatewayType.NAGAD).merchant_number == "01711428036"


def test_secrets_are_masked_in_repr(store_payment_settings):
    parsed = StorePaymentSettings.parse("store-1", store_payment_settings)

    assert "app-secret-1" not in repr(parsed)
    assert "sandbox-pass" not in str(parsed.gateways[GatewayType.BKASH])


def test_gateway_disabled_by_default():
    raw = {"bkash": {"base_url": "https://b.example", "app_key": "k", "app_secret": "s", "username": "u", "password": "p"}}
    parsed = StorePaymentSettings.parse("store-1", raw)

    with pytest.raises(ConfigurationError, match="not enabled"):
        parsed.require(GatewayType.BKASH)
    assert parsed.require(GatewayType.BKASH, allow_disabled=True).username == "u"


def test_missing_section_and_malformed_section():
    raw = {"bkash": {"base_url": "ftp://nope"}, "payment_methods": {"bkash": True}}
    parsed = StorePaymentSettings.parse("store-1", raw)

    with pytest.raises(ConfigurationError, match="invalid") as exc_info:
        parsed.require(GatewayType.BKASH)
    assert "base_url" in exc_info.value.details["reason"]
    with pytest.raises(ConfigurationError, match="not configured"):
        parsed.require(GatewayType.NAGAD)


def test_bad_json_blob_raises_configuration_error():
    with pytest.raises(ConfigurationError):
        StorePaymentSettings.parse("store-1", "{not json")
    with pytest.raises(ConfigurationError):
        StorePaymentSettings.parse("store-1", json.dumps(["bkash"]))


def test_empty_settings_configure_nothing():
    parsed = StorePaymentSettings.parse("store-1", None)
    assert parsed.gateways == {}


def test_settlement_callback_url_carries_routing_params():
    req = CreatePaymentRequest(
        storeId="store-1",
        orderId="ORD-1",
        amount=Decimal("500"),
        callbackURL="https://shop.example/api/payments/callback?ref=abc&orderId=stale",
        gateway="nagad",
    )

    url = req.settlement_callback_url()
    query = parse_qs(urlsplit(url).query)

    assert url.startswith("https://shop.example/api/payments/callback?")
    assert query == {"ref": ["abc"], "storeId": ["store-1"], "orderId": ["ORD-1"], "method": ["nagad"]}


@pytest.mark.parametrize("amount", ["0", "-5", "1.234"])
def test_create_request_rejects_bad_amounts(amount):
    with pytest.raises(ValidationError):
        CreatePaymentRequest(storeId="s", orderId="o", amount=amount, callbackURL="https://shop.example/cb")


def test_create_request_rejects_relative_callback():
    with pytest.raises(ValidationError):
        CreatePaymentRequest(storeId="s", orderId="o", amount="10", callbackURL="/callback")


def test_create_response_payload_uses_gateway_field_names():
    bkash = CreatePaymentResponse(gateway=GatewayType.BKASH, session_id="P1", redirect_url="https://b/P1").to_payload()
    nagad = CreatePaymentResponse(gateway=GatewayType.NAGAD, session_id="R1", redirect_url="https://n/R1").to_payload()

    assert bkash["paymentID"] == "P1" and bkash["bkashURL"] == "https://b/P1"
    assert nagad["paymentReferenceId"] == "R1" and nagad["nagadURL"] == "https://n/R1"
    assert bkash["redirectURL"] == "https://b/P1"


def test_callback_params_pick_session_token_per_gateway():
    bkash = CallbackParams.model_validate({"orderId": "ORD-1", "paymentID": "P1", "status": "success"})
    nagad = CallbackParams.model_validate({"orderId": "ORD-1", "method": "NAGAD", "payment_ref_id": "R1"})

    assert bkash.session_token == "P1"
    assert nagad.method == GatewayType.NAGAD
    assert nagad.session_token == "R1"


@pytest.mark.parametrize(
    "status,cancelled,failed",
    [("cancel", True, False), ("Aborted", True, False), ("failure", False, True), ("success", False, False), (None, False, False)],
)
def test_callback_status_classification(status, cancelled, failed):
    params = CallbackParams.model_validate({"orderId": "ORD-1", "status": status})

    assert params.is_cancelled is cancelled
    assert params.is_failure is failed
