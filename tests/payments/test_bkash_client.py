import json
from decimal import Decimal

import httpx
import pytest

from domain.payment.exceptions import GatewayAuthError, PaymentCreateError, PaymentExecuteError
from infrastructure.external.payments.bkash_client import BkashClient
from infrastructure.external.payments.token_cache import TokenCache


class FakeBkash:
    """Minimal tokenized-checkout endpoint backed by httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.grants = 0
        self.reject_next_with_401 = False
        self.execute_response = {
            "statusCode": "0000",
            "paymentID": "P1",
            "trxID": "T1",
            "transactionStatus": "Completed",
            "amount": "500.00",
            "currency": "BDT",
            "merchantInvoiceNumber": "ORD-1",
        }
        self.status_response = {"statusCode": "0000", "paymentID": "P1", "transactionStatus": "Initiated"}

    def paths(self) -> list[str]:
        return [r.url.path.rsplit("/checkout", 1)[-1] for r in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/token/grant"):
            self.grants += 1
            return httpx.Response(200, json={
                "statusCode": "0000",
                "id_token": f"id-token-{self.grants}",
                "token_type": "Bearer",
                "expires_in": 3600,
            })
        if self.reject_next_with_401:
            self.reject_next_with_401 = False
            return httpx.Response(401, json={"message": "Unauthorized"})
        if path.endswith("/create"):
            return httpx.Response(200, json={
                "statusCode": "0000",
                "paymentID": "P1",
                "bkashURL": "https://sandbox.payment.bkash.com/?paymentId=P1",
                "amount": "500.00",
                "merchantInvoiceNumber": "ORD-1",
            })
        if path.endswith("/execute"):
            return httpx.Response(200, json=self.execute_response)
        if path.endswith("/payment/status"):
            return httpx.Response(200, json=self.status_response)
        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def fake_bkash():
    return FakeBkash()


@pytest.fixture
def bkash_client(fake_bkash):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_bkash))
    return BkashClient(TokenCache(safety_margin=0), http_client=http)


@pytest.mark.asyncio
async def test_grant_sends_account_headers_and_app_credentials(bkash_client, fake_bkash, bkash_creds):
    token = await bkash_client.get_token(bkash_creds)

    grant = fake_bkash.requests[0]
    assert token == "id-token-1"
    assert grant.headers["username"] == "sandbox-user"
    assert grant.headers["password"] == "sandbox-pass"
    assert json.loads(grant.content) == {"app_key": "app-key-1", "app_secret": "app-secret-1"}
    assert str(grant.url) == "https://tokenized.sandbox.bka.sh/v1.2.0-beta/tokenized/checkout/token/grant"


@pytest.mark.asyncio
async def test_create_payment_body_and_token_reuse(bkash_client, fake_bkash, bkash_creds):
    created = await bkash_client.create_payment(
        amount=Decimal("500"),
        order_id="ORD-1",
        callback_url="https://shop.example/cb?storeId=store-1&orderId=ORD-1&method=bkash",
        creds=bkash_creds,
    )
    await bkash_client.execute_payment("P1", bkash_creds)

    assert created.payment_id == "P1"
    assert created.bkash_url.endswith("paymentId=P1")
    assert fake_bkash.grants == 1
    create_req = fake_bkash.requests[1]
    assert create_req.headers["Authorization"] == "id-token-1"
    assert create_req.headers["X-APP-Key"] == "app-key-1"
    body = json.loads(create_req.content)
    assert body["amount"] == "500.00"
    assert body["intent"] == "sale"
    assert body["currency"] == "BDT"
    assert body["merchantInvoiceNumber"] == "ORD-1"
    assert body["callbackURL"].startswith("https://shop.example/cb")


@pytest.mark.asyncio
async def test_execute_returns_transaction(bkash_client, bkash_creds):
    executed = await bkash_client.execute_payment("P1", bkash_creds)

    assert executed.transaction_id == "T1"
    assert executed.amount == "500.00"
    assert executed.merchant_invoice_number == "ORD-1"


@pytest.mark.asyncio
async def test_execute_not_completed_raises(bkash_client, fake_bkash, bkash_creds):
    fake_bkash.execute_response = {
        "statusCode": "2056",
        "statusMessage": "Invalid Payment State",
        "paymentID": "P1",
        "transactionStatus": "Initiated",
    }

    with pytest.raises(PaymentExecuteError) as exc_info:
        await bkash_client.execute_payment("P1", bkash_creds)

    assert exc_info.value.provider_code == "2056"
    assert exc_info.value.message == "Invalid Payment State"


@pytest.mark.asyncio
async def test_unauthorized_call_refreshes_token_once(bkash_client, fake_bkash, bkash_creds):
    await bkash_client.get_token(bkash_creds)
    fake_bkash.reject_next_with_401 = True

    executed = await bkash_client.execute_payment("P1", bkash_creds)

    assert executed.transaction_id == "T1"
    assert fake_bkash.grants == 2
    assert fake_bkash.requests[-1].headers["Authorization"] == "id-token-2"


@pytest.mark.asyncio
async def test_rejected_grant_raises_auth_error(bkash_creds):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"statusCode": "2001", "statusMessage": "Invalid App Key"})

    client = BkashClient(TokenCache(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(GatewayAuthError) as exc_info:
        await client.get_token(bkash_creds)

    assert exc_info.value.retryable is True
    assert exc_info.value.provider == "bkash"


@pytest.mark.asyncio
async def test_create_without_redirect_url_raises(bkash_creds):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token/grant"):
            return httpx.Response(200, json={"statusCode": "0000", "id_token": "tok"})
        return httpx.Response(200, json={"statusCode": "0000", "paymentID": "P1"})

    client = BkashClient(TokenCache(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(PaymentCreateError):
        await client.create_payment(
            amount=Decimal("10"), order_id="ORD-9", callback_url="https://shop.example/cb", creds=bkash_creds,
        )


@pytest.mark.asyncio
async def test_non_json_response_becomes_gateway_error(bkash_creds):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    client = BkashClient(TokenCache(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    with pytest.raises(GatewayAuthError) as exc_info:
        await client.get_token(bkash_creds)

    assert exc_info.value.details["http_status"] == 502


@pytest.mark.asyncio
async def test_stores_with_different_credentials_get_separate_tokens(bkash_client, fake_bkash, bkash_creds):
    other = bkash_creds.model_copy(update={"app_key": "app-key-2"})

    first = await bkash_client.get_token(bkash_creds)
    second = await bkash_client.get_token(other)

    assert first != second
    assert fake_bkash.grants == 2


@pytest.mark.asyncio
async def test_connect_errors_are_retried(bkash_creds):
    attempts = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["n"] += 1
        if attempts["n"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"statusCode": "0000", "id_token": "tok"})

    client = BkashClient(TokenCache(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    assert await client.get_token(bkash_creds) == "tok"
    assert attempts["n"] == 2


@pytest.mark.asyncio
async def test_registry_confirms_bkash_payment(fake_bkash, bkash_creds):
    from infrastructure.external.payments import PaymentGatewayRegistry

    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_bkash))
    registry = PaymentGatewayRegistry(TokenCache(), http_client=http)

    confirmed = await registry.confirm_payment(config=bkash_creds, session_id="P1")

    assert confirmed.transaction_id == "T1"
    assert confirmed.amount == Decimal("500.00")
    assert confirmed.raw_amount == "500.00"
    assert confirmed.order_id == "ORD-1"
    await registry.aclose()
    assert not http.is_closed


@pytest.mark.asyncio
async def test_query_payment_reports_provider_state(bkash_creds):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token/grant"):
            return httpx.Response(200, json={"statusCode": "0000", "id_token": "tok"})
        assert request.url.path.endswith("/payment/status")
        return httpx.Response(200, json={
            "statusCode": "0000",
            "paymentID": "P1",
            "transactionStatus": "Initiated",
            "amount": "500",
        })

    client = BkashClient(TokenCache(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

    queried = await client.query_payment("P1", bkash_creds)

    assert queried.transaction_status == "Initiated"
    assert queried.transaction_id == ""
    assert client._map_status(queried.transaction_status) == "created"


@pytest.mark.asyncio
async def test_rejected_execute_recovers_completed_payment(bkash_client, fake_bkash, bkash_creds):
    # execute already ran once (our side timed out), bKash refuses to run it again
    fake_bkash.execute_response = {"statusCode": "2117", "statusMessage": "Payment execution already been called before"}
    fake_bkash.status_response = {
        "statusCode": "0000",
        "paymentID": "P1",
        "trxID": "T1",
        "transactionStatus": "Completed",
        "amount": "500.00",
        "merchantInvoiceNumber": "ORD-1",
    }

    recovered = await bkash_client.execute_or_query("P1", bkash_creds)

    assert recovered.transaction_id == "T1"
    assert recovered.amount == "500.00"
    assert fake_bkash.paths()[-2:] == ["/execute", "/payment/status"]


@pytest.mark.asyncio
async def test_rejected_execute_stands_when_query_is_not_completed(bkash_client, fake_bkash, bkash_creds):
    fake_bkash.execute_response = {"statusCode": "2056", "statusMessage": "Invalid Payment State", "paymentID": "P1"}

    with pytest.raises(PaymentExecuteError) as exc_info:
        await bkash_client.execute_or_query("P1", bkash_creds)

    assert exc_info.value.provider_code == "2056"
    assert fake_bkash.paths()[-1] == "/payment/status"


@pytest.mark.asyncio
async def test_registry_confirm_uses_status_query_fallback(fake_bkash, bkash_creds):
    from infrastructure.external.payments import PaymentGatewayRegistry

    fake_bkash.execute_response = {"statusCode": "2117", "statusMessage": "Already executed"}
    fake_bkash.status_response = {
        "statusCode": "0000",
        "paymentID": "P1",
        "trxID": "T9",
        "transactionStatus": "Completed",
        "amount": "500",
        "merchantInvoiceNumber": "ORD-1",
    }
    registry = PaymentGatewayRegistry(TokenCache(), http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_bkash)))

    confirmed = await registry.confirm_payment(config=bkash_creds, session_id="P1")

    assert confirmed.transaction_id == "T9"
    assert confirmed.amount == Decimal("500")
    assert confirmed.order_id == "ORD-1"
