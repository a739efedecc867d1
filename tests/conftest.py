"""Pytest bootstrap configuration.

Environment is set before any application module reads settings, then the
in-memory collaborators shared by service and route tests are defined.
"""
import base64
import json
import os
from dataclasses import replace
from decimal import Decimal
from typing import Optional

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DEBUG", "false")

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from application.dtos.payments import (
    BkashCredentials,
    ConfirmedPayment,
    NagadCredentials,
    PaymentRedirect,
)
from domain.payment.entity import (
    ORDER_STATUS_CANCELLED,
    GatewayType,
    OrderPaymentStatus,
    OrderSnapshot,
    PaymentDetails,
    PaymentSession,
)
from domain.payment.repository import PaymentSessionRepository


STORE_ID = "store-1"
ORDER_ID = "ORD-1"


# ---------------------------------------------------------------------------
# Keys and credentials
# ---------------------------------------------------------------------------


def _pem_private(key: rsa.RSAPrivateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def _bare_public(key: rsa.RSAPublicKey) -> str:
    # Nagad hands out public keys as base64 DER without PEM armour
    der = key.public_bytes(serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo)
    return base64.b64encode(der).decode()


@pytest.fixture(scope="session")
def rsa_keys():
    merchant = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    gateway = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return {
        "merchant_private": merchant,
        "merchant_private_pem": _pem_private(merchant),
        "merchant_public": merchant.public_key(),
        "gateway_private": gateway,
        "gateway_public": gateway.public_key(),
        "gateway_public_b64": _bare_public(gateway.public_key()),
    }


@pytest.fixture
def bkash_creds() -> BkashCredentials:
    return BkashCredentials(
        base_url="https://tokenized.sandbox.bka.sh/v1.2.0-beta/",
        app_key="app-key-1",
        app_secret="app-secret-1",
        username="sandbox-user",
        password="sandbox-pass",
        enabled=True,
    )


@pytest.fixture
def nagad_creds(rsa_keys) -> NagadCredentials:
    return NagadCredentials(
        base_url="https://sandbox.mynagad.com:10080/remote-payment-gateway-1.0",
        merchant_id="683002007104225",
        merchant_number="01711428036",
        merchant_private_key=rsa_keys["merchant_private_pem"],
        gateway_public_key=rsa_keys["gateway_public_b64"],
        enabled=True,
    )


@pytest.fixture
def store_payment_settings() -> str:
    """Legacy payment_settings blob as the dashboard stores it (JSON text)."""
    return json.dumps({
        "bkash": {
            "base_url": "https://tokenized.sandbox.bka.sh/v1.2.0-beta",
            "key": "app-key-1",
            "secret": "app-secret-1",
            "username": "sandbox-user",
            "password": "sandbox-pass",
        },
        "nagad": {
            "base_url": "https://sandbox.mynagad.com:10080/remote-payment-gateway-1.0",
            "merchant_id": "683002007104225",
            "merchant_number": "01711428036",
            "private_key": "merchant-private",
            "public_key": "gateway-public",
        },
        "payment_methods": {"bkash": True, "nagad": True, "cod": True},
    })


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeCredentialLookup:
    def __init__(self, stores: Optional[dict] = None):
        self.stores = dict(stores or {})

    async def get_payment_settings(self, store_id: str):
        return self.stores.get(store_id)


class FakeLedger:
    def __init__(self, *orders: OrderSnapshot):
        self.orders = {o.id: o for o in orders}
        self.paid_writes = 0
        self.failures: list[tuple[str, str, bool]] = []

    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        return self.orders.get(order_id)

    async def mark_pending(self, order_id: str) -> None:
        order = self.orders.get(order_id)
        if order is not None and not order.is_paid:
            self.orders[order_id] = replace(order, payment_status=OrderPaymentStatus.PENDING)

    async def mark_paid(self, order_id: str, details: PaymentDetails) -> bool:
        order = self.orders[order_id]
        if order.is_paid:
            return False
        self.orders[order_id] = replace(
            order,
            payment_status=OrderPaymentStatus.PAID,
            payment_details=details.to_record(),
        )
        self.paid_writes += 1
        return True

    async def mark_failed(self, order_id: str, reason: str, *, cancel: bool = False) -> None:
        self.failures.append((order_id, reason, cancel))
        order = self.orders.get(order_id)
        if order is None or order.is_paid:
            return
        self.orders[order_id] = replace(
            order,
            payment_status=OrderPaymentStatus.FAILED,
            status=ORDER_STATUS_CANCELLED if cancel else order.status,
        )


class InMemorySessionRepository(PaymentSessionRepository):
    def __init__(self):
        self.rows: dict[int, PaymentSession] = {}

    async def create(self, session: PaymentSession) -> PaymentSession:
        session.id = len(self.rows) + 1
        self.rows[session.id] = replace(session)
        return replace(session)

    async def get_by_provider_ref(self, gateway, provider_session_id):
        for row in self.rows.values():
            if row.gateway == GatewayType(gateway) and row.provider_session_id == provider_session_id:
                return replace(row)
        return None

    async def list_by_order(self, order_id: str):
        return [replace(r) for r in sorted(self.rows.values(), key=lambda r: r.id) if r.order_id == order_id]

    async def update(self, session: PaymentSession) -> PaymentSession:
        self.rows[session.id] = replace(session)
        return replace(session)


class RecordingCart:
    def __init__(self):
        self.cleared: list[tuple[str, str]] = []

    async def clear(self, store_id: str, order_id: str) -> None:
        self.cleared.append((store_id, order_id))


class FakeGateway:
    """Stands in for the registry; records every provider-facing call."""

    def __init__(self):
        self.create_calls: list[dict] = []
        self.confirm_calls: list[dict] = []
        self.error: Optional[Exception] = None
        self.confirmed: Optional[ConfirmedPayment] = None

    async def create_payment(self, *, config, order_id, amount, callback_url) -> PaymentRedirect:
        self.create_calls.append(
            {"config": config, "order_id": order_id, "amount": amount, "callback_url": callback_url}
        )
        if self.error is not None:
            raise self.error
        gateway = GatewayType(config.gateway)
        return PaymentRedirect(
            gateway=gateway,
            session_id="P1",
            redirect_url=f"https://checkout.example/{gateway.value}/P1",
        )

    async def confirm_payment(self, *, config, session_id) -> ConfirmedPayment:
        self.confirm_calls.append({"config": config, "session_id": session_id})
        if self.error is not None:
            raise self.error
        if self.confirmed is not None:
            return self.confirmed
        return ConfirmedPayment(
            gateway=GatewayType(config.gateway),
            transaction_id="T1",
            provider_payment_id=session_id,
            amount=Decimal("500"),
            raw_amount="500",
            order_id=ORDER_ID,
        )

    async def aclose(self) -> None:
        return None


class FakeUnitOfWork:
    def __init__(self, stores, orders, payment_sessions):
        self.stores = stores
        self.orders = orders
        self.payment_sessions = payment_sessions
        self.commits = 0
        self.rollbacks = 0
        self.commit_error: Optional[Exception] = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc:
            self.rollbacks += 1
        elif self.commit_error is not None:
            self.rollbacks += 1
            raise self.commit_error
        else:
            self.commits += 1


def make_order(**overrides) -> OrderSnapshot:
    data = dict(
        id=ORDER_ID,
        store_id=STORE_ID,
        total=Decimal("500"),
        currency="BDT",
        payment_status=OrderPaymentStatus.UNPAID,
        status="pending",
    )
    data.update(overrides)
    return OrderSnapshot(**data)


@pytest.fixture
def order_factory():
    return make_order


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(make_order())


@pytest.fixture
def credentials(store_payment_settings) -> FakeCredentialLookup:
    return FakeCredentialLookup({STORE_ID: store_payment_settings})


@pytest.fixture
def sessions() -> InMemorySessionRepository:
    return InMemorySessionRepository()


@pytest.fixture
def cart() -> RecordingCart:
    return RecordingCart()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def uow(credentials, ledger, sessions) -> FakeUnitOfWork:
    return FakeUnitOfWork(credentials, ledger, sessions)
