from datetime import datetime, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import GatewayType, PaymentDetails, PaymentSession, PaymentSessionStatus
from domain.payment.money import amounts_match, format_amount, parse_amount, to_minor
from infrastructure.external.payments.base import BasePaymentClient


class _MapClient(BasePaymentClient):
    def __init__(self, provider: str):
        super().__init__(timeouts={"connect": 1, "read": 1, "write": 1, "total": 1}, retry={"max": 0, "base": 0.1})
        self.provider = provider


def test_bkash_transaction_status_mapping():
    c = _MapClient("bkash")
    assert c._map_status("Completed") == "settled"
    assert c._map_status("Initiated") == "created"
    assert c._map_status("Expired") == "failed"
    assert c._map_status("SomethingNew") == "SomethingNew"


def test_nagad_verify_status_mapping():
    c = _MapClient("nagad")
    assert c._map_status("Success") == "settled"
    assert c._map_status("Aborted") == "cancelled"
    assert c._map_status("Fraud") == "failed"


def test_amounts_compare_in_minor_units():
    assert amounts_match(Decimal("500"), "500.00", "BDT")
    assert amounts_match(Decimal("500"), 500, "BDT")
    assert not amounts_match(Decimal("500"), "499.99", "BDT")
    assert not amounts_match(Decimal("500"), "499.995", "BDT")
    assert not amounts_match(Decimal("500"), "500.004", "BDT")
    assert amounts_match(Decimal("500"), "500.000", "BDT")
    assert not amounts_match(Decimal("1000"), "1000.5", "JPY")
    assert not amounts_match(Decimal("500"), "five hundred", "BDT")
    assert not amounts_match(Decimal("500"), None, "BDT")
    assert to_minor(Decimal("12.34"), "BDT") == 1234


def test_parse_and_format_amount():
    assert parse_amount(" 10.5 ") == Decimal("10.5")
    assert parse_amount("NaN") is None
    assert parse_amount(True) is None
    assert format_amount(Decimal("10")) == "10.00"


def _session(**overrides) -> PaymentSession:
    data = dict(
        id=1,
        order_id="ORD-1",
        store_id="store-1",
        gateway="bkash",
        provider_session_id="P1",
        amount=Decimal("500"),
        currency="BDT",
    )
    data.update(overrides)
    return PaymentSession(**data)


def test_session_validates_amount_and_currency():
    with pytest.raises(DomainValidationException):
        _session(amount=Decimal("0"))
    with pytest.raises(DomainValidationException):
        _session(currency="TAKA")


def test_session_terminal_states_are_final():
    session = _session()
    assert session.gateway is GatewayType.BKASH

    session.mark_settled("T1")
    assert session.status == PaymentSessionStatus.SETTLED
    assert session.is_final_status()
    with pytest.raises(DomainValidationException):
        session.mark_failed("late failure")


def test_failed_session_can_still_settle_but_cancelled_cannot():
    failed = _session()
    failed.mark_failed("execute timed out")
    assert failed.can_settle()
    failed.mark_settled("T1")
    assert failed.status == PaymentSessionStatus.SETTLED
    assert failed.failure_reason is None

    cancelled = _session()
    cancelled.mark_cancelled("shopper left")
    assert not cancelled.can_settle()
    with pytest.raises(DomainValidationException):
        cancelled.mark_settled("T1")


def test_payment_details_record_shape():
    paid_at = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
    record = PaymentDetails(
        method=GatewayType.NAGAD,
        transaction_id="T1",
        provider_payment_id="R1",
        amount=Decimal("500"),
        paid_at=paid_at,
    ).to_record()

    assert record == {
        "method": "nagad",
        "transactionId": "T1",
        "providerPaymentId": "R1",
        "amount": "500",
        "paidAt": "2024-05-01T10:00:00Z",
    }
