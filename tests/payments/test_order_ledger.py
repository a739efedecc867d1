from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.dtos.payments import CallbackParams, SettlementOutcome
from application.services.settlement_service import SettlementReconciler
from domain.payment.entity import (
    GatewayType,
    OrderPaymentStatus,
    PaymentDetails,
    PaymentSession,
    PaymentSessionStatus,
)
from infrastructure.adapters.settlement import InProcessSettlementLock
from infrastructure.models import Base, OrderModel, StoreModel
from infrastructure.repositories.payment_repository import PaymentSessionConflictException
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@pytest_asyncio.fixture
async def session_factory(store_payment_settings):
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with factory() as session:
        session.add(StoreModel(id="store-1", name="Demo", payment_settings=store_payment_settings))
        session.add(StoreModel(id="store-empty", name="Empty"))
        session.add(OrderModel(id="ORD-1", store_id="store-1", total=Decimal("500.00"), currency="BDT"))
        await session.commit()
    yield factory
    await engine.dispose()


def _details(transaction_id: str = "T1") -> PaymentDetails:
    return PaymentDetails(
        method=GatewayType.BKASH,
        transaction_id=transaction_id,
        provider_payment_id="P1",
        amount=Decimal("500"),
    )


@pytest.mark.asyncio
async def test_mark_paid_is_compare_and_set(session_factory):
    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        assert await uow.orders.mark_paid("ORD-1", _details("T1")) is True
        assert await uow.orders.mark_paid("ORD-1", _details("T2")) is False

    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        order = await uow.orders.get_order("ORD-1")

    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.payment_details["transactionId"] == "T1"
    assert order.total == Decimal("500.00")


@pytest.mark.asyncio
async def test_failure_never_downgrades_a_paid_order(session_factory):
    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        await uow.orders.mark_paid("ORD-1", _details())
        await uow.orders.mark_failed("ORD-1", "late cancel", cancel=True)
        await uow.orders.mark_pending("ORD-1")
        order = await uow.orders.get_order("ORD-1")

    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.status == "pending"


@pytest.mark.asyncio
async def test_cancel_marks_failed_and_cancels_order(session_factory):
    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        await uow.orders.mark_pending("ORD-1")
        await uow.orders.mark_failed("ORD-1", "Payment cancelled by customer", cancel=True)
        order = await uow.orders.get_order("ORD-1")

    assert order.payment_status == OrderPaymentStatus.FAILED
    assert order.status == "cancelled"


@pytest.mark.asyncio
async def test_store_lookup(session_factory, store_payment_settings):
    async with SQLAlchemyUnitOfWork(session_factory, readonly=True) as uow:
        assert await uow.stores.get_payment_settings("store-1") == store_payment_settings
        assert await uow.stores.get_payment_settings("store-empty") == {}
        assert await uow.stores.get_payment_settings("missing") is None
        assert await uow.orders.get_order("missing") is None


@pytest.mark.asyncio
async def test_session_repository_roundtrip_and_conflict(session_factory):
    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        created = await uow.payment_sessions.create(PaymentSession(
            id=None, order_id="ORD-1", store_id="store-1", gateway=GatewayType.NAGAD,
            provider_session_id="REF-1", amount=Decimal("500"), currency="BDT",
        ))
        created.mark_failed("Aborted")
        await uow.payment_sessions.update(created)

    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        found = await uow.payment_sessions.get_by_provider_ref(GatewayType.NAGAD, "REF-1")
        assert found.status == PaymentSessionStatus.FAILED
        assert found.failure_reason == "Aborted"
        assert [s.id for s in await uow.payment_sessions.list_by_order("ORD-1")] == [created.id]

        with pytest.raises(PaymentSessionConflictException):
            await uow.payment_sessions.create(PaymentSession(
                id=None, order_id="ORD-1", store_id="store-1", gateway="nagad",
                provider_session_id="REF-1", amount=Decimal("500"), currency="BDT",
            ))


@pytest.mark.asyncio
async def test_unit_of_work_rolls_back_on_error(session_factory):
    with pytest.raises(RuntimeError):
        async with SQLAlchemyUnitOfWork(session_factory) as uow:
            await uow.orders.mark_paid("ORD-1", _details())
            raise RuntimeError("boom")

    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        order = await uow.orders.get_order("ORD-1")
    assert order.payment_status == OrderPaymentStatus.UNPAID


@pytest.mark.asyncio
async def test_settlement_against_the_database(session_factory, fake_gateway, cart):
    params = CallbackParams.model_validate(
        {"storeId": "store-1", "orderId": "ORD-1", "method": "bkash", "paymentID": "P1", "status": "success"}
    )
    lock = InProcessSettlementLock()

    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        await uow.payment_sessions.create(PaymentSession(
            id=None, order_id="ORD-1", store_id="store-1", gateway=GatewayType.BKASH,
            provider_session_id="P1", amount=Decimal("500"), currency="BDT",
        ))

    for expected in (SettlementOutcome.SETTLED, SettlementOutcome.ALREADY_SETTLED):
        async with SQLAlchemyUnitOfWork(session_factory) as uow:
            reconciler = SettlementReconciler(
                fake_gateway, uow.stores, uow.orders, uow.payment_sessions, cart, lock,
            )
            result = await reconciler.reconcile(params)
        await reconciler.clear_cart(result)
        assert result.outcome == expected
        assert result.transaction_id == "T1"

    async with SQLAlchemyUnitOfWork(session_factory) as uow:
        session = await uow.payment_sessions.get_by_provider_ref(GatewayType.BKASH, "P1")
        order = await uow.orders.get_order("ORD-1")
    assert session.status == PaymentSessionStatus.SETTLED
    assert session.transaction_id == "T1"
    assert order.payment_status == OrderPaymentStatus.PAID
    assert len(cart.cleared) == 1
