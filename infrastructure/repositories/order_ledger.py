"""
Order ledger and store credential lookup over the storefront tables.

mark_paid is a single conditional UPDATE, so two concurrent settlements of
the same order cannot both observe "not paid" and both write.
"""
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import (
    ORDER_STATUS_CANCELLED,
    OrderPaymentStatus,
    OrderSnapshot,
    PaymentDetails,
)
from infrastructure.models.storefront import OrderModel, StoreModel
from core.logging_config import get_logger


logger = get_logger(__name__)

PAID = OrderPaymentStatus.PAID.value


class SQLAlchemyOrderLedger:
    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_snapshot(model: OrderModel) -> OrderSnapshot:
        try:
            payment_status = OrderPaymentStatus(model.payment_status)
        except ValueError:
            # values outside the payment vocabulary read as unpaid
            payment_status = OrderPaymentStatus.UNPAID
        return OrderSnapshot(
            id=model.id,
            store_id=model.store_id,
            total=Decimal(str(model.total)),
            currency=model.currency or "BDT",
            payment_status=payment_status,
            status=model.status,
            payment_details=model.payment_details,
        )

    async def get_order(self, order_id: str) -> Optional[OrderSnapshot]:
        model = await self.session.get(OrderModel, order_id, populate_existing=True)
        return self._to_snapshot(model) if model else None

    async def mark_pending(self, order_id: str) -> None:
        await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.payment_status != PAID)
            .values(payment_status=OrderPaymentStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()

    async def mark_paid(self, order_id: str, details: PaymentDetails) -> bool:
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.payment_status != PAID)
            .values(
                payment_status=PAID,
                payment_details=details.to_record(),
                payment_failure_reason=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        written = result.rowcount == 1
        logger.info("order_mark_paid", order_id=order_id, written=written)
        return written

    async def mark_failed(self, order_id: str, reason: str, *, cancel: bool = False) -> None:
        values: dict[str, Any] = {
            "payment_status": OrderPaymentStatus.FAILED.value,
            "payment_failure_reason": reason,
        }
        if cancel:
            values["status"] = ORDER_STATUS_CANCELLED
        result = await self.session.execute(
            update(OrderModel)
            .where(OrderModel.id == order_id, OrderModel.payment_status != PAID)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.flush()
        logger.info("order_mark_failed", order_id=order_id, cancel=cancel, written=result.rowcount == 1)


class SQLAlchemyStoreCredentialLookup:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_payment_settings(self, store_id: str) -> Optional[Any]:
        result = await self.session.execute(
            select(StoreModel.id, StoreModel.payment_settings).where(StoreModel.id == store_id)
        )
        row = result.first()
        if row is None:
            return None
        # an existing store with no settings parses to "nothing configured"
        return row.payment_settings if row.payment_settings is not None else {}
