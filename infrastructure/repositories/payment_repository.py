"""
Payment session repository - SQLAlchemy implementation
"""
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from domain.common.exceptions import BusinessException
from domain.payment.entity import GatewayType, PaymentSession, PaymentSessionStatus
from domain.payment.repository import PaymentSessionRepository
from infrastructure.models.payment import PaymentSessionModel
from core.logging_config import get_logger
from shared.codes import BusinessCode


logger = get_logger(__name__)


class PaymentSessionConflictException(BusinessException):
    """Provider reference already recorded"""
    def __init__(self, gateway: str, provider_session_id: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message="Payment session already exists",
            error_type="PaymentSessionConflict",
            details={"gateway": gateway, "provider_session_id": provider_session_id},
        )


class SQLAlchemyPaymentSessionRepository(PaymentSessionRepository):
    """SQLAlchemy-backed payment session store"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentSessionModel) -> PaymentSession:
        return PaymentSession(
            id=model.id,
            order_id=model.order_id,
            store_id=model.store_id,
            gateway=GatewayType(model.gateway),
            provider_session_id=model.provider_session_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentSessionStatus(model.status),
            redirect_url=model.redirect_url,
            transaction_id=model.transaction_id,
            failure_reason=model.failure_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            settled_at=model.settled_at,
        )

    def _to_model(self, entity: PaymentSession) -> PaymentSessionModel:
        return PaymentSessionModel(
            id=entity.id,
            order_id=entity.order_id,
            store_id=entity.store_id,
            gateway=entity.gateway.value,
            provider_session_id=entity.provider_session_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            redirect_url=entity.redirect_url,
            transaction_id=entity.transaction_id,
            failure_reason=entity.failure_reason,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            settled_at=entity.settled_at,
        )

    async def create(self, session: PaymentSession) -> PaymentSession:
        db_session = self._to_model(session)
        try:
            self.session.add(db_session)
            await self.session.flush()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(
                "payment_session_conflict",
                gateway=session.gateway.value,
                provider_session_id=session.provider_session_id,
            )
            raise PaymentSessionConflictException(
                session.gateway.value, session.provider_session_id
            ) from e
        await self.session.refresh(db_session)
        logger.info(
            "payment_session_created",
            session_id=db_session.id,
            order_id=db_session.order_id,
            gateway=db_session.gateway,
        )
        return self._to_entity(db_session)

    async def get_by_provider_ref(
        self,
        gateway: GatewayType,
        provider_session_id: str,
    ) -> Optional[PaymentSession]:
        result = await self.session.execute(
            select(PaymentSessionModel).where(
                PaymentSessionModel.gateway == GatewayType(gateway).value,
                PaymentSessionModel.provider_session_id == provider_session_id,
            )
        )
        db_session = result.scalar_one_or_none()
        return self._to_entity(db_session) if db_session else None

    async def list_by_order(self, order_id: str) -> List[PaymentSession]:
        result = await self.session.execute(
            select(PaymentSessionModel)
            .where(PaymentSessionModel.order_id == order_id)
            .order_by(PaymentSessionModel.created_at.asc(), PaymentSessionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, session: PaymentSession) -> PaymentSession:
        db_session = await self.session.get(PaymentSessionModel, session.id)
        if db_session is None:
            raise BusinessException(
                code=BusinessCode.NOT_FOUND,
                message="Payment session not found",
                error_type="PaymentSessionNotFound",
                details={"session_id": session.id},
            )

        db_session.status = session.status.value
        db_session.transaction_id = session.transaction_id
        db_session.failure_reason = session.failure_reason
        db_session.redirect_url = session.redirect_url
        db_session.updated_at = session.updated_at
        db_session.settled_at = session.settled_at

        await self.session.flush()
        await self.session.refresh(db_session)
        logger.info("payment_session_updated", session_id=db_session.id, status=db_session.status)
        return self._to_entity(db_session)
