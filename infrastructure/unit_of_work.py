"""SQLAlchemy Unit of Work"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.order_ledger import (
    SQLAlchemyOrderLedger,
    SQLAlchemyStoreCredentialLookup,
)
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentSessionRepository


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """One AsyncSession shared by the session repository, order ledger and store lookup"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        session: Optional[AsyncSession] = None,
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self._external_session = session
        self.session: Optional[AsyncSession] = session
        self.orders: Optional[SQLAlchemyOrderLedger] = None
        self.stores: Optional[SQLAlchemyStoreCredentialLookup] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        if self.session is None:
            self.session = self._session_factory()
        self.payment_sessions = SQLAlchemyPaymentSessionRepository(self.session)
        self.orders = SQLAlchemyOrderLedger(self.session)
        self.stores = SQLAlchemyStoreCredentialLookup(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self._external_session is None and self.session is not None:
                await self.session.close()
                self.session = None
            self.payment_sessions = None  # type: ignore[assignment]
            self.orders = None
            self.stores = None

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False
