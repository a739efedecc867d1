"""Unit of Work abstraction"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.payment.repository import PaymentSessionRepository


class AbstractUnitOfWork(ABC):
    """Transaction boundary for one application use case"""

    payment_sessions: PaymentSessionRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.payment_sessions = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # auto-commit unless read-only or already committed
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        ...

    @abstractmethod
    async def rollback(self) -> None:
        ...
