"""
Payment session repository interface.
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import PaymentSession, GatewayType


class PaymentSessionRepository(ABC):
    """Abstract payment session store: declares what, not how"""

    @abstractmethod
    async def create(self, session: PaymentSession) -> PaymentSession:
        """Persist a new session"""
        pass

    @abstractmethod
    async def get_by_provider_ref(
        self,
        gateway: GatewayType,
        provider_session_id: str,
    ) -> Optional[PaymentSession]:
        """Find a session by the provider's paymentID / paymentReferenceId"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str) -> List[PaymentSession]:
        """All attempts for one order, oldest first"""
        pass

    @abstractmethod
    async def update(self, session: PaymentSession) -> PaymentSession:
        """Persist a status transition"""
        pass
