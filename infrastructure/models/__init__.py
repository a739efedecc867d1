"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import PaymentSessionModel
from .storefront import OrderModel, StoreModel

__all__ = [
    "Base",
    "metadata",
    "PaymentSessionModel",
    "OrderModel",
    "StoreModel",
]
