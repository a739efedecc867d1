"""
API dependencies - composition root for the payment routes
"""
from typing import Callable

from fastapi import Request

from application.ports.ledger import CartClearer, PaymentUnitOfWork, SettlementLock
from application.ports.payment_gateway import PaymentGateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


UnitOfWorkFactory = Callable[[], PaymentUnitOfWork]


async def get_uow_factory() -> UnitOfWorkFactory:
    return SQLAlchemyUnitOfWork


async def get_payment_gateway(request: Request) -> PaymentGateway:
    """Process-wide gateway registry built in the lifespan; it owns the shared token cache."""
    return request.app.state.payment_gateway


async def get_cart_clearer(request: Request) -> CartClearer:
    return request.app.state.cart_clearer


async def get_settlement_lock(request: Request) -> SettlementLock:
    return request.app.state.settlement_lock
