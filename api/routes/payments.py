"""
Payments API routes.

create starts a checkout with bKash or Nagad, execute is the raw
execute-or-verify call, and callback is where the provider redirects the
customer; only the callback settles the order. Keep this thin: no gateway
details here.
"""
from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from api.dependencies import (
    UnitOfWorkFactory,
    get_cart_clearer,
    get_payment_gateway,
    get_settlement_lock,
    get_uow_factory,
)
from application.dtos.payments import (
    CallbackParams,
    ConfirmPaymentRequest,
    CreatePaymentRequest,
)
from application.ports.ledger import CartClearer, SettlementLock
from application.ports.payment_gateway import PaymentGateway
from application.services.payment_service import PaymentService
from application.services.settlement_service import SettlementReconciler
from core.response import success_response
from core.logging_config import get_logger
from shared.codes import BusinessCode


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


@router.post("/create", summary="Create payment")
async def create_payment(
    payload: CreatePaymentRequest,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
):
    async with uow_factory() as uow:
        service = PaymentService(gateway, uow.stores, uow.orders, uow.payment_sessions)
        created = await service.create_payment(payload)
    return success_response(data=created.to_payload(), message="Payment created")


@router.post("/execute", summary="Execute (bKash) or verify (Nagad) a payment")
async def execute_payment(
    payload: ConfirmPaymentRequest,
    gateway: PaymentGateway = Depends(get_payment_gateway),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
):
    async with uow_factory() as uow:
        service = PaymentService(gateway, uow.stores, uow.orders, uow.payment_sessions)
        confirmed = await service.confirm_payment(payload)
    return success_response(data=confirmed.model_dump(mode="json", by_alias=True), message="Payment confirmed")


@router.get("/callback", summary="Settle an order from the provider redirect")
async def payment_callback(
    params: Annotated[CallbackParams, Query()],
    gateway: PaymentGateway = Depends(get_payment_gateway),
    uow_factory: UnitOfWorkFactory = Depends(get_uow_factory),
    cart: CartClearer = Depends(get_cart_clearer),
    lock: SettlementLock = Depends(get_settlement_lock),
):
    async with uow_factory() as uow:
        reconciler = SettlementReconciler(gateway, uow.stores, uow.orders, uow.payment_sessions, cart, lock)
        result = await reconciler.reconcile(params)
    await reconciler.clear_cart(result)

    body = success_response(
        data=result.model_dump(mode="json", by_alias=True),
        message="Payment settled" if result.success else (result.reason or "Payment not completed"),
        code=BusinessCode.SUCCESS if result.success else BusinessCode.BUSINESS_ERROR,
    )
    return JSONResponse(content=body.model_dump(mode="json"))
