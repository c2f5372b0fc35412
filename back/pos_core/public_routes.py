"""
Public (unauthenticated) endpoints used by the guest QR ordering page.

Guests place orders, track them and submit a payment for confirmation. After
creation an order is only reachable through its order code; sequential ids
are never accepted here. Nothing created here is ever settled: payments always
start PENDING and wait for a cashier.
"""
import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from . import models
from .deps import get_order_manager, get_payment_ledger
from .order_service import OrderLifecycleManager
from .payment_service import PaymentLedger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/orders", response_model=models.PublicOrderView)
def create_public_order(
    order_data: models.PublicOrderCreate,
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
):
    customer = order_data.customer or models.OrderCustomer()
    # Guests cannot claim a membership from the public page
    customer = models.OrderCustomer(
        type=models.CustomerType.GUEST,
        name=customer.name,
        phone=customer.phone,
    )
    order = orders.create(models.OrderCreate(
        outlet_id=order_data.outlet_id,
        table_id=order_data.table_id,
        session_id=order_data.qr_token,
        channel=models.OrderChannel.QR,
        customer=customer,
        items=order_data.items,
        note=order_data.note,
        payment_method=order_data.payment_method,
        mark_as_paid=False,
    ))
    return orders.get_public(order.id)


@router.get("/orders/code/{order_code}", response_model=models.PublicOrderView)
def get_public_order_by_code(
    order_code: str,
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
):
    order = orders.get_by_code(order_code)
    return orders.get_public(order.id)


@router.post("/payments", response_model=models.PaymentRead)
def create_public_payment(
    payment_data: models.PublicPaymentCreate,
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
):
    order = orders.get_by_code(payment_data.order_code)
    payment = payments.create(
        order.id,
        payment_data.method,
        amount=payment_data.amount,
        proof_url=payment_data.proof_url,
        note=payment_data.note,
        mark_as_paid=False,
    )
    logger.info(f"Guest submitted payment #{payment.id} for order {order.order_code}")
    return models.PaymentRead.model_validate(payment.model_dump())
