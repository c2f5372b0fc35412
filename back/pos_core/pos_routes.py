"""
POS API Routes

Cashier terminal endpoints:
- Orders: create, list, detail, status updates
- Payments: create, confirm, reject, confirm by order
- Shifts: open, close, current
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from . import models
from .deps import get_catalog, get_order_manager, get_payment_ledger, get_shift_ledger
from .errors import InvalidRequestError, NotFoundError
from .order_service import OrderLifecycleManager
from .payment_service import PaymentLedger
from .permissions import Permissions
from .security import Actor, PermissionChecker
from .shift_service import ShiftLedger
from .store import SqlCatalogReader


router = APIRouter()


def parse_statuses(status: str | None) -> list[models.OrderStatus] | None:
    """Parse a comma-separated status filter, e.g. 'NEW,ACCEPTED'."""
    if not status:
        return None
    try:
        return [models.OrderStatus(s.strip().upper()) for s in status.split(",") if s.strip()]
    except ValueError:
        raise InvalidRequestError(f"Unknown order status in filter: {status}")


def require_outlet(catalog: SqlCatalogReader, outlet_id: int, company_id: int) -> None:
    outlet = catalog.get_outlet(outlet_id)
    if outlet is None or outlet.company_id != company_id:
        raise NotFoundError("Outlet not found")


# ============ ORDERS ============

@router.post("/orders", response_model=models.OrderRead)
def create_order(
    order_data: models.OrderCreate,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.ORDERS_WRITE))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
):
    """Create a POS order, optionally settling it in cash on the spot."""
    order_data.channel = models.OrderChannel.POS
    require_outlet(orders.catalog, order_data.outlet_id, actor.company_id)
    order = orders.create(order_data, actor_user_id=actor.user_id)
    return models.OrderRead.from_order(order)


@router.get("/orders", response_model=models.OrderListPage)
def list_orders(
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.ORDERS_READ))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
    outlet_id: int | None = None,
    status: str | None = Query(None, description="Comma-separated statuses"),
    page: int = 1,
    limit: int | None = None,
):
    result = orders.list_by_outlet(
        actor.company_id,
        outlet_id=outlet_id,
        statuses=parse_statuses(status),
        page=page,
        limit=limit,
    )

    # Enrich orders with the method of their latest payment
    data = []
    for order in result.data:
        payment = payments.latest_for_order(order.id, actor.company_id)
        data.append(models.OrderListEntry(
            **order.model_dump(),
            payment_method=payment.method if payment else None,
        ))

    return models.OrderListPage(
        data=data,
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/orders/{order_id}", response_model=models.OrderRead)
def get_order(
    order_id: int,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.ORDERS_READ))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
):
    return models.OrderRead.from_order(orders.get(order_id, actor.company_id))


@router.patch("/orders/{order_id}/status", response_model=models.OrderRead)
def update_order_status(
    order_id: int,
    status_update: models.OrderStatusUpdate,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.ORDERS_WRITE))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
):
    order = orders.transition(order_id, actor.company_id, status_update.status, actor_user_id=actor.user_id)
    return models.OrderRead.from_order(order)


@router.get("/orders/{order_id}/payments", response_model=list[models.PaymentRead])
def list_order_payments(
    order_id: int,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.PAYMENTS_READ))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
):
    orders.get(order_id, actor.company_id)
    return [
        models.PaymentRead.model_validate(p.model_dump())
        for p in payments.find_by_order(order_id, actor.company_id)
    ]


@router.patch("/orders/{order_id}/confirm-payment", response_model=models.PaymentRead)
def confirm_payment_by_order(
    order_id: int,
    body: models.PaymentNote,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.PAYMENTS_WRITE))],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
):
    payment = payments.confirm_by_order(order_id, actor.company_id, actor.user_id, body.note)
    return models.PaymentRead.model_validate(payment.model_dump())


# ============ PAYMENTS ============

@router.post("/payments", response_model=models.PaymentRead)
def create_payment(
    payment_data: models.PaymentCreate,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.PAYMENTS_WRITE))],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
):
    """Create a payment; cash can be marked as PAID immediately."""
    payment = payments.create(
        payment_data.order_id,
        payment_data.method,
        amount=payment_data.amount,
        proof_url=payment_data.proof_url,
        note=payment_data.note,
        mark_as_paid=payment_data.mark_as_paid,
        actor_user_id=actor.user_id,
        company_id=actor.company_id,
    )
    return models.PaymentRead.model_validate(payment.model_dump())


@router.patch("/payments/{payment_id}/confirm", response_model=models.PaymentRead)
def confirm_payment(
    payment_id: int,
    body: models.PaymentNote,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.PAYMENTS_WRITE))],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
):
    payment = payments.confirm(payment_id, actor.company_id, actor.user_id, body.note)
    return models.PaymentRead.model_validate(payment.model_dump())


@router.patch("/payments/{payment_id}/reject", response_model=models.PaymentRead)
def reject_payment(
    payment_id: int,
    body: models.PaymentNote,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.PAYMENTS_WRITE))],
    payments: Annotated[PaymentLedger, Depends(get_payment_ledger)],
):
    payment = payments.reject(payment_id, actor.company_id, actor.user_id, body.note)
    return models.PaymentRead.model_validate(payment.model_dump())


# ============ SHIFTS ============

@router.post("/shifts/open", response_model=models.ShiftRead)
def open_shift(
    shift_data: models.ShiftOpen,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.SHIFTS_WRITE))],
    shifts: Annotated[ShiftLedger, Depends(get_shift_ledger)],
    catalog: Annotated[SqlCatalogReader, Depends(get_catalog)],
):
    require_outlet(catalog, shift_data.outlet_id, actor.company_id)
    shift = shifts.open(
        actor.company_id,
        shift_data.outlet_id,
        actor.user_id,
        shift_data.opening_cash,
        note=shift_data.note,
    )
    return models.ShiftRead.model_validate(shift.model_dump())


@router.post("/shifts/close", response_model=models.ShiftRead)
def close_shift(
    shift_data: models.ShiftClose,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.SHIFTS_WRITE))],
    shifts: Annotated[ShiftLedger, Depends(get_shift_ledger)],
):
    shift = shifts.close(
        actor.company_id,
        actor.user_id,
        shift_data.closing_cash,
        note=shift_data.note,
        outlet_id=shift_data.outlet_id,
    )
    return models.ShiftRead.model_validate(shift.model_dump())


@router.get("/shifts/current", response_model=models.ShiftRead | None)
def get_current_shift(
    outlet_id: int,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.SHIFTS_READ))],
    shifts: Annotated[ShiftLedger, Depends(get_shift_ledger)],
):
    shift = shifts.current(actor.company_id, outlet_id, actor.user_id)
    return models.ShiftRead.model_validate(shift.model_dump()) if shift else None
