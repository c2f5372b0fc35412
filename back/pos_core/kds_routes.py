"""
Kitchen display endpoints: the active order board and status bumps.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from . import models
from .deps import get_order_manager
from .order_service import OrderLifecycleManager
from .permissions import Permissions
from .pos_routes import parse_statuses
from .security import Actor, PermissionChecker


router = APIRouter()


@router.get("/orders", response_model=models.OrderPage)
def list_kitchen_orders(
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.ORDERS_READ))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
    outlet_id: int | None = None,
    status: str | None = Query(None, description="Comma-separated statuses"),
    page: int = 1,
    limit: int = 100,
):
    # Without a filter the board shows everything still in the kitchen
    statuses = parse_statuses(status) or list(models.KDS_ACTIVE_STATUSES)
    return orders.list_by_outlet(
        actor.company_id,
        outlet_id=outlet_id,
        statuses=statuses,
        page=page,
        limit=limit,
    )


@router.patch("/orders/{order_id}/status", response_model=models.OrderRead)
def bump_order_status(
    order_id: int,
    status_update: models.OrderStatusUpdate,
    actor: Annotated[Actor, Depends(PermissionChecker(Permissions.ORDERS_WRITE))],
    orders: Annotated[OrderLifecycleManager, Depends(get_order_manager)],
):
    order = orders.transition(order_id, actor.company_id, status_update.status, actor_user_id=actor.user_id)
    return models.OrderRead.from_order(order)
