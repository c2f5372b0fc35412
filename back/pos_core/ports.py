"""
Narrow interfaces the services depend on.

The order and payment services reference each other, the audit sink and the
fan-out publisher only through these protocols, so the concrete object graph
is assembled in `deps.py` and tests can substitute recording fakes.
"""
from collections.abc import Iterable
from typing import Any, Protocol

from .models import Addon, AuditAction, EntityType, MenuItem, Order, OrderPaymentStatus, Outlet


class CatalogReader(Protocol):
    def get_outlet(self, outlet_id: int) -> Outlet | None: ...

    def get_menu_item(self, menu_item_id: int) -> MenuItem | None: ...

    def get_active_addons(self, company_id: int, addon_ids: Iterable[int]) -> list[Addon]: ...


class OrderReader(Protocol):
    def get(self, order_id: int, company_id: int | None = None) -> Order | None: ...

    def set_payment_status(self, order_id: int, payment_status: OrderPaymentStatus) -> None: ...


class EventPublisher(Protocol):
    def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None: ...


class AuditSink(Protocol):
    def record(
        self,
        action: AuditAction,
        entity_type: EntityType,
        entity_id: int | None = None,
        actor_user_id: int | None = None,
        company_id: int | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None: ...
