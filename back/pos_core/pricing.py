"""
Pricing Calculator

Turns requested order lines into immutable item snapshots and order totals:
- Menu item / variant / addon resolution against live catalog data
- Subtotal, tax and service charge in integer minor units
- Outlet rounding policy applied to the final total

Pure apart from the read-only catalog lookups: identical inputs always give
identical output.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from pydantic import BaseModel, ConfigDict

from .errors import ItemUnavailable
from .models import (
    AddonSnapshot,
    OrderItemCreate,
    OrderItemSnapshot,
    Outlet,
    PaymentMethod,
    RoundingMode,
    VariantSnapshot,
)
from .ports import CatalogReader

logger = logging.getLogger(__name__)


ROUNDING_STEPS = {
    RoundingMode.NEAREST_100: 100,
    RoundingMode.NEAREST_500: 500,
    RoundingMode.NEAREST_1000: 1000,
}


class OutletSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    company_id: int
    tax_rate: float = 0  # percent, 0-100
    service_rate: float = 0  # percent, 0-100
    rounding: RoundingMode = RoundingMode.NONE
    enabled_payment_methods: tuple[PaymentMethod, ...] = tuple(PaymentMethod)

    @classmethod
    def from_outlet(cls, outlet: Outlet) -> "OutletSettings":
        return cls(
            company_id=outlet.company_id,
            tax_rate=outlet.tax_rate or 0,
            service_rate=outlet.service_rate or 0,
            rounding=outlet.rounding or RoundingMode.NONE,
            enabled_payment_methods=tuple(
                PaymentMethod(m) for m in (outlet.enabled_payment_methods or [])
            ),
        )


@dataclass(frozen=True)
class PricedOrder:
    items: tuple[OrderItemSnapshot, ...]
    subtotal: int
    discount: int
    tax: int
    service: int
    total: int


def round_half_away(value: Decimal) -> int:
    # Decimal's ROUND_HALF_UP rounds ties away from zero
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def percent_of(amount: int, rate: float) -> int:
    return round_half_away(Decimal(amount) * Decimal(str(rate)) / Decimal(100))


def apply_rounding(amount: int, mode: RoundingMode) -> int:
    """Round to the nearest multiple of the outlet step; ties round up."""
    step = ROUNDING_STEPS.get(mode)
    if step is None:
        return amount
    return (amount + step // 2) // step * step


def build_item_snapshot(catalog: CatalogReader, company_id: int, request: OrderItemCreate) -> OrderItemSnapshot:
    menu_item = catalog.get_menu_item(request.menu_item_id)
    if not menu_item or not menu_item.is_active or menu_item.company_id != company_id:
        raise ItemUnavailable(request.menu_item_id)

    unit_price = menu_item.base_price

    variant = None
    if request.variant_name:
        match = next(
            (v for v in (menu_item.variants or []) if v.get("name") == request.variant_name),
            None,
        )
        if match:
            variant = VariantSnapshot(name=match["name"], price_delta=int(match.get("price_delta", 0)))
            unit_price += variant.price_delta
        else:
            logger.debug(
                f"Variant {request.variant_name!r} not found on menu item {menu_item.id}, ignoring"
            )

    addons: tuple[AddonSnapshot, ...] = ()
    if request.addon_ids:
        active = catalog.get_active_addons(company_id, request.addon_ids)
        addons = tuple(
            AddonSnapshot(addon_id=addon.id, name=addon.name, price=addon.price)
            for addon in sorted(active, key=lambda a: a.id)
        )
        unit_price += sum(addon.price for addon in addons)

    return OrderItemSnapshot(
        menu_item_id=menu_item.id,
        name=menu_item.name,
        qty=request.qty,
        base_price=menu_item.base_price,
        variant=variant,
        addons=addons,
        note=request.note,
        unit_price=unit_price,
        line_total=unit_price * request.qty,
    )


def calculate_order(
    catalog: CatalogReader,
    items: Iterable[OrderItemCreate],
    settings: OutletSettings,
    discount: int = 0,
) -> PricedOrder:
    """
    Price a cart.

    The discount is not clamped: callers reject a discount larger than the
    subtotal before persisting anything.
    """
    snapshots = tuple(build_item_snapshot(catalog, settings.company_id, item) for item in items)
    subtotal = sum(item.line_total for item in snapshots)

    taxable_amount = subtotal - discount
    tax = percent_of(taxable_amount, settings.tax_rate)
    service = percent_of(taxable_amount, settings.service_rate)

    total = apply_rounding(subtotal - discount + tax + service, settings.rounding)

    return PricedOrder(
        items=snapshots,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        service=service,
        total=total,
    )
