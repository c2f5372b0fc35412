"""
Order Store

Tenant-scoped persistence for orders, payments and shifts, plus the read-only
catalog lookups the pricing calculator needs. Every mutation commits before
returning.

Races are closed at the database, not in Python:
- payment settlement/rejection and shift close are conditional UPDATEs that
  only match the expected current state (compare-and-swap on status)
- partial unique indexes guarantee one PAID payment per order and one open
  shift per (outlet, cashier)
- order codes carry a unique index
"""
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from .models import (
    Addon,
    MenuItem,
    Order,
    OrderPaymentStatus,
    OrderStatus,
    Outlet,
    Payment,
    PaymentStatus,
    Shift,
    utcnow,
)


class SqlCatalogReader:
    def __init__(self, session: Session):
        self.session = session

    def get_outlet(self, outlet_id: int) -> Outlet | None:
        return self.session.get(Outlet, outlet_id)

    def get_menu_item(self, menu_item_id: int) -> MenuItem | None:
        return self.session.get(MenuItem, menu_item_id)

    def get_active_addons(self, company_id: int, addon_ids: Iterable[int]) -> list[Addon]:
        ids = list(addon_ids)
        if not ids:
            return []
        statement = (
            select(Addon)
            .where(col(Addon.id).in_(ids))
            .where(Addon.company_id == company_id)
            .where(Addon.is_active == True)  # noqa: E712
        )
        return list(self.session.exec(statement).all())


class OrderStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, order_id: int, company_id: int | None = None) -> Order | None:
        statement = select(Order).where(Order.id == order_id)
        if company_id is not None:
            statement = statement.where(Order.company_id == company_id)
        return self.session.exec(statement).first()

    def get_by_code(self, order_code: str) -> Order | None:
        return self.session.exec(select(Order).where(Order.order_code == order_code)).first()

    def code_exists(self, order_code: str) -> bool:
        return self.get_by_code(order_code) is not None

    def add(self, order: Order) -> Order:
        """Insert a new order. Raises IntegrityError on an order code collision."""
        self.session.add(order)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        self.session.refresh(order)
        return order

    def update_status(self, order: Order, status: OrderStatus) -> Order:
        order.status = status
        order.updated_at = utcnow()
        self.session.add(order)
        self.session.commit()
        self.session.refresh(order)
        return order

    def set_payment_status(self, order_id: int, payment_status: OrderPaymentStatus) -> None:
        self.session.exec(
            update(Order)
            .where(Order.id == order_id)
            .values(payment_status=payment_status, updated_at=utcnow())
        )
        self.session.commit()

    def list_by_outlet(
        self,
        company_id: int,
        outlet_id: int | None = None,
        statuses: Iterable[OrderStatus] | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Order], int]:
        conditions = [Order.company_id == company_id]
        if outlet_id is not None:
            conditions.append(Order.outlet_id == outlet_id)
        status_list = list(statuses or [])
        if status_list:
            conditions.append(col(Order.status).in_(status_list))

        statement = (
            select(Order)
            .where(*conditions)
            .order_by(col(Order.created_at).desc(), col(Order.id).desc())
            .offset(offset)
            .limit(limit)
        )
        count_statement = select(func.count()).select_from(Order).where(*conditions)

        orders = list(self.session.exec(statement).all())
        total = self.session.exec(count_statement).one()
        return orders, total


class PaymentStore:
    def __init__(self, session: Session):
        self.session = session

    def get(self, payment_id: int, company_id: int | None = None) -> Payment | None:
        statement = select(Payment).where(Payment.id == payment_id)
        if company_id is not None:
            statement = statement.where(Payment.company_id == company_id)
        return self.session.exec(statement).first()

    def find_paid(self, order_id: int) -> Payment | None:
        return self.session.exec(
            select(Payment)
            .where(Payment.order_id == order_id)
            .where(Payment.status == PaymentStatus.PAID)
        ).first()

    def add(self, payment: Payment) -> Payment:
        """Insert a payment. Raises IntegrityError when a second PAID row would exist."""
        self.session.add(payment)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        self.session.refresh(payment)
        return payment

    def transition(
        self,
        payment_id: int,
        company_id: int,
        expected: PaymentStatus,
        new_status: PaymentStatus,
        **values,
    ) -> bool:
        """
        Move a payment from `expected` to `new_status` in one conditional UPDATE.

        Returns False when the row is missing or no longer in `expected`, so two
        concurrent confirmations can never both succeed. Raises IntegrityError
        when settling would create a second PAID payment for the order.
        """
        statement = (
            update(Payment)
            .where(Payment.id == payment_id)
            .where(Payment.company_id == company_id)
            .where(Payment.status == expected)
            .values(status=new_status, updated_at=utcnow(), **values)
        )
        try:
            result = self.session.exec(statement)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        return result.rowcount == 1

    def refresh(self, payment: Payment) -> Payment:
        self.session.refresh(payment)
        return payment

    def list_by_order(self, order_id: int, company_id: int | None = None) -> list[Payment]:
        statement = select(Payment).where(Payment.order_id == order_id)
        if company_id is not None:
            statement = statement.where(Payment.company_id == company_id)
        statement = statement.order_by(col(Payment.created_at).desc(), col(Payment.id).desc())
        return list(self.session.exec(statement).all())

    def latest_for_order(self, order_id: int, company_id: int | None = None) -> Payment | None:
        payments = self.list_by_order(order_id, company_id)
        return payments[0] if payments else None


class ShiftStore:
    def __init__(self, session: Session):
        self.session = session

    def find_open(self, company_id: int, outlet_id: int, cashier_user_id: int) -> Shift | None:
        return self.session.exec(
            select(Shift)
            .where(Shift.company_id == company_id)
            .where(Shift.outlet_id == outlet_id)
            .where(Shift.cashier_user_id == cashier_user_id)
            .where(col(Shift.closed_at).is_(None))
        ).first()

    def find_open_for_cashier(
        self,
        company_id: int,
        cashier_user_id: int,
        outlet_id: int | None = None,
    ) -> Shift | None:
        statement = (
            select(Shift)
            .where(Shift.company_id == company_id)
            .where(Shift.cashier_user_id == cashier_user_id)
            .where(col(Shift.closed_at).is_(None))
        )
        if outlet_id is not None:
            statement = statement.where(Shift.outlet_id == outlet_id)
        statement = statement.order_by(col(Shift.opened_at).desc(), col(Shift.id).desc())
        return self.session.exec(statement).first()

    def add(self, shift: Shift) -> Shift:
        """Insert an open shift. Raises IntegrityError if one is already open."""
        self.session.add(shift)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise
        self.session.refresh(shift)
        return shift

    def close(self, shift: Shift, closing_cash: int, note: str | None, closed_at: datetime) -> bool:
        """Close an open shift; False if another request closed it first."""
        result = self.session.exec(
            update(Shift)
            .where(Shift.id == shift.id)
            .where(col(Shift.closed_at).is_(None))
            .values(closed_at=closed_at, closing_cash=closing_cash, note=note)
        )
        self.session.commit()
        self.session.refresh(shift)
        return result.rowcount == 1
