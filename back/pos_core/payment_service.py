"""
Payment Ledger

Payment attempts against an order and their settlement:
- create (cash can be settled immediately, everything else starts PENDING)
- confirm / reject a PENDING payment
- confirm the latest payment of an order

At most one payment per order ever reaches PAID. The check before insert is
backed by a partial unique index, and confirm/reject are compare-and-swap
updates on the payment status, so concurrent confirmations cannot both win.
The order's cached payment status is kept in step after every change.
"""
import logging

from sqlalchemy.exc import IntegrityError

from .audit import safe_record
from .errors import AlreadyConfirmed, AlreadyPaid, InvalidRequestError, NotFoundError, PaymentRejected
from .events import EventType, customer_channel, safe_publish, staff_channel
from .models import (
    AuditAction,
    EntityType,
    OrderPaymentStatus,
    Payment,
    PaymentMethod,
    PaymentRead,
    PaymentStatus,
)
from .ports import AuditSink, CatalogReader, EventPublisher, OrderReader
from .store import PaymentStore

logger = logging.getLogger(__name__)


def payment_payload(payment: Payment) -> dict:
    return PaymentRead.model_validate(payment.model_dump()).model_dump(mode="json")


class PaymentLedger:
    def __init__(
        self,
        payments: PaymentStore,
        orders: OrderReader,
        catalog: CatalogReader,
        publisher: EventPublisher,
        audit: AuditSink,
    ):
        self.payments = payments
        self.orders = orders
        self.catalog = catalog
        self.publisher = publisher
        self.audit = audit

    def create(
        self,
        order_id: int,
        method: PaymentMethod,
        amount: int | None = None,
        proof_url: str | None = None,
        note: str | None = None,
        mark_as_paid: bool = False,
        actor_user_id: int | None = None,
        company_id: int | None = None,
    ) -> Payment:
        order = self.orders.get(order_id, company_id)
        if not order:
            raise NotFoundError("Order not found")

        if self.payments.find_paid(order.id):
            raise AlreadyPaid(order.id)

        outlet = self.catalog.get_outlet(order.outlet_id)
        if outlet and method.value not in (outlet.enabled_payment_methods or []):
            raise InvalidRequestError(f"Payment method {method.value} is not enabled for this outlet")

        if amount is None:
            amount = order.total
        if amount < 0:
            raise InvalidRequestError("Payment amount cannot be negative")

        status = (
            PaymentStatus.PAID
            if method == PaymentMethod.CASH and mark_as_paid
            else PaymentStatus.PENDING
        )

        payment = Payment(
            company_id=order.company_id,
            outlet_id=order.outlet_id,
            order_id=order.id,
            method=method,
            amount=amount,
            status=status,
            proof_url=proof_url,
            note=note,
            confirmed_by_user_id=actor_user_id if status == PaymentStatus.PAID else None,
        )
        try:
            payment = self.payments.add(payment)
        except IntegrityError:
            # Another request settled this order between the check and the insert
            raise AlreadyPaid(order.id)

        self.orders.set_payment_status(
            order.id,
            OrderPaymentStatus.PAID if status == PaymentStatus.PAID else OrderPaymentStatus.PENDING,
        )
        logger.info(f"Payment #{payment.id} created for order #{order.id}: {method.value} {amount} ({status.value})")

        self._notify(EventType.PAYMENT_CREATED, payment)
        safe_record(
            self.audit,
            AuditAction.CREATE,
            EntityType.PAYMENT,
            entity_id=payment.id,
            actor_user_id=actor_user_id,
            company_id=payment.company_id,
            detail={"order_id": order.id, "method": method.value, "status": status.value},
        )
        return payment

    def confirm(
        self,
        payment_id: int,
        company_id: int,
        actor_user_id: int,
        note: str | None = None,
    ) -> Payment:
        payment = self._get_pending(payment_id, company_id)

        values = {"confirmed_by_user_id": actor_user_id}
        if note:
            values["note"] = note
        try:
            settled = self.payments.transition(
                payment.id, company_id, PaymentStatus.PENDING, PaymentStatus.PAID, **values
            )
        except IntegrityError:
            raise AlreadyPaid(payment.order_id)
        if not settled:
            self._raise_for_current_state(payment)

        payment = self.payments.refresh(payment)
        self.orders.set_payment_status(payment.order_id, OrderPaymentStatus.PAID)
        logger.info(f"Payment #{payment.id} confirmed by user {actor_user_id} for order #{payment.order_id}")

        self._notify(EventType.PAYMENT_UPDATED, payment)
        safe_record(
            self.audit,
            AuditAction.PAYMENT_CONFIRM,
            EntityType.PAYMENT,
            entity_id=payment.id,
            actor_user_id=actor_user_id,
            company_id=company_id,
            detail={"order_id": payment.order_id},
        )
        return payment

    def reject(
        self,
        payment_id: int,
        company_id: int,
        actor_user_id: int,
        note: str | None = None,
    ) -> Payment:
        payment = self._get_pending(payment_id, company_id)

        values = {"note": note} if note else {}
        rejected = self.payments.transition(
            payment.id, company_id, PaymentStatus.PENDING, PaymentStatus.REJECTED, **values
        )
        if not rejected:
            self._raise_for_current_state(payment)

        payment = self.payments.refresh(payment)
        # Back to UNPAID, not PENDING: the guest has to start a new payment.
        # A stale attempt rejected after another one settled leaves it PAID.
        if not self.payments.find_paid(payment.order_id):
            self.orders.set_payment_status(payment.order_id, OrderPaymentStatus.UNPAID)
        logger.info(f"Payment #{payment.id} rejected by user {actor_user_id} for order #{payment.order_id}")

        self._notify(EventType.PAYMENT_UPDATED, payment)
        safe_record(
            self.audit,
            AuditAction.PAYMENT_REJECT,
            EntityType.PAYMENT,
            entity_id=payment.id,
            actor_user_id=actor_user_id,
            company_id=company_id,
            detail={"order_id": payment.order_id},
        )
        return payment

    def confirm_by_order(
        self,
        order_id: int,
        company_id: int,
        actor_user_id: int,
        note: str | None = None,
    ) -> Payment:
        """Confirm the most recently created payment of an order."""
        payment = self.payments.latest_for_order(order_id, company_id)
        if not payment:
            raise NotFoundError("Payment not found for this order")
        return self.confirm(payment.id, company_id, actor_user_id, note)

    def find_by_order(self, order_id: int, company_id: int | None = None) -> list[Payment]:
        return self.payments.list_by_order(order_id, company_id)

    def latest_for_order(self, order_id: int, company_id: int | None = None) -> Payment | None:
        return self.payments.latest_for_order(order_id, company_id)

    def _get_pending(self, payment_id: int, company_id: int) -> Payment:
        payment = self.payments.get(payment_id, company_id)
        if not payment:
            raise NotFoundError("Payment not found")
        if payment.status != PaymentStatus.PENDING:
            self._raise_for_status(payment)
        return payment

    def _raise_for_current_state(self, payment: Payment) -> None:
        # The conditional update matched nothing: someone else moved it first
        payment = self.payments.refresh(payment)
        self._raise_for_status(payment)
        raise NotFoundError("Payment not found")

    @staticmethod
    def _raise_for_status(payment: Payment) -> None:
        if payment.status == PaymentStatus.PAID:
            raise AlreadyConfirmed(payment.id)
        if payment.status == PaymentStatus.REJECTED:
            raise PaymentRejected(payment.id)

    def _notify(self, event: EventType, payment: Payment) -> None:
        payload = payment_payload(payment)
        safe_publish(self.publisher, staff_channel(payment.company_id, payment.outlet_id), event, payload)
        safe_publish(self.publisher, customer_channel(payment.order_id), event, payload)
