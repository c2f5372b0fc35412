"""
Order Lifecycle Manager

Creates priced orders and drives them through the kitchen/service lifecycle:

    NEW -> ACCEPTED -> IN_PROGRESS -> READY -> SERVED -> CLOSED
    CANCELLED from any non-terminal state

Status edges are not enforced by default: any order can be moved to any
status, including out of CLOSED. Setting STRICT_STATUS_TRANSITIONS=true makes
terminal states immutable and only allows forward moves (or cancellation).

Every mutation is persisted first, then published to the staff/customer
channels and recorded in the audit trail. Publishing and auditing are
best-effort and never fail the mutation.
"""
import logging
import math
import secrets
import string
from collections.abc import Callable, Iterable

from sqlalchemy.exc import IntegrityError

from .audit import safe_record
from .errors import CodeGenerationExhausted, InvalidRequestError, InvalidTransition, NotFoundError
from .events import EventType, customer_channel, safe_publish, staff_channel
from .models import (
    TERMINAL_ORDER_STATUSES,
    AuditAction,
    EntityType,
    Order,
    OrderCreate,
    OrderCustomer,
    OrderPage,
    OrderPaymentStatus,
    OrderRead,
    OrderStatus,
    OutletSummary,
    PaymentInstructions,
    PaymentMethod,
    PaymentRead,
    PublicOrderView,
)
from .payment_service import PaymentLedger
from .ports import AuditSink, CatalogReader, EventPublisher
from .pricing import OutletSettings, calculate_order
from .settings import settings
from .store import OrderStore

logger = logging.getLogger(__name__)


ORDER_CODE_ALPHABET = string.digits + string.ascii_uppercase

# Forward order of the kitchen/service lifecycle
STATUS_SEQUENCE = (
    OrderStatus.NEW,
    OrderStatus.ACCEPTED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.READY,
    OrderStatus.SERVED,
    OrderStatus.CLOSED,
)


def generate_order_code(length: int | None = None) -> str:
    """Random uppercase base-36 code, e.g. 'K7Q2ZD'."""
    length = length or settings.order_code_length
    return "".join(secrets.choice(ORDER_CODE_ALPHABET) for _ in range(length))


def is_forward_transition(current: OrderStatus, requested: OrderStatus) -> bool:
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if requested == OrderStatus.CANCELLED:
        return True
    return STATUS_SEQUENCE.index(requested) > STATUS_SEQUENCE.index(current)


def order_payload(order: Order) -> dict:
    return OrderRead.from_order(order).model_dump(mode="json")


class OrderLifecycleManager:
    def __init__(
        self,
        orders: OrderStore,
        catalog: CatalogReader,
        payments: PaymentLedger,
        publisher: EventPublisher,
        audit: AuditSink,
        code_generator: Callable[[], str] = generate_order_code,
        max_code_attempts: int | None = None,
        strict_transitions: bool | None = None,
    ):
        self.orders = orders
        self.catalog = catalog
        self.payments = payments
        self.publisher = publisher
        self.audit = audit
        self.code_generator = code_generator
        self.max_code_attempts = max_code_attempts or settings.order_code_max_attempts
        self.strict_transitions = (
            settings.strict_status_transitions if strict_transitions is None else strict_transitions
        )

    # ============ CREATE ============

    def create(self, request: OrderCreate, actor_user_id: int | None = None) -> Order:
        outlet = self.catalog.get_outlet(request.outlet_id)
        if not outlet or not outlet.is_active:
            raise NotFoundError("Outlet not found")

        if not request.items:
            raise InvalidRequestError("Order must have at least one item")
        if any(item.qty < 1 for item in request.items):
            raise InvalidRequestError("Item quantity must be at least 1")
        if request.discount < 0:
            raise InvalidRequestError("Discount cannot be negative")

        outlet_settings = OutletSettings.from_outlet(outlet)

        # Settling without a method means cash at the counter
        method = request.payment_method
        if method is None and request.mark_as_paid:
            method = PaymentMethod.CASH
        if method is not None and method not in outlet_settings.enabled_payment_methods:
            raise InvalidRequestError(f"Payment method {method.value} is not enabled for this outlet")

        priced = calculate_order(self.catalog, request.items, outlet_settings, discount=request.discount)
        if priced.discount > priced.subtotal:
            raise InvalidRequestError("Discount cannot exceed the order subtotal")

        customer = request.customer or OrderCustomer()
        order = self._insert_with_unique_code(lambda code: Order(
            company_id=outlet.company_id,
            outlet_id=outlet.id,
            order_code=code,
            table_id=request.table_id,
            session_id=request.session_id,
            channel=request.channel,
            customer_type=customer.type,
            customer_name=customer.name,
            customer_phone=customer.phone,
            member_user_id=customer.member_user_id,
            items=[item.model_dump(mode="json") for item in priced.items],
            subtotal=priced.subtotal,
            discount=priced.discount,
            tax=priced.tax,
            service=priced.service,
            total=priced.total,
            status=OrderStatus.NEW,
            payment_status=OrderPaymentStatus.UNPAID,
            created_by_user_id=actor_user_id,
            note=request.note,
        ))
        logger.info(
            f"Order #{order.id} ({order.order_code}) created at outlet {order.outlet_id} "
            f"via {order.channel.value}: total={order.total}"
        )

        if method is not None:
            self.payments.create(
                order.id,
                method,
                mark_as_paid=request.mark_as_paid,
                actor_user_id=actor_user_id,
                company_id=order.company_id,
            )
            order = self.orders.get(order.id)

        safe_publish(
            self.publisher,
            staff_channel(order.company_id, order.outlet_id),
            EventType.ORDER_CREATED,
            order_payload(order),
        )
        safe_record(
            self.audit,
            AuditAction.CREATE,
            EntityType.ORDER,
            entity_id=order.id,
            actor_user_id=actor_user_id,
            company_id=order.company_id,
            detail={"order_code": order.order_code, "channel": order.channel.value},
        )
        return order

    def _insert_with_unique_code(self, build: Callable[[str], Order]) -> Order:
        for attempt in range(1, self.max_code_attempts + 1):
            code = self.code_generator()
            if self.orders.code_exists(code):
                logger.debug(f"Order code {code} already taken (attempt {attempt})")
                continue
            try:
                return self.orders.add(build(code))
            except IntegrityError:
                # Lost a race for the same code against a concurrent insert
                logger.warning(f"Order code {code} collided on insert (attempt {attempt})")
        raise CodeGenerationExhausted(self.max_code_attempts)

    # ============ STATUS ============

    def transition(
        self,
        order_id: int,
        company_id: int,
        new_status: OrderStatus,
        actor_user_id: int | None = None,
    ) -> Order:
        order = self.orders.get(order_id, company_id)
        if not order:
            raise NotFoundError("Order not found")

        old_status = order.status
        if self.strict_transitions and not is_forward_transition(old_status, new_status):
            raise InvalidTransition(old_status.value, new_status.value)

        order = self.orders.update_status(order, new_status)
        logger.info(f"Order #{order.id} status {old_status.value} -> {new_status.value}")

        payload = order_payload(order)
        safe_publish(
            self.publisher,
            staff_channel(order.company_id, order.outlet_id),
            EventType.ORDER_STATUS_UPDATED,
            payload,
        )
        safe_publish(self.publisher, customer_channel(order.id), EventType.ORDER_STATUS_UPDATED, payload)
        safe_record(
            self.audit,
            AuditAction.STATUS_CHANGE,
            EntityType.ORDER,
            entity_id=order.id,
            actor_user_id=actor_user_id,
            company_id=company_id,
            detail={"old_status": old_status.value, "new_status": new_status.value},
        )
        return order

    # ============ QUERIES ============

    def get(self, order_id: int, company_id: int | None = None) -> Order:
        order = self.orders.get(order_id, company_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_by_code(self, order_code: str) -> Order:
        order = self.orders.get_by_code(order_code.strip().upper())
        if not order:
            raise NotFoundError("Order not found")
        return order

    def list_by_outlet(
        self,
        company_id: int,
        outlet_id: int | None = None,
        statuses: Iterable[OrderStatus] | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> OrderPage:
        page = max(page, 1)
        limit = min(max(limit or settings.default_page_size, 1), settings.max_page_size)
        orders, total = self.orders.list_by_outlet(
            company_id,
            outlet_id=outlet_id,
            statuses=statuses,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return OrderPage(
            data=[OrderRead.from_order(o) for o in orders],
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )

    def get_public(self, order_id: int) -> PublicOrderView:
        """Guest tracking view: order, outlet contact, latest payment and how to pay."""
        order = self.get(order_id)
        outlet = self.catalog.get_outlet(order.outlet_id)
        payment = self.payments.latest_for_order(order.id)

        instructions = None
        if outlet and (outlet.transfer_instructions or outlet.qr_instructions):
            instructions = PaymentInstructions(
                transfer=outlet.transfer_instructions,
                qr=outlet.qr_instructions,
            )

        return PublicOrderView(
            order=OrderRead.from_order(order),
            outlet=OutletSummary(
                id=outlet.id, name=outlet.name, address=outlet.address, phone=outlet.phone
            ) if outlet else None,
            payment=PaymentRead.model_validate(payment.model_dump()) if payment else None,
            payment_instructions=instructions,
        )
