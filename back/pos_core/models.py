from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import JSON, Column, Index, text
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    NEW = "NEW"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    SERVED = "SERVED"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.CLOSED, OrderStatus.CANCELLED})

# Statuses shown on the kitchen display when no filter is given
KDS_ACTIVE_STATUSES = (
    OrderStatus.NEW,
    OrderStatus.ACCEPTED,
    OrderStatus.IN_PROGRESS,
    OrderStatus.READY,
)


class OrderPaymentStatus(str, Enum):
    """Coarse settlement state cached on the order for filtering."""
    UNPAID = "UNPAID"
    PENDING = "PENDING"
    PAID = "PAID"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REJECTED = "REJECTED"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    QR = "QR"


class OrderChannel(str, Enum):
    POS = "POS"
    QR = "QR"


class CustomerType(str, Enum):
    GUEST = "GUEST"
    MEMBER = "MEMBER"


class RoundingMode(str, Enum):
    NONE = "NONE"
    NEAREST_100 = "NEAREST_100"
    NEAREST_500 = "NEAREST_500"
    NEAREST_1000 = "NEAREST_1000"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    PAYMENT_CONFIRM = "PAYMENT_CONFIRM"
    PAYMENT_REJECT = "PAYMENT_REJECT"
    SHIFT_OPEN = "SHIFT_OPEN"
    SHIFT_CLOSE = "SHIFT_CLOSE"


class EntityType(str, Enum):
    ORDER = "ORDER"
    PAYMENT = "PAYMENT"
    SHIFT = "SHIFT"


class CompanyMixin(SQLModel):
    company_id: int = Field(index=True)


# ============ CATALOG (read-only here, owned by the menu/outlet CRUD layer) ============

class Outlet(CompanyMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    address: str | None = None
    phone: str | None = None
    is_active: bool = Field(default=True)

    # Pricing settings (percent, 0-100)
    tax_rate: float = Field(default=10)
    service_rate: float = Field(default=0)
    rounding: RoundingMode = Field(default=RoundingMode.NONE)
    enabled_payment_methods: list[str] = Field(
        default_factory=lambda: [m.value for m in PaymentMethod],
        sa_column=Column(JSON),
    )
    # Shown to guests on the order tracking page
    transfer_instructions: dict | None = Field(default=None, sa_column=Column(JSON))
    qr_instructions: dict | None = Field(default=None, sa_column=Column(JSON))


class MenuItem(CompanyMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    outlet_id: int = Field(foreign_key="outlet.id", index=True)
    name: str
    base_price: int
    is_active: bool = Field(default=True)
    variants: list[dict] = Field(default_factory=list, sa_column=Column(JSON))  # [{"name": "Large", "price_delta": 5000}]
    addon_ids: list[int] = Field(default_factory=list, sa_column=Column(JSON))


class Addon(CompanyMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    outlet_id: int = Field(foreign_key="outlet.id", index=True)
    name: str
    price: int
    is_active: bool = Field(default=True)


# ============ ORDER SNAPSHOTS ============

class VariantSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    price_delta: int


class AddonSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    addon_id: int
    name: str
    price: int


class OrderItemSnapshot(BaseModel):
    """Menu data copied at order time. Later menu edits never touch it."""
    model_config = ConfigDict(frozen=True)

    menu_item_id: int
    name: str
    qty: int
    base_price: int
    variant: VariantSnapshot | None = None
    addons: tuple[AddonSnapshot, ...] = ()
    note: str | None = None
    unit_price: int
    line_total: int


# ============ ORDERS / PAYMENTS / SHIFTS ============

class Order(CompanyMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)
    order_code: str = Field(unique=True, index=True)
    outlet_id: int = Field(foreign_key="outlet.id", index=True)
    table_id: int | None = Field(default=None, index=True)
    session_id: str | None = Field(default=None, index=True)  # QR session
    channel: OrderChannel = Field(default=OrderChannel.POS)

    customer_type: CustomerType = Field(default=CustomerType.GUEST)
    customer_name: str | None = None
    customer_phone: str | None = None
    member_user_id: int | None = Field(default=None, index=True)

    # Written once at creation, see OrderItemSnapshot
    items: list[dict] = Field(default_factory=list, sa_column=Column(JSON))

    # Minor currency units
    subtotal: int
    discount: int = Field(default=0)
    tax: int = Field(default=0)
    service: int = Field(default=0)
    total: int

    status: OrderStatus = Field(default=OrderStatus.NEW, index=True)
    payment_status: OrderPaymentStatus = Field(default=OrderPaymentStatus.UNPAID, index=True)

    created_by_user_id: int | None = None  # None for guest orders
    note: str | None = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)

    def snapshot_items(self) -> tuple[OrderItemSnapshot, ...]:
        return tuple(OrderItemSnapshot.model_validate(item) for item in self.items)


class Payment(CompanyMixin, table=True):
    __table_args__ = (
        # At most one settled payment per order
        Index(
            "uq_payment_paid_per_order",
            "order_id",
            unique=True,
            sqlite_where=text("status = 'PAID'"),
            postgresql_where=text("status = 'PAID'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    outlet_id: int = Field(index=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    method: PaymentMethod
    amount: int
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    proof_url: str | None = None
    note: str | None = None
    confirmed_by_user_id: int | None = None  # Set only on settlement
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Shift(CompanyMixin, table=True):
    __table_args__ = (
        # One open shift per cashier per outlet
        Index(
            "uq_shift_open_per_cashier",
            "outlet_id",
            "cashier_user_id",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    outlet_id: int = Field(foreign_key="outlet.id", index=True)
    cashier_user_id: int = Field(index=True)
    opened_at: datetime = Field(default_factory=utcnow)
    opening_cash: int
    closed_at: datetime | None = None
    closing_cash: int | None = None
    note: str | None = None


class AuditLog(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    actor_user_id: int | None = Field(default=None, index=True)
    company_id: int | None = Field(default=None, index=True)
    action: AuditAction = Field(index=True)
    entity_type: EntityType = Field(index=True)
    entity_id: int | None = None
    detail: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, index=True)


# Request/Response Models
class OrderItemCreate(SQLModel):
    menu_item_id: int
    qty: int
    variant_name: str | None = None
    addon_ids: list[int] = []
    note: str | None = None


class OrderCustomer(SQLModel):
    type: CustomerType = CustomerType.GUEST
    member_user_id: int | None = None
    name: str | None = None
    phone: str | None = None


class OrderCreate(SQLModel):
    outlet_id: int
    table_id: int | None = None
    session_id: str | None = None
    channel: OrderChannel = OrderChannel.POS
    customer: OrderCustomer | None = None
    items: list[OrderItemCreate]
    discount: int = 0
    note: str | None = None
    payment_method: PaymentMethod | None = None
    mark_as_paid: bool = False  # Settle immediately (cash only)


class PublicOrderCreate(SQLModel):
    outlet_id: int
    table_id: int | None = None
    qr_token: str | None = None
    customer: OrderCustomer | None = None
    items: list[OrderItemCreate]
    note: str | None = None
    payment_method: PaymentMethod | None = None


class OrderStatusUpdate(SQLModel):
    status: OrderStatus


class PaymentCreate(SQLModel):
    order_id: int
    method: PaymentMethod
    amount: int | None = None
    proof_url: str | None = None
    note: str | None = None
    mark_as_paid: bool = False  # For POS cash payments


class PublicPaymentCreate(SQLModel):
    order_code: str
    method: PaymentMethod
    amount: int | None = None
    proof_url: str | None = None
    note: str | None = None


class PaymentNote(SQLModel):
    note: str | None = None


class ShiftOpen(SQLModel):
    outlet_id: int
    opening_cash: int
    note: str | None = None


class ShiftClose(SQLModel):
    closing_cash: int
    note: str | None = None
    outlet_id: int | None = None  # Narrow the lookup to one outlet


class OrderRead(SQLModel):
    id: int
    order_code: str
    company_id: int
    outlet_id: int
    table_id: int | None
    session_id: str | None
    channel: OrderChannel
    customer: OrderCustomer
    items: list[OrderItemSnapshot]
    subtotal: int
    discount: int
    tax: int
    service: int
    total: int
    status: OrderStatus
    payment_status: OrderPaymentStatus
    created_by_user_id: int | None
    note: str | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderRead":
        return cls(
            id=order.id,
            order_code=order.order_code,
            company_id=order.company_id,
            outlet_id=order.outlet_id,
            table_id=order.table_id,
            session_id=order.session_id,
            channel=order.channel,
            customer=OrderCustomer(
                type=order.customer_type,
                member_user_id=order.member_user_id,
                name=order.customer_name,
                phone=order.customer_phone,
            ),
            items=list(order.snapshot_items()),
            subtotal=order.subtotal,
            discount=order.discount,
            tax=order.tax,
            service=order.service,
            total=order.total,
            status=order.status,
            payment_status=order.payment_status,
            created_by_user_id=order.created_by_user_id,
            note=order.note,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class PaymentRead(SQLModel):
    id: int
    company_id: int
    outlet_id: int
    order_id: int
    method: PaymentMethod
    amount: int
    status: PaymentStatus
    proof_url: str | None
    note: str | None
    confirmed_by_user_id: int | None
    created_at: datetime
    updated_at: datetime


class ShiftRead(SQLModel):
    id: int
    company_id: int
    outlet_id: int
    cashier_user_id: int
    opened_at: datetime
    opening_cash: int
    closed_at: datetime | None
    closing_cash: int | None
    note: str | None


class OrderPage(SQLModel):
    data: list[OrderRead]
    total: int
    page: int
    limit: int
    total_pages: int


class OrderListEntry(OrderRead):
    payment_method: PaymentMethod | None = None


class OrderListPage(SQLModel):
    data: list[OrderListEntry]
    total: int
    page: int
    limit: int
    total_pages: int


class OutletSummary(SQLModel):
    id: int
    name: str
    address: str | None
    phone: str | None


class PaymentInstructions(SQLModel):
    transfer: dict | None = None
    qr: dict | None = None


class PublicOrderView(SQLModel):
    order: OrderRead
    outlet: OutletSummary | None
    payment: PaymentRead | None
    payment_instructions: PaymentInstructions | None
