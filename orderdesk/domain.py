from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, confloat, conint, field_validator, model_validator

# One minor currency unit.
AMOUNT_TOLERANCE = 0.01


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps are stored and read as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.RETURNED})


class PaymentStatus(str, Enum):
    PAID = "paid"
    UNPAID = "unpaid"
    PENDING = "pending"
    FAILED = "failed"
    REFUNDED = "refunded"


class EventType(str, Enum):
    ORDER_STATUS_CHANGED = "order.status_changed"
    BULK_ACTION_COMPLETED = "orders.bulk_completed"


class Role(str, Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


class ScopeKind(str, Enum):
    ALL = "all"
    CUSTOMER = "customer"


class ArtifactKind(str, Enum):
    PRINT = "print"
    EXPORT = "export"


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class TokenInput(BaseModel):
    token: str


class AuthContext(BaseModel):
    sub: str
    iss: str
    exp: int
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class LineItem(BaseModel):
    product_ref: str
    name: str
    unit_price: confloat(ge=0)
    quantity: conint(ge=1)
    image_ref: Optional[str] = None

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


class CustomerSnapshot(BaseModel):
    """Customer fields copied onto the order when it was placed."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: Optional[str] = None


class ShippingAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    street: str
    city: str
    state: str
    zip_code: str
    country: str
    phone: Optional[str] = None


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: OrderStatus
    changed_at: datetime
    note: Optional[str] = None

    @field_validator("changed_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)


class Order(BaseModel):
    """A placed order.

    Orders are immutable: a status change yields a new instance through
    ``lifecycle.set_status``. ``total`` must match
    ``subtotal + shipping_cost + tax`` within ``AMOUNT_TOLERANCE`` and an
    order that has left ``pending`` always carries at least one item.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    order_number: str
    customer_id: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    items: List[LineItem] = Field(default_factory=list)
    customer: CustomerSnapshot
    shipping_address: Optional[ShippingAddress] = None
    payment_method: str = "cod"
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    subtotal: confloat(ge=0) = 0.0
    shipping_cost: confloat(ge=0) = 0.0
    tax: confloat(ge=0) = 0.0
    total: confloat(ge=0) = 0.0
    tracking_number: Optional[str] = None
    status_history: List[StatusHistoryEntry] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> "Order":
        expected = self.subtotal + self.shipping_cost + self.tax
        # Epsilon absorbs binary float noise at the tolerance boundary.
        if abs(self.total - expected) > AMOUNT_TOLERANCE + 1e-9:
            raise ValueError(
                f"total {self.total} does not match subtotal + shipping_cost + tax ({round(expected, 2)})"
            )
        if not self.items and self.status != OrderStatus.PENDING:
            raise ValueError("an order past pending must have at least one item")
        return self


class OrderScope(BaseModel):
    kind: ScopeKind = ScopeKind.ALL
    customer_id: Optional[str] = None

    @classmethod
    def all_orders(cls) -> "OrderScope":
        return cls(kind=ScopeKind.ALL)

    @classmethod
    def for_customer(cls, customer_id: str) -> "OrderScope":
        return cls(kind=ScopeKind.CUSTOMER, customer_id=customer_id)

    def includes(self, order: Order) -> bool:
        if self.kind == ScopeKind.ALL:
            return True
        return order.customer_id is not None and order.customer_id == self.customer_id


class TimelineStep(BaseModel):
    status: OrderStatus
    label: str
    completed: bool
    current: bool
    upcoming: bool


class StatusTimeline(BaseModel):
    status: OrderStatus
    progress_index: int
    terminal: bool
    steps: List[TimelineStep]


class QueryState(BaseModel):
    search_term: str = ""
    status_filter: Optional[OrderStatus] = None
    date_filter: Optional[date] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = 1
    page_size: int = 10

    @field_validator("page", "page_size")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(value, 1)

    @field_validator("search_term", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class OrderPage(BaseModel):
    items: List[Order]
    page: int
    page_size: int
    total_items: int
    total_pages: int

    @property
    def visible_ids(self) -> List[str]:
        return [order.id for order in self.items]


class UpdateStatusAction(BaseModel):
    kind: Literal["updateStatus"] = "updateStatus"
    status: OrderStatus
    note: Optional[str] = None


class PrintAction(BaseModel):
    kind: Literal["print"] = "print"


class ExportAction(BaseModel):
    kind: Literal["export"] = "export"


class FulfillAction(BaseModel):
    kind: Literal["fulfill"] = "fulfill"


BulkAction = Annotated[
    Union[UpdateStatusAction, PrintAction, ExportAction, FulfillAction],
    Field(discriminator="kind"),
]


class ArtifactRef(BaseModel):
    kind: ArtifactKind
    reference: str
    order_ids: List[str]
    created_at: datetime


class BulkFailure(BaseModel):
    order_id: str
    reason: str


class BulkActionResult(BaseModel):
    kind: str
    requested: List[str]
    succeeded: List[str] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    artifact: Optional[ArtifactRef] = None

    @property
    def failed_ids(self) -> List[str]:
        return [failure.order_id for failure in self.failed]

    @property
    def fully_succeeded(self) -> bool:
        return not self.failed


class BulkRequest(BaseModel):
    action: BulkAction
    order_ids: List[str]


class ViewBulkRequest(BaseModel):
    action: BulkAction


class StatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None
    tracking_number: Optional[str] = None


class SelectionToggle(BaseModel):
    order_id: str


class OrderRollup(BaseModel):
    total_orders: int
    total_spent: float
    average_order_value: Optional[float] = None
    last_order_at: Optional[datetime] = None

    @property
    def has_ordered(self) -> bool:
        return self.last_order_at is not None


class OrderStats(BaseModel):
    period_start: datetime
    generated_at: datetime
    total_orders: int
    total_revenue: float
    average_order_value: Optional[float] = None
    by_status: Dict[str, OrderRollup]


class OrderDetail(BaseModel):
    order: Order
    timeline: StatusTimeline
    item_count: int


class CustomerSummary(BaseModel):
    customer_id: str
    rollup: OrderRollup
    recent_orders: List[Order]


class ViewState(BaseModel):
    view_id: str
    scope: OrderScope
    query: QueryState
    page: OrderPage
    selected_ids: List[str]
    all_selected: bool
    pending: Dict[str, OrderStatus] = Field(default_factory=dict)


class HealthStatus(BaseModel):
    status: str
    time: datetime


class EventMessage(BaseModel):
    id: str
    type: str
    timestamp: datetime
    payload: Dict[str, Any]
