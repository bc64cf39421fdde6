"""
Schemas for the storefront API

Entity models mirror the database tables:
- User -> "users"
- Product -> "products"
- Order / OrderItem -> "orders" / "order_items"

Request models validate raw query-string or JSON input before any query runs and
are shared with the typed client in ``storefront.client``. Every model speaks
camelCase on the wire and also accepts snake_case keys.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Type, TypeVar, get_args

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    JsonValue,
    TypeAdapter,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from storefront.errors import ProductAlreadyDeleted

Category = Literal[
    "Two-Wheeler Batteries",
    "Four-Wheeler Batteries",
    "Inverters",
    "Solar PCU",
    "UPS Battery",
    "Inverter Trolley",
    "Battery Tray",
    "Others",
]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
Role = Literal["admin", "user"]
Period = Literal["7d", "30d", "90d", "1y"]

CATEGORIES = list(get_args(Category))
ORDER_STATUSES = list(get_args(OrderStatus))

# Opaque JSON object (addresses, specifications); consumers impose structure.
JsonObject = Dict[str, JsonValue]

_http_url = TypeAdapter(HttpUrl)


def _check_url(value: str) -> str:
    try:
        _http_url.validate_python(value)
    except ValidationError:
        raise ValueError("Invalid URL")
    return value


UrlStr = Annotated[str, AfterValidator(_check_url)]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _reject_nulls(model: BaseModel, fields) -> None:
    for name in fields:
        if name in model.model_fields_set and getattr(model, name) is None:
            raise ValueError(f"{to_camel(name)} cannot be null")


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class User(ApiModel):
    id: int
    email: str = Field(..., description="Unique login email")
    display_name: str = Field(..., description="Name shown in the UI")
    avatar_url: Optional[str] = None
    role: Role = Field("user", description="admin or user")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "User":
        return cls(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            avatar_url=row["avatar_url"],
            role=row["role"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ProductLifecycle(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class Product(ApiModel):
    id: int
    title: str
    description: Optional[str] = None
    category: str = Field(..., description="One of CATEGORIES")
    brand: str
    image_url: Optional[str] = None
    dp_price: float = Field(..., description="Dealer price, never above mrp_price")
    mrp_price: float = Field(..., description="Maximum retail price")
    stock: int = Field(0, ge=0)
    tags: List[str] = Field(default_factory=list)
    specifications: Optional[JsonObject] = None
    lifecycle: ProductLifecycle = Field(ProductLifecycle.ACTIVE, exclude=True)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _lifecycle_from_flag(cls, data: Any) -> Any:
        if isinstance(data, dict) and "lifecycle" not in data:
            flag = data.get("isActive", data.get("is_active"))
            if flag is not None:
                data = {**data, "lifecycle": ProductLifecycle.ACTIVE if flag else ProductLifecycle.DELETED}
        return data

    @computed_field(alias="isActive")
    @property
    def is_active(self) -> bool:
        return self.lifecycle is ProductLifecycle.ACTIVE

    @computed_field(alias="stockStatus")
    @property
    def stock_status(self) -> Literal["in_stock", "out_of_stock"]:
        return "in_stock" if self.stock > 0 else "out_of_stock"

    def mark_deleted(self) -> "Product":
        """Return the deleted form of this product; deleting twice is illegal."""
        if self.lifecycle is ProductLifecycle.DELETED:
            raise ProductAlreadyDeleted()
        return self.model_copy(update={"lifecycle": ProductLifecycle.DELETED})

    @classmethod
    def from_row(cls, row, **extra) -> "Product":
        return cls(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            brand=row["brand"],
            image_url=row["image_url"],
            dp_price=float(row["dp_price"]),
            mrp_price=float(row["mrp_price"]),
            stock=row["stock"] or 0,
            tags=row["tags"] or [],
            specifications=row["specifications"],
            lifecycle=ProductLifecycle.ACTIVE if row["is_active"] else ProductLifecycle.DELETED,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            **extra,
        )


class OrderItem(ApiModel):
    id: int
    product_id: Optional[int] = Field(None, description="Null once the product row is gone")
    product_title: str
    product_brand: Optional[str] = None
    product_category: Optional[str] = None
    product_image_url: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float


class Customer(ApiModel):
    id: int
    email: str
    display_name: str


class Order(ApiModel):
    id: int
    user_id: Optional[int] = Field(None, description="Null for guest orders")
    status: OrderStatus
    total_amount: float
    payment_status: Optional[str] = None
    payment_method: Optional[str] = None
    shipping_address: Optional[JsonObject] = None
    billing_address: Optional[JsonObject] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    customer: Optional[Customer] = None
    items: List[OrderItem] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row, customer: Optional[Customer] = None, items=None) -> "Order":
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            status=row["status"],
            total_amount=float(row["total_amount"]),
            payment_status=row["payment_status"],
            payment_method=row["payment_method"],
            shipping_address=row["shipping_address"],
            billing_address=row["billing_address"],
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            customer=customer,
            items=items or [],
        )


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


class Pagination(ApiModel):
    current_page: int
    total_pages: int
    total_count: int
    limit: int
    has_next_page: bool
    has_previous_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total_count: int) -> "Pagination":
        total_pages = math.ceil(total_count / limit)
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_count=total_count,
            limit=limit,
            has_next_page=page < total_pages,
            has_previous_page=page > 1,
        )


# ---------------------------------------------------------------------------
# Request validators
# ---------------------------------------------------------------------------

M = TypeVar("M", bound=BaseModel)


def parse_query(model: Type[M], query_params) -> M:
    """Validate a Starlette ``QueryParams`` (or plain mapping) into ``model``.

    Keys given more than once arrive as lists.
    """
    data: Dict[str, Any] = {}
    if hasattr(query_params, "getlist"):
        for key in query_params.keys():
            values = query_params.getlist(key)
            data[key] = values if len(values) > 1 else values[0]
    else:
        data = dict(query_params)
    return model.model_validate(data)


class PageQuery(ApiModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)


class ProductListQuery(PageQuery):
    category: Optional[str] = None
    brand: Optional[str] = None
    min_price: Optional[float] = Field(None, ge=0)
    max_price: Optional[float] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    search: Optional[str] = None
    sort_by: Optional[Literal["price", "name", "created_at"]] = None
    sort_order: Optional[Literal["asc", "desc"]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _split_tags(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        tags = [t.strip() for item in value for t in str(item).split(",") if t.strip()]
        return tags or None


class ProductGetQuery(ApiModel):
    id: int = Field(..., gt=0)


class ProductCreate(ApiModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    category: Category
    brand: str = Field(..., min_length=1, max_length=100)
    image_url: Optional[UrlStr] = None
    dp_price: float = Field(..., gt=0)
    mrp_price: float = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    specifications: Optional[JsonObject] = None
    tags: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _dp_not_above_mrp(self):
        if self.dp_price > self.mrp_price:
            raise ValueError("DP price cannot be higher than MRP price")
        return self


class ProductUpdate(ApiModel):
    id: int = Field(..., gt=0)
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    brand: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[Category] = None
    dp_price: Optional[float] = Field(None, gt=0)
    mrp_price: Optional[float] = Field(None, gt=0)
    stock: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    image_url: Optional[UrlStr] = None
    tags: Optional[List[str]] = None
    specifications: Optional[JsonObject] = None

    @model_validator(mode="after")
    def _required_columns_not_null(self):
        _reject_nulls(self, ("title", "brand", "category", "dp_price", "mrp_price", "stock", "is_active"))
        return self

    def changes(self) -> Dict[str, Any]:
        """Column values for the fields the caller actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"id"})


class ProductDelete(ApiModel):
    product_id: int = Field(..., gt=0)


class OrderListQuery(PageQuery):
    status: Optional[OrderStatus] = None
    user_id: Optional[int] = Field(None, gt=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _naive_utc(cls, value):
        # stored timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class OrderStatusUpdate(ApiModel):
    order_id: int = Field(..., gt=0)
    status: OrderStatus


class CheckoutItem(ApiModel):
    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1)


class CheckoutRequest(ApiModel):
    items: List[CheckoutItem] = Field(..., min_length=1)
    payment_method: str = Field("cash_on_delivery", min_length=1, max_length=32)
    shipping_address: JsonObject
    billing_address: Optional[JsonObject] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("items")
    @classmethod
    def _distinct_products(cls, items):
        ids = [i.product_id for i in items]
        if len(ids) != len(set(ids)):
            raise ValueError("Each product may appear only once")
        return items


def _clamp(value, default: int, upper: Optional[int] = None) -> int:
    try:
        num = int(value)
    except (TypeError, ValueError):
        return default
    if num < 1:
        return default
    if upper is not None and num > upper:
        return upper
    return num


class UserListQuery(ApiModel):
    page: int = 1
    limit: int = 20
    search: str = ""

    @field_validator("page", mode="before")
    @classmethod
    def _clamp_page(cls, value):
        return _clamp(value, 1)

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, value):
        return _clamp(value, 20, 100)


class RoleUpdate(ApiModel):
    user_id: int = Field(..., gt=0)
    new_role: Role


class UserOrdersQuery(PageQuery):
    limit: int = Field(10, ge=1, le=100)
    status: Optional[OrderStatus] = None


class WishlistQuery(PageQuery):
    pass


class WishlistChange(ApiModel):
    product_id: int = Field(..., gt=0)


class ProfileUpdate(ApiModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    avatar_url: Optional[UrlStr] = None

    @model_validator(mode="after")
    def _required_columns_not_null(self):
        _reject_nulls(self, ("display_name", "email"))
        return self


class AnalyticsQuery(ApiModel):
    period: Period = "30d"


class LoginRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=72)


class RegisterRequest(ApiModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)
    display_name: str = Field(..., min_length=1, max_length=100)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ProductListResponse(ApiModel):
    products: List[Product]
    pagination: Pagination


class DeleteProductResponse(ApiModel):
    success: bool
    message: str
    product_id: int


class OrderListResponse(ApiModel):
    orders: List[Order]
    pagination: Pagination


class OrderStatusResponse(ApiModel):
    success: bool
    order: Order


class UserSummary(ApiModel):
    id: int
    email: str
    display_name: str
    role: Role
    registration_date: Optional[datetime] = None


class UserListResponse(ApiModel):
    users: List[UserSummary]
    pagination: Pagination


class UserResponse(ApiModel):
    user: User


class RoleUpdateResponse(ApiModel):
    success: bool
    user: User
    message: str


class WishlistProduct(Product):
    added_to_wishlist_at: Optional[datetime] = None


class WishlistResponse(ApiModel):
    products: List[WishlistProduct]
    pagination: Pagination


class WishlistChangeResponse(ApiModel):
    success: bool
    message: str
    wishlist_item_id: Optional[int] = None


class MessageResponse(ApiModel):
    success: bool
    message: str


class StatusBreakdown(ApiModel):
    pending: int = 0
    processing: int = 0
    shipped: int = 0
    delivered: int = 0
    cancelled: int = 0


class RecentActivity(ApiModel):
    product_title: str
    quantity: int
    total_price: float
    order_date: Optional[datetime] = None
    status: str


class CategoryStat(ApiModel):
    category: str
    order_count: int
    total_spent: float


class UserAnalytics(ApiModel):
    total_orders: int
    total_amount_spent: float
    orders_in_period: int
    amount_in_period: float
    average_order_value: float
    order_status_breakdown: StatusBreakdown
    order_status_breakdown_period: StatusBreakdown
    recent_activity: List[RecentActivity]
    favorite_categories: List[CategoryStat]
    last_order_date: Optional[datetime] = None
    period: Period


class DashboardSummary(ApiModel):
    total_sales: float
    total_orders: int
    total_products: int
    total_customers: int


class StatusCount(ApiModel):
    status: str
    count: int


class TopProduct(ApiModel):
    id: int
    title: str
    brand: str
    category: str
    price: float
    quantity_sold: int
    revenue: float


class RecentOrder(ApiModel):
    id: int
    total_amount: float
    status: str
    payment_status: Optional[str] = None
    created_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None


class RevenuePoint(ApiModel):
    date: str
    revenue: float
    order_count: int


class Dashboard(ApiModel):
    summary: DashboardSummary
    orders_by_status: List[StatusCount]
    top_selling_products: List[TopProduct]
    recent_orders: List[RecentOrder]
    revenue_trends: List[RevenuePoint]
