from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection

from storefront.auth import get_optional_user, require_admin
from storefront.database import get_db, order_items, orders, products, refresh_user_analytics, users, utcnow
from storefront.errors import InvalidRequest, NotFound
from storefront.logger import get_logger
from storefront.schemas import (
    CheckoutRequest,
    Customer,
    Order,
    OrderItem,
    OrderListQuery,
    OrderListResponse,
    OrderStatusResponse,
    OrderStatusUpdate,
    Pagination,
    User,
    page_offset,
    parse_query,
)

_logger = get_logger(__name__)

router = APIRouter(prefix="/_api/orders", tags=["orders"])


def load_items(conn: Connection, order_ids: Iterable[int]) -> Dict[int, List[OrderItem]]:
    """Line items grouped by order id, snapshot fields first, live product second."""
    order_ids = list(order_ids)
    grouped: Dict[int, List[OrderItem]] = defaultdict(list)
    if not order_ids:
        return grouped
    rows = conn.execute(
        select(
            order_items.c.id,
            order_items.c.order_id,
            order_items.c.product_id,
            order_items.c.product_title,
            func.coalesce(order_items.c.product_brand, products.c.brand).label("product_brand"),
            func.coalesce(order_items.c.product_category, products.c.category).label("product_category"),
            func.coalesce(order_items.c.product_image_url, products.c.image_url).label("product_image_url"),
            order_items.c.quantity,
            order_items.c.unit_price,
            order_items.c.total_price,
        )
        .select_from(order_items.outerjoin(products, order_items.c.product_id == products.c.id))
        .where(order_items.c.order_id.in_(order_ids))
        .order_by(order_items.c.id)
    ).mappings()
    for row in rows:
        grouped[row["order_id"]].append(
            OrderItem(
                id=row["id"],
                product_id=row["product_id"],
                product_title=row["product_title"],
                product_brand=row["product_brand"],
                product_category=row["product_category"],
                product_image_url=row["product_image_url"],
                quantity=row["quantity"],
                unit_price=float(row["unit_price"]),
                total_price=float(row["total_price"]),
            )
        )
    return grouped


def fetch_order(conn: Connection, order_id: int) -> Optional[Order]:
    row = conn.execute(select(orders).where(orders.c.id == order_id)).mappings().first()
    if not row:
        return None
    return Order.from_row(row, items=load_items(conn, [order_id])[order_id])


@router.get("/list", response_model=OrderListResponse)
def list_orders(request: Request, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    params = parse_query(OrderListQuery, request.query_params)

    conditions = []
    if params.status:
        conditions.append(orders.c.status == params.status)
    if params.user_id:
        conditions.append(orders.c.user_id == params.user_id)
    if params.start_date:
        conditions.append(orders.c.created_at >= params.start_date)
    if params.end_date:
        conditions.append(orders.c.created_at <= params.end_date)

    total_count = conn.execute(select(func.count()).select_from(orders).where(*conditions)).scalar_one()

    rows = conn.execute(
        select(
            orders,
            users.c.email.label("customer_email"),
            users.c.display_name.label("customer_display_name"),
        )
        .select_from(orders.outerjoin(users, orders.c.user_id == users.c.id))
        .where(*conditions)
        .order_by(orders.c.created_at.desc(), orders.c.id.desc())
        .limit(params.limit)
        .offset(page_offset(params.page, params.limit))
    ).mappings().all()

    items = load_items(conn, [row["id"] for row in rows])
    result = []
    for row in rows:
        customer = None
        if row["user_id"] is not None and row["customer_email"] is not None:
            customer = Customer(
                id=row["user_id"],
                email=row["customer_email"],
                display_name=row["customer_display_name"],
            )
        result.append(Order.from_row(row, customer=customer, items=items[row["id"]]))

    return OrderListResponse(
        orders=result,
        pagination=Pagination.build(params.page, params.limit, total_count),
    )


@router.post("/update_status", response_model=OrderStatusResponse)
def update_status(body: OrderStatusUpdate, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    existing = conn.execute(
        select(orders.c.id, orders.c.status, orders.c.user_id).where(orders.c.id == body.order_id)
    ).first()
    if not existing:
        raise NotFound("Order not found")

    # Any status may follow any other, last write wins.
    conn.execute(
        update(orders)
        .where(orders.c.id == body.order_id)
        .values(status=body.status, updated_at=utcnow())
    )
    refresh_user_analytics(conn, existing.user_id)
    conn.commit()
    _logger.info(f"Admin {user.id} moved order {body.order_id} from {existing.status} to {body.status}")
    return OrderStatusResponse(success=True, order=fetch_order(conn, body.order_id))


@router.post("/create", response_model=Order)
def create_order(
    body: CheckoutRequest,
    user: Optional[User] = Depends(get_optional_user),
    conn: Connection = Depends(get_db),
):
    wanted = {item.product_id: item.quantity for item in body.items}
    rows = conn.execute(
        select(products).where(products.c.id.in_(list(wanted)), products.c.is_active.is_(True))
    ).mappings().all()
    found = {row["id"]: row for row in rows}

    missing = [pid for pid in wanted if pid not in found]
    if missing:
        raise NotFound(f"Product not found or no longer available: {missing[0]}")
    for pid, quantity in wanted.items():
        if found[pid]["stock"] < quantity:
            raise InvalidRequest(f"Insufficient stock for {found[pid]['title']}")

    lines = []
    for pid, quantity in wanted.items():
        row = found[pid]
        unit_price = float(row["dp_price"])
        lines.append(
            {
                "product_id": pid,
                "product_title": row["title"],
                "product_brand": row["brand"],
                "product_category": row["category"],
                "product_image_url": row["image_url"],
                "quantity": quantity,
                "unit_price": unit_price,
                "total_price": round(unit_price * quantity, 2),
            }
        )

    now = utcnow()
    result = conn.execute(
        insert(orders).values(
            user_id=user.id if user else None,
            status="pending",
            total_amount=round(sum(line["total_price"] for line in lines), 2),
            payment_status="pending",
            payment_method=body.payment_method,
            shipping_address=body.shipping_address,
            billing_address=body.billing_address or body.shipping_address,
            notes=body.notes,
            created_at=now,
            updated_at=now,
        )
    )
    order_id = result.inserted_primary_key[0]
    conn.execute(insert(order_items), [{**line, "order_id": order_id} for line in lines])
    for line in lines:
        conn.execute(
            update(products)
            .where(products.c.id == line["product_id"])
            .values(stock=products.c.stock - line["quantity"], updated_at=now)
        )
    refresh_user_analytics(conn, user.id if user else None)
    conn.commit()

    _logger.info(f"Order {order_id} placed by {'user ' + str(user.id) if user else 'guest'} with {len(lines)} line(s)")
    return fetch_order(conn, order_id)
