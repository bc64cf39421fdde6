from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Request
from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from storefront.auth import get_current_user, require_admin
from storefront.database import get_db, order_items, orders, products, user_analytics, users, utcnow
from storefront.logger import get_logger
from storefront.schemas import (
    AnalyticsQuery,
    CategoryStat,
    Dashboard,
    DashboardSummary,
    RecentActivity,
    RecentOrder,
    RevenuePoint,
    StatusBreakdown,
    StatusCount,
    TopProduct,
    User,
    UserAnalytics,
    parse_query,
)

_logger = get_logger(__name__)

router = APIRouter(tags=["analytics"])

PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
TREND_DAYS = 30


def period_start(period: str, now: datetime) -> datetime:
    if period == "1y":
        try:
            return now.replace(year=now.year - 1)
        except ValueError:
            # Feb 29 has no counterpart in the previous year
            return now.replace(year=now.year - 1, day=28)
    return now - timedelta(days=PERIOD_DAYS[period])


@router.get("/_api/users/analytics", response_model=UserAnalytics)
def user_analytics_summary(request: Request, user: User = Depends(get_current_user), conn: Connection = Depends(get_db)):
    params = parse_query(AnalyticsQuery, request.query_params)
    end = utcnow()
    start = period_start(params.period, end)

    rollup = conn.execute(select(user_analytics).where(user_analytics.c.user_id == user.id)).mappings().first()

    all_time = dict(
        conn.execute(
            select(orders.c.status, func.count())
            .where(orders.c.user_id == user.id)
            .group_by(orders.c.status)
        ).all()
    )

    in_period = (orders.c.user_id == user.id, orders.c.created_at >= start, orders.c.created_at <= end)
    period_orders = conn.execute(select(orders.c.status, orders.c.total_amount).where(*in_period)).all()
    period_breakdown = {}
    for status, _ in period_orders:
        period_breakdown[status] = period_breakdown.get(status, 0) + 1
    amount_in_period = sum(float(amount) for _, amount in period_orders)

    activity = conn.execute(
        select(
            order_items.c.product_title,
            order_items.c.quantity,
            order_items.c.total_price,
            orders.c.created_at,
            orders.c.status,
        )
        .select_from(order_items.join(orders, order_items.c.order_id == orders.c.id))
        .where(*in_period)
        .order_by(orders.c.created_at.desc(), order_items.c.id.desc())
        .limit(10)
    ).mappings()

    category = func.coalesce(order_items.c.product_category, products.c.category)
    order_count = func.count(order_items.c.id)
    categories = conn.execute(
        select(
            category.label("category"),
            order_count.label("order_count"),
            func.sum(order_items.c.total_price).label("total_spent"),
        )
        .select_from(
            order_items.join(orders, order_items.c.order_id == orders.c.id).outerjoin(
                products, order_items.c.product_id == products.c.id
            )
        )
        .where(*in_period, category.is_not(None))
        .group_by(category)
        .order_by(order_count.desc())
        .limit(5)
    ).mappings()

    return UserAnalytics(
        total_orders=rollup["total_orders"] if rollup else 0,
        total_amount_spent=float(rollup["total_spent"]) if rollup else 0.0,
        orders_in_period=len(period_orders),
        amount_in_period=amount_in_period,
        average_order_value=amount_in_period / len(period_orders) if period_orders else 0.0,
        order_status_breakdown=StatusBreakdown(**all_time),
        order_status_breakdown_period=StatusBreakdown(**period_breakdown),
        recent_activity=[
            RecentActivity(
                product_title=row["product_title"],
                quantity=row["quantity"],
                total_price=float(row["total_price"]),
                order_date=row["created_at"],
                status=row["status"],
            )
            for row in activity
        ],
        favorite_categories=[
            CategoryStat(
                category=row["category"],
                order_count=row["order_count"],
                total_spent=float(row["total_spent"] or 0),
            )
            for row in categories
        ],
        last_order_date=rollup["last_order_date"] if rollup else None,
        period=params.period,
    )


@router.get("/_api/analytics/dashboard", response_model=Dashboard)
def dashboard(user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    not_cancelled = orders.c.status != "cancelled"

    total_sales = conn.execute(
        select(func.coalesce(func.sum(orders.c.total_amount), 0)).where(not_cancelled)
    ).scalar_one()
    total_orders = conn.execute(select(func.count()).select_from(orders)).scalar_one()
    total_products = conn.execute(
        select(func.count()).select_from(products).where(products.c.is_active.is_(True))
    ).scalar_one()
    total_customers = conn.execute(
        select(func.count()).select_from(users).where(users.c.role == "user")
    ).scalar_one()

    by_status = conn.execute(
        select(orders.c.status, func.count().label("count")).group_by(orders.c.status).order_by(orders.c.status)
    ).all()

    quantity_sold = func.sum(order_items.c.quantity)
    top = conn.execute(
        select(
            products.c.id,
            products.c.title,
            products.c.brand,
            products.c.category,
            products.c.dp_price,
            quantity_sold.label("quantity_sold"),
            func.sum(order_items.c.total_price).label("revenue"),
        )
        .select_from(
            order_items.join(products, order_items.c.product_id == products.c.id).join(
                orders, order_items.c.order_id == orders.c.id
            )
        )
        .where(not_cancelled)
        .group_by(products.c.id, products.c.title, products.c.brand, products.c.category, products.c.dp_price)
        .order_by(quantity_sold.desc(), products.c.id)
        .limit(10)
    ).mappings()

    recent = conn.execute(
        select(
            orders.c.id,
            orders.c.total_amount,
            orders.c.status,
            orders.c.payment_status,
            orders.c.created_at,
            users.c.display_name.label("customer_name"),
            users.c.email.label("customer_email"),
        )
        .select_from(orders.outerjoin(users, orders.c.user_id == users.c.id))
        .order_by(orders.c.created_at.desc(), orders.c.id.desc())
        .limit(10)
    ).mappings()

    day = func.date(orders.c.created_at)
    trends = conn.execute(
        select(
            day.label("date"),
            func.sum(orders.c.total_amount).label("revenue"),
            func.count().label("order_count"),
        )
        .where(orders.c.created_at >= utcnow() - timedelta(days=TREND_DAYS), not_cancelled)
        .group_by(day)
        .order_by(day)
    ).mappings()

    _logger.debug(f"Dashboard compiled for admin {user.id}")
    return Dashboard(
        summary=DashboardSummary(
            total_sales=float(total_sales),
            total_orders=total_orders,
            total_products=total_products,
            total_customers=total_customers,
        ),
        orders_by_status=[StatusCount(status=status, count=count) for status, count in by_status],
        top_selling_products=[
            TopProduct(
                id=row["id"],
                title=row["title"],
                brand=row["brand"],
                category=row["category"],
                price=float(row["dp_price"]),
                quantity_sold=int(row["quantity_sold"]),
                revenue=float(row["revenue"]),
            )
            for row in top
        ],
        recent_orders=[
            RecentOrder(
                id=row["id"],
                total_amount=float(row["total_amount"]),
                status=row["status"],
                payment_status=row["payment_status"],
                created_at=row["created_at"],
                customer_name=row["customer_name"],
                customer_email=row["customer_email"],
            )
            for row in recent
        ],
        revenue_trends=[
            RevenuePoint(date=str(row["date"]), revenue=float(row["revenue"]), order_count=row["order_count"])
            for row in trends
        ],
    )
