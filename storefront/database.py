# owns the engine, table definitions and the per-request connection
import os
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    delete,
    event,
    func,
    insert,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.engine.url import make_url

from storefront import config
from storefront.logger import get_logger

_logger = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money():
    return Numeric(12, 2, asdecimal=False)


metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False),
    Column("avatar_url", Text),
    Column("role", String(16), nullable=False, default="user"),
    Column("password_hash", String(255)),
    Column("created_at", DateTime, default=utcnow),
    Column("updated_at", DateTime, default=utcnow),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("category", String(64), nullable=False),
    Column("brand", String(100), nullable=False),
    Column("image_url", Text),
    Column("dp_price", _money(), nullable=False),
    Column("mrp_price", _money(), nullable=False),
    Column("stock", Integer, nullable=False, default=0),
    Column("tags", JSON, default=list),
    Column("specifications", JSON),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime, default=utcnow),
    Column("updated_at", DateTime, default=utcnow),
)

orders = Table(
    "orders",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL")),
    Column("status", String(16), nullable=False, default="pending"),
    Column("total_amount", _money(), nullable=False),
    Column("payment_status", String(32), default="pending"),
    Column("payment_method", String(32)),
    Column("shipping_address", JSON),
    Column("billing_address", JSON),
    Column("notes", Text),
    Column("created_at", DateTime, default=utcnow),
    Column("updated_at", DateTime, default=utcnow),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("order_id", Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="SET NULL")),
    Column("product_title", String(255), nullable=False),
    Column("product_brand", String(100)),
    Column("product_category", String(64)),
    Column("product_image_url", Text),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", _money(), nullable=False),
    Column("total_price", _money(), nullable=False),
)

user_wishlists = Table(
    "user_wishlists",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", DateTime, default=utcnow),
    UniqueConstraint("user_id", "product_id", name="uq_user_wishlists_user_product"),
)

user_analytics = Table(
    "user_analytics",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("total_orders", Integer, nullable=False, default=0),
    Column("total_spent", _money(), nullable=False, default=0),
    Column("orders_pending", Integer, nullable=False, default=0),
    Column("orders_completed", Integer, nullable=False, default=0),
    Column("orders_cancelled", Integer, nullable=False, default=0),
    Column("last_order_date", DateTime),
    Column("updated_at", DateTime, default=utcnow),
)


def _enable_sqlite_fk(dbapi_conn, _record) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys = ON;")
    cur.close()


def create_db_engine(url: str) -> Engine:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    if parsed.database and parsed.database != ":memory:":
        folder = os.path.dirname(parsed.database)
        if folder:
            os.makedirs(folder, exist_ok=True)
    engine = create_engine(url, connect_args={"check_same_thread": False})
    event.listen(engine, "connect", _enable_sqlite_fk)
    return engine


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_db_engine(config.DATABASE_URL)
    return _engine


def configure(url: str) -> Engine:
    """Point the module at another database, disposing the previous engine."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = create_db_engine(url)
    return _engine


def init_db() -> None:
    engine = get_engine()
    _logger.info(f"Ensuring schema on {engine.url.render_as_string(hide_password=True)}")
    metadata.create_all(engine)


def get_db() -> Iterator[Connection]:
    """FastAPI dependency yielding a connection; callers commit explicitly."""
    with get_engine().connect() as conn:
        yield conn


def refresh_user_analytics(conn: Connection, user_id: Optional[int]) -> None:
    """Rebuild the per-user order rollup from the orders table."""
    if user_id is None:
        return
    row = conn.execute(
        select(
            func.count(orders.c.id),
            func.coalesce(
                func.sum(case((orders.c.status != "cancelled", orders.c.total_amount), else_=0)),
                0,
            ),
            func.coalesce(func.sum(case((orders.c.status == "pending", 1), else_=0)), 0),
            func.coalesce(func.sum(case((orders.c.status == "delivered", 1), else_=0)), 0),
            func.coalesce(func.sum(case((orders.c.status == "cancelled", 1), else_=0)), 0),
            func.max(orders.c.created_at),
        ).where(orders.c.user_id == user_id)
    ).one()

    conn.execute(delete(user_analytics).where(user_analytics.c.user_id == user_id))
    conn.execute(
        insert(user_analytics).values(
            user_id=user_id,
            total_orders=int(row[0]),
            total_spent=float(row[1]),
            orders_pending=int(row[2]),
            orders_completed=int(row[3]),
            orders_cancelled=int(row[4]),
            last_order_date=row[5],
            updated_at=utcnow(),
        )
    )
