import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy import asc, cast, desc, func, insert, or_, select, update
from sqlalchemy.dialects.postgresql import JSONB, array
from sqlalchemy.engine import Connection

from storefront.auth import require_admin
from storefront.database import get_db, products, utcnow
from storefront.errors import InvalidRequest, NotFound
from storefront.logger import get_logger
from storefront.schemas import (
    DeleteProductResponse,
    Pagination,
    Product,
    ProductCreate,
    ProductDelete,
    ProductGetQuery,
    ProductListQuery,
    ProductListResponse,
    ProductUpdate,
    User,
    page_offset,
    parse_query,
)

_logger = get_logger(__name__)

router = APIRouter(prefix="/_api/products", tags=["products"])

SORT_COLUMNS = {
    "price": products.c.dp_price,
    "name": products.c.title,
    "created_at": products.c.created_at,
}


def _tags_overlap(tags, dialect_name="sqlite"):
    """True when the product shares at least one tag with ``tags``."""
    if dialect_name == "postgresql":
        return cast(products.c.tags, JSONB).has_any(array(tags))
    if dialect_name in ("mysql", "mariadb"):
        return func.json_overlaps(products.c.tags, json.dumps(tags))
    tag = func.json_each(products.c.tags).table_valued("value")
    return select(tag.c.value).where(tag.c.value.in_(tags)).exists()


def _list_conditions(params: ProductListQuery, dialect_name="sqlite"):
    conditions = [products.c.is_active.is_(True)]
    if params.category:
        conditions.append(products.c.category == params.category)
    if params.brand:
        conditions.append(products.c.brand.ilike(f"%{params.brand}%"))
    if params.min_price is not None:
        conditions.append(products.c.dp_price >= params.min_price)
    if params.max_price is not None:
        conditions.append(products.c.dp_price <= params.max_price)
    if params.tags:
        conditions.append(_tags_overlap(params.tags, dialect_name))
    if params.search:
        term = f"%{params.search}%"
        conditions.append(
            or_(
                products.c.title.ilike(term),
                products.c.description.ilike(term),
                products.c.brand.ilike(term),
            )
        )
    return conditions


def fetch_product(conn: Connection, product_id: int, active_only: bool = False):
    query = select(products).where(products.c.id == product_id)
    if active_only:
        query = query.where(products.c.is_active.is_(True))
    row = conn.execute(query).mappings().first()
    return Product.from_row(row) if row else None


@router.get("/list", response_model=ProductListResponse)
def list_products(request: Request, conn: Connection = Depends(get_db)):
    params = parse_query(ProductListQuery, request.query_params)
    conditions = _list_conditions(params, conn.dialect.name)

    total_count = conn.execute(select(func.count()).select_from(products).where(*conditions)).scalar_one()

    column = SORT_COLUMNS[params.sort_by or "created_at"]
    direction = asc if params.sort_order == "asc" else desc
    rows = conn.execute(
        select(products)
        .where(*conditions)
        .order_by(direction(column), direction(products.c.id))
        .limit(params.limit)
        .offset(page_offset(params.page, params.limit))
    ).mappings()

    return ProductListResponse(
        products=[Product.from_row(row) for row in rows],
        pagination=Pagination.build(params.page, params.limit, total_count),
    )


@router.get("/get", response_model=Product)
def get_product(request: Request, conn: Connection = Depends(get_db)):
    params = parse_query(ProductGetQuery, request.query_params)
    product = fetch_product(conn, params.id, active_only=True)
    if not product:
        raise NotFound("Product not found")
    return product


@router.post("/create", response_model=Product)
def create_product(body: ProductCreate, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    now = utcnow()
    result = conn.execute(
        insert(products).values(
            **body.model_dump(),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
    )
    conn.commit()
    product = fetch_product(conn, result.inserted_primary_key[0])
    _logger.info(f"Admin {user.id} created product {product.id} ({product.title})")
    return product


@router.post("/update", response_model=Product)
def update_product(body: ProductUpdate, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    existing = fetch_product(conn, body.id)
    if not existing:
        raise NotFound("Product not found")

    changes = body.changes()
    dp_price = changes.get("dp_price", existing.dp_price)
    mrp_price = changes.get("mrp_price", existing.mrp_price)
    if dp_price > mrp_price:
        raise InvalidRequest("DP price cannot be higher than MRP price")

    changes["updated_at"] = utcnow()
    conn.execute(update(products).where(products.c.id == body.id).values(**changes))
    conn.commit()
    _logger.info(f"Admin {user.id} updated product {body.id}: {sorted(changes)}")
    return fetch_product(conn, body.id)


@router.post("/delete", response_model=DeleteProductResponse)
def delete_product(body: ProductDelete, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    existing = fetch_product(conn, body.product_id)
    if not existing:
        raise NotFound("Product not found")

    deleted = existing.mark_deleted()
    conn.execute(
        update(products)
        .where(products.c.id == deleted.id)
        .values(is_active=deleted.is_active, updated_at=utcnow())
    )
    conn.commit()
    _logger.info(f"Admin {user.id} soft deleted product {deleted.id}")
    return DeleteProductResponse(success=True, message="Product deleted successfully", product_id=deleted.id)
