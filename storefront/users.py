from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from storefront.auth import get_current_user, require_admin, set_session_cookie
from storefront.database import get_db, orders, products, user_wishlists, users, utcnow
from storefront.errors import Conflict, InvalidRequest, NotFound
from storefront.logger import get_logger
from storefront.orders import load_items
from storefront.schemas import (
    MessageResponse,
    Order,
    OrderListResponse,
    Pagination,
    ProfileUpdate,
    RoleUpdate,
    RoleUpdateResponse,
    User,
    UserListQuery,
    UserListResponse,
    UserOrdersQuery,
    UserResponse,
    UserSummary,
    WishlistChange,
    WishlistChangeResponse,
    WishlistProduct,
    WishlistQuery,
    WishlistResponse,
    page_offset,
    parse_query,
)

_logger = get_logger(__name__)

router = APIRouter(prefix="/_api/users", tags=["users"])


def _fetch_user(conn: Connection, user_id: int) -> User:
    row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
    if not row:
        raise NotFound("User not found")
    return User.from_row(row)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/list", response_model=UserListResponse)
def list_users(request: Request, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    params = parse_query(UserListQuery, request.query_params)

    conditions = []
    search = params.search.strip()
    if search:
        term = f"%{search}%"
        conditions.append(or_(users.c.email.ilike(term), users.c.display_name.ilike(term)))

    total_count = conn.execute(select(func.count()).select_from(users).where(*conditions)).scalar_one()
    rows = conn.execute(
        select(users)
        .where(*conditions)
        .order_by(users.c.created_at.desc(), users.c.id.desc())
        .limit(params.limit)
        .offset(page_offset(params.page, params.limit))
    ).mappings()

    return UserListResponse(
        users=[
            UserSummary(
                id=row["id"],
                email=row["email"],
                display_name=row["display_name"],
                role=row["role"],
                registration_date=row["created_at"],
            )
            for row in rows
        ],
        pagination=Pagination.build(params.page, params.limit, total_count),
    )


@router.post("/update_role", response_model=RoleUpdateResponse)
def update_role(body: RoleUpdate, user: User = Depends(require_admin), conn: Connection = Depends(get_db)):
    target = _fetch_user(conn, body.user_id)

    if user.id == body.user_id and body.new_role == "user":
        raise InvalidRequest("Cannot demote yourself from admin role")
    if target.role == body.new_role:
        raise InvalidRequest(f"User already has the role: {body.new_role}")

    conn.execute(
        update(users)
        .where(users.c.id == body.user_id)
        .values(role=body.new_role, updated_at=utcnow())
    )
    conn.commit()
    _logger.info(f"Admin {user.id} changed role of user {body.user_id} from {target.role} to {body.new_role}")

    updated = _fetch_user(conn, body.user_id)
    return RoleUpdateResponse(
        success=True,
        user=updated,
        message=f"User role successfully updated to {updated.role}",
    )


# ---------------------------------------------------------------------------
# Self service
# ---------------------------------------------------------------------------


@router.get("/orders", response_model=OrderListResponse)
def my_orders(request: Request, user: User = Depends(get_current_user), conn: Connection = Depends(get_db)):
    params = parse_query(UserOrdersQuery, request.query_params)

    conditions = [orders.c.user_id == user.id]
    if params.status:
        conditions.append(orders.c.status == params.status)

    total_count = conn.execute(select(func.count()).select_from(orders).where(*conditions)).scalar_one()
    rows = conn.execute(
        select(orders)
        .where(*conditions)
        .order_by(orders.c.created_at.desc(), orders.c.id.desc())
        .limit(params.limit)
        .offset(page_offset(params.page, params.limit))
    ).mappings().all()

    items = load_items(conn, [row["id"] for row in rows])
    return OrderListResponse(
        orders=[Order.from_row(row, items=items[row["id"]]) for row in rows],
        pagination=Pagination.build(params.page, params.limit, total_count),
    )


@router.get("/wishlist", response_model=WishlistResponse)
def my_wishlist(request: Request, user: User = Depends(get_current_user), conn: Connection = Depends(get_db)):
    params = parse_query(WishlistQuery, request.query_params)

    joined = user_wishlists.join(products, user_wishlists.c.product_id == products.c.id)
    conditions = [user_wishlists.c.user_id == user.id, products.c.is_active.is_(True)]

    total_count = conn.execute(select(func.count()).select_from(joined).where(*conditions)).scalar_one()
    rows = conn.execute(
        select(products, user_wishlists.c.created_at.label("added_to_wishlist_at"))
        .select_from(joined)
        .where(*conditions)
        .order_by(user_wishlists.c.created_at.desc(), user_wishlists.c.id.desc())
        .limit(params.limit)
        .offset(page_offset(params.page, params.limit))
    ).mappings()

    return WishlistResponse(
        products=[
            WishlistProduct.from_row(row, added_to_wishlist_at=row["added_to_wishlist_at"])
            for row in rows
        ],
        pagination=Pagination.build(params.page, params.limit, total_count),
    )


@router.post("/wishlist/add", response_model=WishlistChangeResponse)
def add_to_wishlist(body: WishlistChange, user: User = Depends(get_current_user), conn: Connection = Depends(get_db)):
    product = conn.execute(
        select(products.c.id).where(products.c.id == body.product_id, products.c.is_active.is_(True))
    ).first()
    if not product:
        raise NotFound("Product not found or is no longer available")

    existing = conn.execute(
        select(user_wishlists.c.id).where(
            user_wishlists.c.user_id == user.id,
            user_wishlists.c.product_id == body.product_id,
        )
    ).first()
    if existing:
        raise Conflict("Product is already in your wishlist")

    try:
        result = conn.execute(
            insert(user_wishlists).values(user_id=user.id, product_id=body.product_id, created_at=utcnow())
        )
        conn.commit()
    except IntegrityError:
        conn.rollback()
        raise Conflict("Product is already in your wishlist")

    _logger.info(f"User {user.id} wishlisted product {body.product_id}")
    return WishlistChangeResponse(
        success=True,
        message="Product added to wishlist successfully",
        wishlist_item_id=result.inserted_primary_key[0],
    )


@router.post("/wishlist/remove", response_model=MessageResponse)
def remove_from_wishlist(body: WishlistChange, user: User = Depends(get_current_user), conn: Connection = Depends(get_db)):
    result = conn.execute(
        delete(user_wishlists).where(
            user_wishlists.c.user_id == user.id,
            user_wishlists.c.product_id == body.product_id,
        )
    )
    conn.commit()
    _logger.debug(f"User {user.id} removed product {body.product_id} from wishlist ({result.rowcount} row)")
    return MessageResponse(success=True, message="Product removed from wishlist")


@router.post("/profile/update", response_model=UserResponse)
def update_profile(
    body: ProfileUpdate,
    response: Response,
    user: User = Depends(get_current_user),
    conn: Connection = Depends(get_db),
):
    if body.email and body.email != user.email:
        taken = conn.execute(
            select(users.c.id).where(users.c.email == body.email, users.c.id != user.id).limit(1)
        ).first()
        if taken:
            raise InvalidRequest("Email is already taken by another user")

    changes = body.model_dump(exclude_unset=True)
    changes["updated_at"] = utcnow()
    conn.execute(update(users).where(users.c.id == user.id).values(**changes))
    conn.commit()

    set_session_cookie(response, user.id)
    _logger.info(f"User {user.id} updated profile fields {sorted(changes)}")
    return UserResponse(user=_fetch_user(conn, user.id))
