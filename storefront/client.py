"""
Typed HTTP client for the storefront API.

Every method validates its arguments with the same pydantic model the server
handler uses, so malformed input fails before any request is sent. GET results
are cached per endpoint and parameters for that endpoint's staleness window;
any mutation drops the whole cache.
"""

import time
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

import httpx
from pydantic import BaseModel

from storefront.logger import get_logger
from storefront.schemas import (
    AnalyticsQuery,
    CheckoutRequest,
    Dashboard,
    DeleteProductResponse,
    LoginRequest,
    MessageResponse,
    Order,
    OrderListQuery,
    OrderListResponse,
    OrderStatusResponse,
    OrderStatusUpdate,
    Product,
    ProductCreate,
    ProductDelete,
    ProductGetQuery,
    ProductListQuery,
    ProductListResponse,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    RoleUpdate,
    RoleUpdateResponse,
    UserAnalytics,
    UserListQuery,
    UserListResponse,
    UserOrdersQuery,
    UserResponse,
    WishlistChange,
    WishlistChangeResponse,
    WishlistQuery,
    WishlistResponse,
)

_logger = get_logger(__name__)

R = TypeVar("R", bound=BaseModel)

# seconds a cached GET stays fresh
STALE_TIME = {
    "/_api/products/list": 60,
    "/_api/products/get": 300,
    "/_api/orders/list": 30,
    "/_api/users/list": 30,
    "/_api/users/orders": 60,
    "/_api/users/wishlist": 60,
    "/_api/users/analytics": 300,
    "/_api/analytics/dashboard": 300,
    "/_api/auth/session": 300,
}
DEFAULT_STALE_TIME = 30


class ApiClientError(Exception):
    def __init__(self, status_code: int, message: str, details: Any = None):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.details = details


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_unset=True)


def _query(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class StorefrontClient:
    def __init__(self, http: httpx.Client, clock=time.monotonic):
        self.http = http
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, BaseModel]] = {}

    # -- plumbing --------------------------------------------------------

    def invalidate(self) -> None:
        self._cache.clear()

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        message = payload.get("error") or payload.get("message") or f"HTTP {response.status_code}"
        _logger.debug(f"{response.request.method} {response.request.url.path} failed: {response.status_code} {message}")
        raise ApiClientError(response.status_code, message, payload.get("details"))

    def _get(self, path: str, params: Optional[BaseModel], result: Type[R]) -> R:
        query = _query(params) if params is not None else {}
        key = (path, str(sorted(query.items())))
        cached = self._cache.get(key)
        now = self._clock()
        if cached and now - cached[0] < STALE_TIME.get(path, DEFAULT_STALE_TIME):
            _logger.debug(f"cache hit {path}")
            return cached[1].model_copy(deep=True)

        response = self.http.get(path, params=query)
        self._raise_for_status(response)
        value = result.model_validate(response.json())
        # callers get copies; the cached model is never handed out
        self._cache[key] = (now, value)
        return value.model_copy(deep=True)

    def _post(self, path: str, body: Optional[BaseModel], result: Type[R]) -> R:
        response = self.http.post(path, json=_dump(body) if body is not None else {})
        self.invalidate()
        self._raise_for_status(response)
        return result.model_validate(response.json())

    # -- auth ------------------------------------------------------------

    def login(self, email: str, password: str) -> UserResponse:
        return self._post("/_api/auth/login_with_password", LoginRequest(email=email, password=password), UserResponse)

    def register(self, email: str, password: str, display_name: str) -> UserResponse:
        body = RegisterRequest(email=email, password=password, display_name=display_name)
        return self._post("/_api/auth/register_with_password", body, UserResponse)

    def logout(self) -> MessageResponse:
        return self._post("/_api/auth/logout", None, MessageResponse)

    def session(self) -> UserResponse:
        return self._get("/_api/auth/session", None, UserResponse)

    # -- products --------------------------------------------------------

    def list_products(self, **params) -> ProductListResponse:
        return self._get("/_api/products/list", ProductListQuery(**params), ProductListResponse)

    def get_product(self, product_id: int) -> Product:
        return self._get("/_api/products/get", ProductGetQuery(id=product_id), Product)

    def create_product(self, **fields) -> Product:
        return self._post("/_api/products/create", ProductCreate(**fields), Product)

    def update_product(self, product_id: int, **fields) -> Product:
        return self._post("/_api/products/update", ProductUpdate(id=product_id, **fields), Product)

    def delete_product(self, product_id: int) -> DeleteProductResponse:
        return self._post("/_api/products/delete", ProductDelete(product_id=product_id), DeleteProductResponse)

    # -- orders ----------------------------------------------------------

    def list_orders(self, **params) -> OrderListResponse:
        return self._get("/_api/orders/list", OrderListQuery(**params), OrderListResponse)

    def update_order_status(self, order_id: int, status: str) -> OrderStatusResponse:
        body = OrderStatusUpdate(order_id=order_id, status=status)
        return self._post("/_api/orders/update_status", body, OrderStatusResponse)

    def create_order(self, **fields) -> Order:
        return self._post("/_api/orders/create", CheckoutRequest(**fields), Order)

    # -- users -----------------------------------------------------------

    def list_users(self, **params) -> UserListResponse:
        return self._get("/_api/users/list", UserListQuery(**params), UserListResponse)

    def update_user_role(self, user_id: int, new_role: str) -> RoleUpdateResponse:
        body = RoleUpdate(user_id=user_id, new_role=new_role)
        return self._post("/_api/users/update_role", body, RoleUpdateResponse)

    def my_orders(self, **params) -> OrderListResponse:
        return self._get("/_api/users/orders", UserOrdersQuery(**params), OrderListResponse)

    def wishlist(self, **params) -> WishlistResponse:
        return self._get("/_api/users/wishlist", WishlistQuery(**params), WishlistResponse)

    def add_to_wishlist(self, product_id: int) -> WishlistChangeResponse:
        body = WishlistChange(product_id=product_id)
        return self._post("/_api/users/wishlist/add", body, WishlistChangeResponse)

    def remove_from_wishlist(self, product_id: int) -> MessageResponse:
        return self._post("/_api/users/wishlist/remove", WishlistChange(product_id=product_id), MessageResponse)

    def update_profile(self, **fields) -> UserResponse:
        return self._post("/_api/users/profile/update", ProfileUpdate(**fields), UserResponse)

    # -- analytics -------------------------------------------------------

    def my_analytics(self, period: str = "30d") -> UserAnalytics:
        return self._get("/_api/users/analytics", AnalyticsQuery(period=period), UserAnalytics)

    def dashboard(self) -> Dashboard:
        return self._get("/_api/analytics/dashboard", None, Dashboard)
