"""
Local shopping cart.

The cart never talks to the server. State changes go through ``reduce_cart``,
a pure function of (cart, action), and ``ShoppingCart`` wraps it with a
load/save boundary over any key-value storage.
"""

import json
import os
from dataclasses import dataclass
from typing import List, Optional, Protocol, Union

from pydantic import Field, ValidationError

from storefront.logger import get_logger
from storefront.schemas import ApiModel

_logger = get_logger(__name__)

CART_STORAGE_KEY = "shoppingCart"


class CartPrice(ApiModel):
    dp: float = Field(..., description="Dealer price")
    mrp: float = Field(..., description="Maximum retail price")


class CartItem(ApiModel):
    product_id: str
    title: str
    price: CartPrice
    quantity: int = 1
    image: str = ""


class Cart(ApiModel):
    items: List[CartItem] = Field(default_factory=list)
    total_items: int = 0
    subtotal: float = 0
    savings: float = 0


def calculate_totals(items: List[CartItem]) -> Cart:
    return Cart(
        items=items,
        total_items=sum(item.quantity for item in items),
        subtotal=sum(item.price.dp * item.quantity for item in items),
        savings=sum((item.price.mrp - item.price.dp) * item.quantity for item in items),
    )


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AddItem:
    item: CartItem
    quantity: int = 1


@dataclass(frozen=True)
class RemoveItem:
    product_id: str


@dataclass(frozen=True)
class UpdateQuantity:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ClearCart:
    pass


CartAction = Union[AddItem, RemoveItem, UpdateQuantity, ClearCart]


def reduce_cart(cart: Cart, action: CartAction) -> Cart:
    """Return the cart that results from applying ``action``; ``cart`` is left untouched."""
    if isinstance(action, AddItem):
        items = [item.model_copy() for item in cart.items]
        for i, existing in enumerate(items):
            if existing.product_id == action.item.product_id:
                items[i] = existing.model_copy(update={"quantity": existing.quantity + action.quantity})
                break
        else:
            items.append(action.item.model_copy(update={"quantity": action.quantity}))
        return calculate_totals(items)

    if isinstance(action, RemoveItem):
        return calculate_totals([item for item in cart.items if item.product_id != action.product_id])

    if isinstance(action, UpdateQuantity):
        if action.quantity <= 0:
            return reduce_cart(cart, RemoveItem(action.product_id))
        return calculate_totals(
            [
                item.model_copy(update={"quantity": action.quantity}) if item.product_id == action.product_id else item
                for item in cart.items
            ]
        )

    if isinstance(action, ClearCart):
        return Cart()

    raise TypeError(f"Unknown cart action: {action!r}")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class Storage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...


class MemoryStorage:
    def __init__(self):
        self._data = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value


class FileStorage:
    """Keys and string values kept in a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except json.JSONDecodeError:
                _logger.warning(f"Ignoring unreadable storage file {self.path}")
                return {}
        return data if isinstance(data, dict) else {}

    def get_item(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        folder = os.path.dirname(self.path)
        if folder:
            os.makedirs(folder, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump(data, fh)


class ShoppingCart:
    def __init__(self, storage: Storage, key: str = CART_STORAGE_KEY):
        self.storage = storage
        self.key = key
        self.cart = self.load()

    def load(self) -> Cart:
        raw = self.storage.get_item(self.key)
        if not raw:
            return Cart()
        try:
            return Cart.model_validate_json(raw)
        except ValidationError:
            _logger.warning("Stored cart is corrupt, starting with an empty cart")
            return Cart()

    def save(self) -> None:
        self.storage.set_item(self.key, self.cart.model_dump_json(by_alias=True))

    def dispatch(self, action: CartAction) -> Cart:
        self.cart = reduce_cart(self.cart, action)
        self.save()
        return self.cart

    def add_item(self, item: CartItem, quantity: int = 1) -> Cart:
        return self.dispatch(AddItem(item, quantity))

    def remove_item(self, product_id: str) -> Cart:
        return self.dispatch(RemoveItem(product_id))

    def update_quantity(self, product_id: str, quantity: int) -> Cart:
        return self.dispatch(UpdateQuantity(product_id, quantity))

    def clear_cart(self) -> Cart:
        return self.dispatch(ClearCart())

    def is_in_cart(self, product_id: str) -> bool:
        return any(item.product_id == product_id for item in self.cart.items)

    def get_item_quantity(self, product_id: str) -> int:
        for item in self.cart.items:
            if item.product_id == product_id:
                return item.quantity
        return 0
