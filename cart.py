"""
Pricing/Cart engine.

A Cart holds CartLine entries keyed by (product_id, variant) and derives the
monetary totals. Every mutation hands the line list to an optional CartStore so
the cart survives a reload; store failures are logged and never fail the
mutation.
"""
import os
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_serializer
from pymongo.database import Database

from errors import ValidationFailed

logger = logging.getLogger(__name__)

TAX_RATE = Decimal(os.getenv("TAX_RATE", "0.10"))
SHIPPING_COST = Decimal(os.getenv("SHIPPING_COST", "9.99"))
CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    # str() first so 19.99 stays 19.99 instead of its binary expansion
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class CartLine(BaseModel):
    product_id: str
    name: str
    price: Decimal = Field(..., ge=0)
    image_url: Optional[str] = None
    in_stock: bool = True
    quantity: int = Field(1, ge=1)
    variant: Optional[str] = None

    @field_serializer("price")
    def _price_as_float(self, price: Decimal) -> float:
        return float(price)

    @property
    def key(self):
        return (self.product_id, self.variant)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class CartStore(ABC):
    """Key-value persistence for cart lines."""

    @abstractmethod
    def save(self, key: str, lines: List[dict]) -> None:
        ...

    @abstractmethod
    def load(self, key: str) -> List[dict]:
        ...


class MemoryCartStore(CartStore):
    def __init__(self):
        self.data: Dict[str, List[dict]] = {}

    def save(self, key, lines):
        self.data[key] = [dict(line) for line in lines]

    def load(self, key):
        return [dict(line) for line in self.data.get(key, [])]


class MongoCartStore(CartStore):
    """Carts kept in the "cart" collection, one document per session key."""

    def __init__(self, database: Database):
        self.collection = database["cart"]

    def save(self, key, lines):
        self.collection.update_one({"session_key": key}, {"$set": {"items": lines}}, upsert=True)

    def load(self, key):
        doc = self.collection.find_one({"session_key": key})
        return doc.get("items", []) if doc else []


class Cart:
    def __init__(self, lines: Optional[List[CartLine]] = None, store: Optional[CartStore] = None,
                 key: Optional[str] = None, tax_rate: Decimal = TAX_RATE,
                 shipping_cost: Decimal = SHIPPING_COST):
        self.lines: List[CartLine] = list(lines or [])
        self.store = store
        self.key = key
        self.tax_rate = Decimal(str(tax_rate))
        self.shipping = to_money(shipping_cost)

    @classmethod
    def load(cls, store: CartStore, key: str, **options) -> "Cart":
        lines = [CartLine(**line) for line in store.load(key)]
        return cls(lines, store=store, key=key, **options)

    def __len__(self):
        return len(self.lines)

    def __iter__(self):
        return iter(self.lines)

    def find(self, product_id: str, variant: Optional[str] = None) -> Optional[CartLine]:
        for line in self.lines:
            if line.key == (product_id, variant):
                return line
        return None

    # Mutations

    def add_item(self, item: Union[CartLine, Mapping[str, Any]], quantity: int = 1,
                 variant: Optional[str] = None) -> CartLine:
        if quantity < 1:
            raise ValidationFailed.single("quantity", "Quantity must be at least 1")
        if isinstance(item, CartLine):
            snapshot = item.model_dump(exclude={"quantity", "variant"})
        else:
            snapshot = {k: v for k, v in item.items() if k not in ("quantity", "variant")}
        existing = self.find(snapshot["product_id"], variant)
        if existing is not None:
            existing.quantity += quantity
            line = existing
        else:
            line = CartLine(**snapshot, quantity=quantity, variant=variant)
            self.lines.append(line)
        self._persist()
        return line

    def remove_item(self, product_id: str, variant: Optional[str] = None) -> None:
        self.lines = [line for line in self.lines if line.key != (product_id, variant)]
        self._persist()

    def increase(self, product_id: str, variant: Optional[str] = None) -> Optional[CartLine]:
        line = self.find(product_id, variant)
        if line is not None:
            line.quantity += 1
            self._persist()
        return line

    def decrease(self, product_id: str, variant: Optional[str] = None) -> Optional[CartLine]:
        """Quantity floor is 1; use remove_item to drop a line."""
        line = self.find(product_id, variant)
        if line is not None and line.quantity > 1:
            line.quantity -= 1
            self._persist()
        return line

    def clear(self) -> None:
        self.lines = []
        self._persist()

    # Totals

    def subtotal(self) -> Decimal:
        return sum((line.line_total for line in self.lines), Decimal("0")).quantize(CENT)

    def tax(self) -> Decimal:
        return (self.subtotal() * self.tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)

    def shipping_cost(self) -> Decimal:
        return self.shipping

    def grand_total(self) -> Decimal:
        return self.subtotal() + self.tax() + self.shipping_cost()

    def summary(self) -> dict:
        return {
            "items": [line.model_dump() for line in self.lines],
            "item_count": sum(line.quantity for line in self.lines),
            "subtotal": float(self.subtotal()),
            "tax": float(self.tax()),
            "shipping": float(self.shipping_cost()),
            "total": float(self.grand_total()),
        }

    def _persist(self) -> None:
        if self.store is None or self.key is None:
            return
        try:
            self.store.save(self.key, [line.model_dump() for line in self.lines])
        except Exception:
            logger.exception("Failed to persist cart %s", self.key)
