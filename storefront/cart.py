"""
Cart aggregator and shopper session state.

A ShopperSession holds the cart, wishlist and recently viewed products for
one shopper. It is loaded and saved explicitly through a SessionStore so the
state travels with the request instead of living in a global.

Product fields on each line are copied at add time for display; they are not
guaranteed fresh. Checkout re-reads live prices.
"""
import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from .config import get_settings
from .errors import ValidationError
from .models import Size
from .money import from_minor, to_decimal
from .tables import Product

logger = logging.getLogger(__name__)

MAX_RECENTLY_VIEWED = 10

_SESSION_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ProductView(BaseModel):
    """Display fields of a product, denormalized onto session lines."""
    product_id: str
    slug: str
    name: str
    category: str
    price: Decimal
    images: list[str] = Field(default_factory=list)

    @classmethod
    def from_product(cls, product: Product) -> "ProductView":
        return cls(
            product_id=product.id,
            slug=product.slug,
            name=product.name,
            category=product.category,
            price=from_minor(product.price_minor),
            images=list(product.images or []),
        )


class CartLine(ProductView):
    size: Size
    quantity: int = Field(1, ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class WishlistLine(ProductView):
    added_at: datetime


class RecentlyViewedLine(ProductView):
    viewed_at: datetime


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    shipping: Decimal
    total: Decimal


def shipping_for(subtotal: Decimal, threshold: Decimal, flat_fee: Decimal) -> Decimal:
    """Free shipping at or above the threshold, otherwise a flat fee."""
    if subtotal <= 0:
        return to_decimal(0)
    if subtotal >= threshold:
        return to_decimal(0)
    return to_decimal(flat_fee)


def price_lines(
    lines: Iterable[tuple[Decimal, int]],
    threshold: Decimal,
    flat_fee: Decimal,
) -> CartTotals:
    """
    Price (unit_price, quantity) pairs.

    Args:
        lines: Unit price and quantity for each line
        threshold: Subtotal at which shipping becomes free
        flat_fee: Shipping charged below the threshold

    Returns:
        CartTotals with total == subtotal + shipping
    """
    subtotal = to_decimal(sum((price * quantity for price, quantity in lines), Decimal(0)))
    shipping = shipping_for(subtotal, threshold, flat_fee)
    return CartTotals(subtotal=subtotal, shipping=shipping, total=subtotal + shipping)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ShopperSession(BaseModel):
    """Cart, wishlist and recently viewed products for one shopper."""
    session_key: str
    cart: list[CartLine] = Field(default_factory=list)
    wishlist: list[WishlistLine] = Field(default_factory=list)
    recently_viewed: list[RecentlyViewedLine] = Field(default_factory=list)

    # -- cart ---------------------------------------------------------------

    def find_line(self, product_id: str, size: Size) -> Optional[CartLine]:
        for line in self.cart:
            if line.product_id == product_id and line.size == size:
                return line
        return None

    def add_to_cart(self, product: ProductView, size: Size, quantity: int = 1) -> CartLine:
        """Add a product in a size; an existing line has its quantity bumped."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1", field="quantity")

        existing = self.find_line(product.product_id, size)
        if existing:
            existing.quantity += quantity
            return existing

        line = CartLine(**product.model_dump(), size=size, quantity=quantity)
        self.cart.append(line)
        return line

    def remove_from_cart(self, product_id: str, size: Size) -> None:
        self.cart = [
            line for line in self.cart
            if not (line.product_id == product_id and line.size == size)
        ]

    def update_quantity(self, product_id: str, size: Size, quantity: int) -> None:
        """Set a line's quantity. Zero or less removes the line."""
        if quantity <= 0:
            self.remove_from_cart(product_id, size)
            return
        line = self.find_line(product_id, size)
        if line:
            line.quantity = quantity

    def clear_cart(self) -> None:
        self.cart = []

    def totals(self, threshold: Decimal, flat_fee: Decimal) -> CartTotals:
        return price_lines(
            ((line.price, line.quantity) for line in self.cart),
            threshold,
            flat_fee,
        )

    # -- wishlist -----------------------------------------------------------

    def in_wishlist(self, product_id: str) -> bool:
        return any(line.product_id == product_id for line in self.wishlist)

    def add_to_wishlist(self, product: ProductView) -> None:
        if self.in_wishlist(product.product_id):
            return
        self.wishlist.append(WishlistLine(**product.model_dump(), added_at=_now()))

    def remove_from_wishlist(self, product_id: str) -> None:
        self.wishlist = [line for line in self.wishlist if line.product_id != product_id]

    def clear_wishlist(self) -> None:
        self.wishlist = []

    # -- recently viewed ----------------------------------------------------

    def record_view(self, product: ProductView) -> None:
        """Move the product to the front, keeping the newest few."""
        rest = [line for line in self.recently_viewed if line.product_id != product.product_id]
        head = RecentlyViewedLine(**product.model_dump(), viewed_at=_now())
        self.recently_viewed = [head, *rest][:MAX_RECENTLY_VIEWED]

    def clear_recently_viewed(self) -> None:
        self.recently_viewed = []


# =============================================================================
# Persistence adapters
# =============================================================================

class SessionStore(ABC):
    """Loads and saves shopper sessions."""

    @abstractmethod
    def load(self, session_key: str) -> ShopperSession:
        """Return the stored session, or a fresh empty one."""
        pass

    @abstractmethod
    def save(self, session: ShopperSession) -> None:
        pass


class InMemorySessionStore(SessionStore):
    """Keeps sessions in process memory. Handy for tests and single workers."""

    def __init__(self):
        self._sessions: dict[str, str] = {}

    def load(self, session_key: str) -> ShopperSession:
        raw = self._sessions.get(session_key)
        if raw is None:
            return ShopperSession(session_key=session_key)
        return ShopperSession.model_validate_json(raw)

    def save(self, session: ShopperSession) -> None:
        self._sessions[session.session_key] = session.model_dump_json()


class JsonFileSessionStore(SessionStore):
    """
    One JSON file per session:

        <directory>/<session_key>.json
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, session_key: str) -> Path:
        if not _SESSION_KEY_RE.match(session_key):
            raise ValidationError("Invalid session key", field="session_key")
        return self.directory / f"{session_key}.json"

    def load(self, session_key: str) -> ShopperSession:
        path = self._path(session_key)
        if not path.exists():
            return ShopperSession(session_key=session_key)

        try:
            return ShopperSession.model_validate_json(path.read_text())
        except (ValueError, json.JSONDecodeError) as e:
            logger.error("Discarding unreadable session file %s: %s", path, e)
            return ShopperSession(session_key=session_key)

    def save(self, session: ShopperSession) -> None:
        path = self._path(session.session_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(session.model_dump_json(indent=2))


@lru_cache()
def get_session_store() -> SessionStore:
    """Get the configured session store."""
    settings = get_settings()
    logger.info("Shopper sessions stored in %s", settings.session_store_dir)
    return JsonFileSessionStore(settings.session_store_dir)
