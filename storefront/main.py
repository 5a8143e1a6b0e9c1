"""
Storefront Service - FastAPI application.

Checkout for the clothing store: orders are created pending, paid through
the payment gateway, verified by callback signature and then fulfilled by
the back-office. Also serves the shopper's saved addresses and session state
(cart, wishlist, recently viewed).
"""
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import addresses, orders
from .auth import Caller, get_caller, require_admin
from .cart import ProductView, SessionStore, ShopperSession, get_session_store, price_lines
from .config import Settings, get_settings
from .database import check_connection, get_db, get_engine, get_session_factory, init_db
from .errors import NotFound, StorefrontError, ValidationError
from .gateway import PaymentGateway, create_payment_intent, get_gateway
from .models import (
    AddressCreate,
    AddressOut,
    AddressUpdate,
    CartItemRequest,
    CartLineRef,
    CartQuantityRequest,
    HealthResponse,
    OrderCreate,
    OrderOut,
    OrderUpdate,
    PaymentIntentRequest,
    PaymentIntentResponse,
    ProductOut,
    ProductStockUpdate,
    QuoteRequest,
    QuoteResponse,
    Size,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    VersionResponse,
)
from .money import from_minor
from .seed import ensure_seeded
from .stats import get_payment_stats
from .tables import Product
from .verifier import verify_payment


def setup_logging():
    """
    Route every storefront logger to stdout, and to LOG_PATH when set.

    An unknown LOG_LEVEL falls back to INFO. httpx request lines are only
    shown in debug mode.
    """
    settings = get_settings()
    log_level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(log_level, int):
        log_level = logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_error = None
    if settings.log_path:
        log_path = Path(settings.log_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_path))
        except OSError as e:
            file_error = e

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.DEBUG if settings.debug else logging.WARNING)

    if file_error is not None:
        root_logger.error("Failed to set up file logging at %s: %s", settings.log_path, file_error)
    elif settings.log_path:
        root_logger.info("Logging to file: %s", settings.log_path)

    return logging.getLogger(__name__)


# Configure logging
settings = get_settings()
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Storefront service starting up")

    engine = get_engine()
    init_db(engine)

    if settings.seed_on_startup:
        db = get_session_factory()()
        try:
            ensure_seeded(db)
        finally:
            db.close()

    gateway = get_gateway()
    ok, error = await gateway.health_check()
    if ok:
        logger.info("Payment gateway ready: %s", gateway.provider_name)
    else:
        logger.warning("Payment gateway %s not ready: %s", gateway.provider_name, error)

    yield

    logger.info("Storefront service shutting down")
    await gateway.close()


app = FastAPI(
    title="Storefront Service",
    description="Checkout, payments and orders for the clothing storefront",
    version=settings.version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Handling
# =============================================================================

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    logger.info("%s %s -> %d: %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "detail": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# =============================================================================
# Health & Version Endpoints
# =============================================================================

@app.get("/health", response_model=HealthResponse)
async def health_check(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Health check endpoint. Tests the database and the payment gateway."""
    db_ok, db_error = check_connection(db.get_bind())
    gateway_ok, gateway_error = await gateway.health_check()

    return HealthResponse(
        status="ok" if db_ok and gateway_ok else "degraded",
        database_ok=db_ok,
        payment_gateway=gateway.provider_name,
        payment_gateway_ok=gateway_ok,
        error=db_error or gateway_error,
    )


@app.get("/version", response_model=VersionResponse)
async def version(settings: Settings = Depends(get_settings)):
    """Return version information for this service."""
    return VersionResponse(
        service="storefront",
        version=settings.version,
        config=settings.get_config_summary(),
    )


@app.get("/stats")
async def payment_stats():
    """Payment outcomes per operation; provider and signature failures counted apart."""
    return get_payment_stats().get_summary()


# =============================================================================
# Orders
# =============================================================================

@app.post("/api/orders", response_model=OrderOut, status_code=201)
def create_order(
    request: OrderCreate,
    response: Response,
    idempotency_key: Optional[str] = Header(None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """
    Create a pending order from the checkout cart.

    Send an Idempotency-Key header (or idempotency_key field) to make a
    double-submitted checkout return the first order instead of a second.
    """
    if idempotency_key and not request.idempotency_key:
        request.idempotency_key = idempotency_key

    order, created = orders.create_order(db, caller, request, settings)
    if not created:
        response.status_code = 200
    return orders.order_to_out(order)


@app.get("/api/orders", response_model=list[OrderOut])
def list_my_orders(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    """The caller's orders, newest first."""
    return [orders.order_to_out(o) for o in orders.list_orders_for_caller(db, caller)]


@app.get("/api/orders/{ref}", response_model=OrderOut)
def get_order(
    ref: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Fetch one order by id or by order number (ORD-...)."""
    order = orders.find_order(db, caller, ref, settings.order_number_prefix)
    return orders.order_to_out(order)


@app.patch("/api/orders/{order_id}", response_model=OrderOut)
def update_order(
    order_id: str,
    patch: OrderUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Update status, payment status or tracking number. Only supplied fields change."""
    order = orders.update_order(db, caller, order_id, patch, settings)
    return orders.order_to_out(order)


@app.get("/api/admin/orders", response_model=list[OrderOut])
def admin_list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    caller: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    All orders for the back-office.

    Shows paid orders unless payment_status is given; "all" disables a filter.
    """
    found = orders.list_orders_admin(db, status=status, payment_status=payment_status)
    return [orders.order_to_out(o) for o in found]


@app.patch("/api/admin/products/{product_id}", response_model=ProductOut)
def admin_update_product(
    product_id: str,
    request: ProductStockUpdate,
    caller: Caller = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Mark a product in or out of stock. Checkout and the cart refuse out-of-stock products."""
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound("Product", product_id)

    product.in_stock = request.in_stock
    db.commit()
    logger.info(
        "Product %s marked %s by %s",
        product.slug, "in stock" if product.in_stock else "out of stock", caller.email,
    )
    return ProductOut(
        id=product.id,
        slug=product.slug,
        name=product.name,
        category=product.category,
        price=from_minor(product.price_minor),
        sizes=list(product.sizes or []),
        images=list(product.images or []),
        in_stock=product.in_stock,
    )


# =============================================================================
# Payments
# =============================================================================

@app.post("/api/payment/create-order", response_model=PaymentIntentResponse)
async def create_payment_order(
    request: PaymentIntentRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Create a provider payment order for an amount and receipt.

    When the receipt is one of the caller's order numbers the amount must be
    that order's total, and the provider order is remembered on the order.
    """
    order = orders.payable_order_for_receipt(db, caller, request.receipt, request.amount)

    intent = await create_payment_intent(
        gateway,
        request.amount,
        request.receipt,
        request.currency or settings.currency,
    )

    if order is not None:
        orders.record_payment_intent(db, order, intent.provider_order_id)

    return PaymentIntentResponse(
        order_id=intent.provider_order_id,
        amount=intent.amount,
        currency=intent.currency,
        key_id=intent.key_id,
    )


@app.post("/api/payment/verify", response_model=VerifyPaymentResponse)
def verify_payment_callback(
    request: VerifyPaymentRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Verify the payment callback signature and mark the order paid."""
    order = verify_payment(db, caller, request, settings.payment_signing_secret)
    return VerifyPaymentResponse(
        success=True,
        message="Payment verified successfully",
        order=orders.order_to_out(order),
    )


# =============================================================================
# Saved Addresses
# =============================================================================

@app.get("/api/user/addresses", response_model=list[AddressOut])
def list_addresses(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return [addresses.address_to_out(a) for a in addresses.list_addresses(db, caller)]


@app.post("/api/user/addresses", response_model=AddressOut, status_code=201)
def create_address(
    request: AddressCreate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return addresses.address_to_out(addresses.create_address(db, caller, request))


@app.put("/api/user/addresses/{address_id}", response_model=AddressOut)
def update_address(
    address_id: str,
    request: AddressUpdate,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    return addresses.address_to_out(addresses.update_address(db, caller, address_id, request))


@app.delete("/api/user/addresses/{address_id}")
def delete_address(
    address_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
):
    addresses.delete_address(db, caller, address_id)
    return {"message": "Address deleted successfully"}


# =============================================================================
# Pricing & Shopper Session
# =============================================================================

def _load_product(db: Session, ref: str) -> Product:
    """Find a product by id or slug."""
    product = db.get(Product, ref)
    if product is None:
        product = db.scalar(select(Product).where(Product.slug == ref))
    if product is None:
        raise NotFound("Product", ref)
    return product


def _check_size(product: Product, size: Size) -> None:
    if size.value not in (product.sizes or []):
        raise ValidationError(f"{product.name} is not available in size {size.value}", field="size")


def _session_payload(session: ShopperSession, settings: Settings) -> dict:
    totals = session.totals(settings.free_shipping_threshold, settings.flat_shipping_fee)
    payload = session.model_dump(mode="json")
    payload["totals"] = {
        "subtotal": str(totals.subtotal),
        "shipping": str(totals.shipping),
        "total": str(totals.total),
    }
    return payload


@app.post("/api/pricing/quote", response_model=QuoteResponse)
def pricing_quote(
    request: QuoteRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Price lines at live product prices with the current shipping policy."""
    lines = []
    for line in request.items:
        product = _load_product(db, line.product_id)
        lines.append((from_minor(product.price_minor), line.quantity))

    totals = price_lines(lines, settings.free_shipping_threshold, settings.flat_shipping_fee)
    return QuoteResponse(
        subtotal=totals.subtotal,
        shipping=totals.shipping,
        total=totals.total,
        free_shipping_threshold=settings.free_shipping_threshold,
    )


@app.get("/api/session")
def get_shopper_session(
    caller: Caller = Depends(get_caller),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    """Cart, wishlist and recently viewed products with cart totals."""
    return _session_payload(store.load(caller.user_id), settings)


@app.post("/api/cart/items")
def add_cart_item(
    request: CartItemRequest,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    product = _load_product(db, request.product_id)
    if not product.in_stock:
        raise ValidationError(f"{product.name} is out of stock", field="product_id")
    _check_size(product, request.size)

    session = store.load(caller.user_id)
    session.add_to_cart(ProductView.from_product(product), request.size, request.quantity)
    store.save(session)
    return _session_payload(session, settings)


@app.patch("/api/cart/items")
def update_cart_item(
    request: CartQuantityRequest,
    caller: Caller = Depends(get_caller),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    session = store.load(caller.user_id)
    session.update_quantity(request.product_id, request.size, request.quantity)
    store.save(session)
    return _session_payload(session, settings)


@app.delete("/api/cart/items")
def remove_cart_item(
    request: CartLineRef,
    caller: Caller = Depends(get_caller),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    session = store.load(caller.user_id)
    session.remove_from_cart(request.product_id, request.size)
    store.save(session)
    return _session_payload(session, settings)


@app.delete("/api/cart")
def clear_cart(
    caller: Caller = Depends(get_caller),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    session = store.load(caller.user_id)
    session.clear_cart()
    store.save(session)
    return _session_payload(session, settings)


@app.post("/api/wishlist/{product_id}")
def add_to_wishlist(
    product_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    product = _load_product(db, product_id)
    session = store.load(caller.user_id)
    session.add_to_wishlist(ProductView.from_product(product))
    store.save(session)
    return _session_payload(session, settings)


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(
    product_id: str,
    caller: Caller = Depends(get_caller),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    session = store.load(caller.user_id)
    session.remove_from_wishlist(product_id)
    store.save(session)
    return _session_payload(session, settings)


@app.post("/api/recently-viewed/{product_id}")
def record_product_view(
    product_id: str,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
    store: SessionStore = Depends(get_session_store),
    settings: Settings = Depends(get_settings),
):
    product = _load_product(db, product_id)
    session = store.load(caller.user_id)
    session.record_view(ProductView.from_product(product))
    store.save(session)
    return _session_payload(session, settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "storefront.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
