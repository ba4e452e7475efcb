import os
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel
from pymongo.database import Database

from auth import AuthGate, Principal, admin_principal, build_auth_gate, current_principal, get_auth
from cache import Cache, build_cache
from cart import CartService
from catalog import Catalog
from config import Settings
from dashboard import dashboard_overview, dashboard_stats, order_stats, product_stats
from database import connect, ensure_indexes, get_db
from errors import Unauthenticated, register_exception_handlers
from logging_config import add_context, clear_context, configure_logging
from notifications import Notifier
from orders import OrderWorkflow
from ratelimit import api_rate_limit, auth_rate_limit, build_rate_limiter
from reviews import ReviewService
from schemas import (
    Address,
    Category as CategorySchema,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    Product as ProductSchema,
    Role,
    ShippingAddress,
)
from users import UserService, public_user
from wishlist import WishlistService

logger = structlog.get_logger(__name__)

PHONE_PATTERN = r"^[+]?[(]?[0-9]{3}[)]?[-\s.]?[0-9]{3}[-\s.]?[0-9]{4,6}$"

router = APIRouter(prefix="/api", dependencies=[Depends(api_rate_limit)])

AUTH_LIMIT = [Depends(auth_rate_limit)]


# ----------------------------------------------------------------------------
# Models (request bodies)
# ----------------------------------------------------------------------------

class RequestBody(BaseModel):
    """Request bodies accept both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RegisterRequest(RequestBody):
    name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    role: Optional[Role] = None


class LoginRequest(RequestBody):
    email: EmailStr
    password: str = Field(..., min_length=1)


class VerifyRequest(RequestBody):
    token: Optional[str] = None


class RefreshRequest(RequestBody):
    refresh_token: str = Field(..., min_length=1)


class AddressRequest(RequestBody):
    id: Optional[str] = None
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "United States"
    is_default: bool = False

    def to_address(self) -> Address:
        data = self.model_dump()
        if not data["id"]:
            data.pop("id")
        return Address(**data)


class ProfileUpdateRequest(RequestBody):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    addresses: Optional[List[AddressRequest]] = None


class ProductCreateRequest(RequestBody):
    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field("", max_length=1000)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock: int = Field(..., ge=0)
    image: str = ""
    rating: float = Field(0, ge=0, le=5)
    featured: bool = False


class ProductUpdateRequest(RequestBody):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    stock: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    featured: Optional[bool] = None


class CategoryRequest(RequestBody):
    name: str = Field(..., min_length=1)
    slug: Optional[str] = None
    description: str = ""
    image: str = ""
    parent: Optional[str] = None
    featured: bool = False
    order: int = 0


class CategoryUpdateRequest(RequestBody):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    parent: Optional[str] = None
    featured: Optional[bool] = None
    order: Optional[int] = None


class AddCartRequest(RequestBody):
    product_id: str = Field(..., pattern=r"^[0-9a-fA-F]{24}$")
    quantity: int = Field(1, ge=1)


class UpdateCartRequest(RequestBody):
    quantity: int = Field(..., ge=1)


class ShippingAddressRequest(RequestBody):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    country: str = "United States"


class CheckoutRequest(RequestBody):
    shipping_address: ShippingAddressRequest
    payment_method: PaymentMethod = "credit_card"
    notes: Optional[str] = None


class OrderStatusRequest(RequestBody):
    status: OrderStatus


class PaymentStatusRequest(RequestBody):
    payment_status: PaymentStatus
    transaction_id: Optional[str] = None


class ReviewRequest(RequestBody):
    product_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


# ----------------------------------------------------------------------------
# Dependencies
# ----------------------------------------------------------------------------

def get_users(request: Request) -> UserService:
    return request.app.state.users


def get_catalog(request: Request) -> Catalog:
    return request.app.state.catalog


def get_carts(request: Request) -> CartService:
    return request.app.state.carts


def get_orders(request: Request) -> OrderWorkflow:
    return request.app.state.orders


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier


def get_wishlists(request: Request) -> WishlistService:
    return request.app.state.wishlists


def get_reviews(request: Request) -> ReviewService:
    return request.app.state.reviews


# ----------------------------------------------------------------------------
# Auth Endpoints
# ----------------------------------------------------------------------------

@router.post("/auth/register", status_code=201, dependencies=AUTH_LIMIT)
def register(body: RegisterRequest, users: UserService = Depends(get_users), auth: AuthGate = Depends(get_auth)):
    user = users.register(body.name, body.email, body.password, phone=body.phone, role=body.role or "user")
    return {
        "token": auth.create_access_token(user),
        "refresh_token": auth.create_refresh_token(user),
        "user": public_user(user),
    }


@router.post("/auth/login", dependencies=AUTH_LIMIT)
def login(body: LoginRequest, auth: AuthGate = Depends(get_auth)):
    token, refresh_token, user = auth.login(body.email, body.password)
    return {"token": token, "refresh_token": refresh_token, "user": public_user(user)}


@router.post("/auth/verify", dependencies=AUTH_LIMIT)
def verify(request: Request, body: Optional[VerifyRequest] = None, auth: AuthGate = Depends(get_auth)):
    token = AuthGate.token_from_header(request.headers.get("Authorization")) or (body.token if body else None)
    if not token:
        raise Unauthenticated("No token provided")
    principal = auth.principal_for_token(token)
    return {"valid": True, "user": principal.model_dump()}


@router.post("/auth/refresh", dependencies=AUTH_LIMIT)
def refresh(body: RefreshRequest, auth: AuthGate = Depends(get_auth)):
    token, user = auth.refresh(body.refresh_token)
    return {"token": token, "user": public_user(user)}


@router.post("/auth/logout", dependencies=AUTH_LIMIT)
def logout(principal: Principal = Depends(current_principal)):
    # Tokens are stateless; the client discards them.
    logger.info("User logged out", user_id=principal.id)
    return {"message": "Logged out successfully"}


@router.get("/auth/user", dependencies=AUTH_LIMIT)
def get_profile(principal: Principal = Depends(current_principal), users: UserService = Depends(get_users)):
    return {"success": True, "data": users.profile(principal)}


@router.put("/auth/user", dependencies=AUTH_LIMIT)
def update_profile(
    body: ProfileUpdateRequest,
    principal: Principal = Depends(current_principal),
    users: UserService = Depends(get_users),
):
    addresses = [a.to_address() for a in body.addresses] if body.addresses is not None else None
    user = users.update_profile(principal, name=body.name, phone=body.phone, addresses=addresses)
    return {"success": True, "data": user, "message": "Profile updated successfully"}


@router.post("/auth/user/addresses", status_code=201, dependencies=AUTH_LIMIT)
def add_address(
    body: AddressRequest,
    principal: Principal = Depends(current_principal),
    users: UserService = Depends(get_users),
):
    return {"success": True, "data": users.add_address(principal, body.to_address())}


@router.put("/auth/user/addresses/{address_id}/default", dependencies=AUTH_LIMIT)
def set_default_address(
    address_id: str,
    principal: Principal = Depends(current_principal),
    users: UserService = Depends(get_users),
):
    return {"success": True, "data": users.set_default_address(principal, address_id)}


# ----------------------------------------------------------------------------
# Product Endpoints
# ----------------------------------------------------------------------------

@router.get("/products")
def list_products(
    q: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    featured: Optional[bool] = Query(None),
    sort: Optional[str] = Query(None, description="price_asc|price_desc|rating_desc|newest"),
    page: int = Query(1, ge=1),
    limit: int = Query(0, ge=0, le=100),
    catalog: Catalog = Depends(get_catalog),
):
    return catalog.list_products(q=q, category=category, featured=featured, sort=sort, page=page, limit=limit)


@router.get("/products/{product_id}")
def get_product(product_id: str, catalog: Catalog = Depends(get_catalog)):
    return catalog.get_product(product_id)


@router.post("/products", status_code=201)
def create_product(
    body: ProductCreateRequest,
    admin: Principal = Depends(admin_principal),
    catalog: Catalog = Depends(get_catalog),
):
    product = catalog.create_product(ProductSchema(**body.model_dump()))
    return {"message": "Product added successfully!", "product": product}


@router.put("/products/{product_id}")
def update_product(
    product_id: str,
    body: ProductUpdateRequest,
    admin: Principal = Depends(admin_principal),
    catalog: Catalog = Depends(get_catalog),
):
    product = catalog.update_product(product_id, body.model_dump(exclude_unset=True, exclude_none=True))
    return {"message": "Product updated!", "product": product}


@router.delete("/products/{product_id}")
def delete_product(
    product_id: str,
    admin: Principal = Depends(admin_principal),
    catalog: Catalog = Depends(get_catalog),
):
    catalog.delete_product(product_id)
    return {"message": "Product deleted successfully!"}


# ----------------------------------------------------------------------------
# Categories
# ----------------------------------------------------------------------------

@router.get("/categories")
def list_categories(
    featured: Optional[bool] = Query(None),
    parent: Optional[str] = Query(None),
    catalog: Catalog = Depends(get_catalog),
):
    return catalog.list_categories(featured=featured, parent=parent)


@router.get("/categories/{identifier}")
def get_category(identifier: str, catalog: Catalog = Depends(get_catalog)):
    return catalog.get_category(identifier)


@router.post("/categories", status_code=201)
def create_category(
    body: CategoryRequest,
    admin: Principal = Depends(admin_principal),
    catalog: Catalog = Depends(get_catalog),
):
    data = body.model_dump()
    data["slug"] = data["slug"] or ""
    return catalog.create_category(CategorySchema(**data))


@router.put("/categories/{category_id}")
def update_category(
    category_id: str,
    body: CategoryUpdateRequest,
    admin: Principal = Depends(admin_principal),
    catalog: Catalog = Depends(get_catalog),
):
    return catalog.update_category(category_id, body.model_dump(exclude_unset=True, exclude_none=True))


@router.delete("/categories/{category_id}")
def delete_category(
    category_id: str,
    admin: Principal = Depends(admin_principal),
    catalog: Catalog = Depends(get_catalog),
):
    catalog.delete_category(category_id)
    return {"message": "Category deleted successfully"}


# ----------------------------------------------------------------------------
# Cart
# ----------------------------------------------------------------------------

@router.get("/cart")
def get_cart(principal: Principal = Depends(current_principal), carts: CartService = Depends(get_carts)):
    return {"success": True, "data": carts.get(principal)}


@router.post("/cart")
def add_to_cart(
    body: AddCartRequest,
    principal: Principal = Depends(current_principal),
    carts: CartService = Depends(get_carts),
):
    cart = carts.add_item(principal, body.product_id, body.quantity)
    return {"success": True, "data": cart, "message": "Item added to cart successfully"}


@router.put("/cart/{item_id}")
def update_cart_item(
    item_id: str,
    body: UpdateCartRequest,
    principal: Principal = Depends(current_principal),
    carts: CartService = Depends(get_carts),
):
    cart = carts.update_item(principal, item_id, body.quantity)
    return {"success": True, "data": cart, "message": "Cart updated successfully"}


@router.delete("/cart/{item_id}")
def remove_cart_item(
    item_id: str,
    principal: Principal = Depends(current_principal),
    carts: CartService = Depends(get_carts),
):
    cart = carts.remove_item(principal, item_id)
    return {"success": True, "data": cart, "message": "Item removed from cart successfully"}


@router.delete("/cart")
def clear_cart(principal: Principal = Depends(current_principal), carts: CartService = Depends(get_carts)):
    return {"success": True, "data": carts.clear(principal), "message": "Cart cleared successfully"}


# ----------------------------------------------------------------------------
# Orders (Checkout & Tracking)
# ----------------------------------------------------------------------------

@router.post("/orders", status_code=201)
def checkout(
    body: CheckoutRequest,
    principal: Principal = Depends(current_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    return orders.checkout(
        principal,
        ShippingAddress(**body.shipping_address.model_dump()),
        payment_method=body.payment_method,
        notes=body.notes,
    )


@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    principal: Principal = Depends(current_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    # admins page through every order; everyone else gets their own list
    if principal.is_admin:
        return orders.list_all(principal, page=page, limit=limit)
    return orders.list_for_user(principal)


@router.get("/orders/user/{user_id}")
def list_user_orders(
    user_id: str,
    principal: Principal = Depends(current_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    return orders.list_for_user(principal, user_id)


@router.get("/orders/{order_id}")
def get_order(order_id: str, principal: Principal = Depends(current_principal), orders: OrderWorkflow = Depends(get_orders)):
    return orders.get(principal, order_id)


@router.get("/orders/{order_id}/status")
def get_order_status(
    order_id: str,
    principal: Principal = Depends(current_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    return orders.status_of(principal, order_id)


@router.put("/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    principal: Principal = Depends(current_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    return orders.cancel(principal, order_id)


@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: str,
    body: OrderStatusRequest,
    admin: Principal = Depends(admin_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    order = orders.update_status(admin, order_id, body.status)
    return {"success": True, "data": order, "message": "Order status updated successfully"}


@router.patch("/orders/{order_id}/payment")
def update_payment_status(
    order_id: str,
    body: PaymentStatusRequest,
    principal: Principal = Depends(current_principal),
    orders: OrderWorkflow = Depends(get_orders),
):
    order = orders.update_payment(principal, order_id, body.payment_status, body.transaction_id)
    return {"success": True, "data": order, "message": "Payment status updated successfully"}


# ----------------------------------------------------------------------------
# Wishlist, Reviews, Notifications
# ----------------------------------------------------------------------------

@router.get("/wishlist")
def get_wishlist(principal: Principal = Depends(current_principal), wishlists: WishlistService = Depends(get_wishlists)):
    return wishlists.get(principal)


@router.post("/wishlist/add/{product_id}")
def add_wishlist(
    product_id: str,
    principal: Principal = Depends(current_principal),
    wishlists: WishlistService = Depends(get_wishlists),
):
    return wishlists.add(principal, product_id)


@router.delete("/wishlist/remove/{product_id}")
def remove_wishlist(
    product_id: str,
    principal: Principal = Depends(current_principal),
    wishlists: WishlistService = Depends(get_wishlists),
):
    return wishlists.remove(principal, product_id)


@router.get("/reviews/product/{product_id}")
def product_reviews(product_id: str, reviews: ReviewService = Depends(get_reviews)):
    return reviews.for_product(product_id)


@router.post("/reviews", status_code=201)
def add_review(
    body: ReviewRequest,
    principal: Principal = Depends(current_principal),
    reviews: ReviewService = Depends(get_reviews),
):
    review = reviews.create(principal, body.product_id, body.rating, body.comment)
    return {"message": "Review added successfully", "review": review}


@router.get("/notifications")
def list_notifications(principal: Principal = Depends(current_principal), notifier: Notifier = Depends(get_notifier)):
    return notifier.list_for(principal)


@router.patch("/notifications/read-all")
def read_all_notifications(
    principal: Principal = Depends(current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    notifier.mark_all_read(principal)
    return {"message": "All notifications marked as read"}


@router.patch("/notifications/{notification_id}/read")
def read_notification(
    notification_id: str,
    principal: Principal = Depends(current_principal),
    notifier: Notifier = Depends(get_notifier),
):
    return notifier.mark_read(principal, notification_id)


# ----------------------------------------------------------------------------
# Admin Dashboard
# ----------------------------------------------------------------------------

@router.get("/dashboard/stats")
def get_dashboard_stats(
    request: Request,
    admin: Principal = Depends(admin_principal),
    db: Database = Depends(get_db),
):
    return dashboard_stats(db, request.app.state.settings.low_stock_threshold)


@router.get("/dashboard")
def get_dashboard(
    period: str = Query("week", description="day|week|month|year"),
    admin: Principal = Depends(admin_principal),
    db: Database = Depends(get_db),
):
    return dashboard_overview(db, period)


@router.get("/dashboard/products/stats")
def get_product_stats(admin: Principal = Depends(admin_principal), db: Database = Depends(get_db)):
    return product_stats(db)


@router.get("/dashboard/orders/stats")
def get_order_stats(admin: Principal = Depends(admin_principal), db: Database = Depends(get_db)):
    return order_stats(db)


@router.get("")
def api_root():
    return {"message": "Welcome to Vireon API"}


# ----------------------------------------------------------------------------
# App and Startup
# ----------------------------------------------------------------------------

def wire(app: FastAPI, settings: Settings, db: Database, cache: Cache) -> None:
    """Build the per-app collaborators and attach them to `app.state`."""
    ensure_indexes(db)
    auth = build_auth_gate(settings, db)
    notifier = Notifier(db)
    catalog = Catalog(db, cache)
    carts = CartService(db)
    users = UserService(db, auth)

    app.state.db = db
    app.state.cache = cache
    app.state.auth = auth
    app.state.notifier = notifier
    app.state.catalog = catalog
    app.state.carts = carts
    app.state.users = users
    app.state.orders = OrderWorkflow(db, catalog, carts, notifier)
    app.state.wishlists = WishlistService(db)
    app.state.reviews = ReviewService(db)

    if settings.admin_email and settings.admin_password:
        users.ensure_admin(settings.admin_email, settings.admin_password)


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None, cache: Optional[Cache] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level, settings.environment)

    app = FastAPI(title="Vireon API")
    app.state.settings = settings
    app.state.rate_limiter = build_rate_limiter(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        clear_context()
        add_context(method=request.method, path=request.url.path)
        return await call_next(request)

    register_exception_handlers(app)
    app.include_router(router)

    @app.get("/health")
    def health(request: Request) -> Dict[str, Any]:
        try:
            collections = request.app.state.db.list_collection_names()
            return {"backend": "ok", "db": "ok", "collections": collections}
        except Exception as e:
            return {"backend": "ok", "db": f"error: {e}"}

    if database is not None:
        wire(app, settings, database, cache or build_cache(settings))

    @app.on_event("startup")
    def on_startup():
        if not hasattr(app.state, "db"):
            wire(app, settings, connect(settings), cache or build_cache(settings))
        logger.info("Vireon API started", environment=settings.environment)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
