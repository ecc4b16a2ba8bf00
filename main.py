import os
import time
import secrets
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import database
from auth import (
    MIN_PASSWORD_LENGTH,
    can_access_order,
    end_session,
    get_current_user,
    hash_password,
    public_user,
    require_admin,
    start_session,
    verify_password,
)
from cart import Cart, MongoCartStore, to_money
from catalog import (
    ProductFilters,
    SortBy,
    create_category,
    create_product,
    create_variant,
    get_product,
    get_product_detail,
    list_categories,
    list_products,
)
from database import create_document, get_db, now, oid
from errors import InvalidTransition, NotFound, StorefrontError, ValidationFailed
from orders import (
    OrderStatus,
    can_transition,
    cancel_order,
    create_order,
    get_order,
    list_orders,
    update_order_status,
)
from payments import PlaidPaymentProvider, get_payment_provider
from reviews import add_review, list_reviews
from schemas import Category, NewsletterSubscriber, PaymentMethod, Product, ProductVariant, ShippingInfo, User
from seed import seed_catalog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("storefront")

# App setup
@asynccontextmanager
async def lifespan(app: FastAPI):
    database.connect()
    yield


app = FastAPI(title="Storefront API", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s in %dms", request.method, request.url.path, response.status_code, elapsed)
    return response


# Error mapping

@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    body: Dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, ValidationFailed):
        body["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for err in exc.errors():
        loc = [str(part) for part in err["loc"] if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(loc), "message": err["msg"]})
    return JSONResponse(status_code=400, content={"detail": "Invalid input", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# Schemas (request/response)
class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: EmailStr
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class ReviewRequest(BaseModel):
    rating: int
    text: str = ""


class OrderRequest(ShippingInfo):
    total: float
    payment_method: PaymentMethod
    items: List[Dict[str, Any]]
    order_id: Optional[str] = Field(None, description="Client-chosen id that makes retries safe")


class StatusUpdate(BaseModel):
    status: str


class CartItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    variant: Optional[str] = None


class CartLineRef(BaseModel):
    product_id: str
    variant: Optional[str] = None


class VariantRequest(BaseModel):
    name: str = Field(..., min_length=1)
    in_stock: bool = True


class ExchangeTokenRequest(BaseModel):
    public_token: str = Field(..., min_length=1)


class PaymentRequest(BaseModel):
    amount: float = Field(..., gt=0)
    account_id: str = Field(..., min_length=1)
    order_id: str
    access_token: Optional[str] = None


# Health and helpers
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = "⚠️ Connected but error"
    return response


def user_cart(db: Database, user: dict) -> Cart:
    return Cart.load(MongoCartStore(db), str(user["_id"]))


# Auth
@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, response: Response, db: Database = Depends(get_db)):
    if db["user"].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="User already exists")
    new_user = User(**payload.model_dump(exclude={"password"}), hashed_password=hash_password(payload.password))
    try:
        inserted_id = create_document(db, "user", new_user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    user = db["user"].find_one({"_id": oid(inserted_id)})
    start_session(response, user)
    logger.info("User %s registered", inserted_id)
    return public_user(user)


@app.post("/auth/login")
def login(payload: LoginRequest, response: Response, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email})
    if not user or not verify_password(payload.password, user.get("hashed_password", "")):
        raise HTTPException(status_code=401, detail="Incorrect email or password")
    start_session(response, user)
    return public_user(user)


@app.post("/auth/logout")
def logout(response: Response):
    end_session(response)
    return {"message": "Logged out successfully"}


@app.get("/auth/user")
def current_user(user: dict = Depends(get_current_user)):
    return public_user(user)


@app.put("/users/profile")
def update_profile(update: ProfileUpdate, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    changes = update.model_dump(exclude_unset=True)
    changes["updated_at"] = now()
    db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    return public_user(db["user"].find_one({"_id": user["_id"]}))


@app.put("/users/change-password")
def change_password(payload: ChangePasswordRequest, user: dict = Depends(get_current_user),
                    db: Database = Depends(get_db)):
    if not verify_password(payload.current_password, user.get("hashed_password", "")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"hashed_password": hash_password(payload.new_password), "updated_at": now()}},
    )
    return {"message": "Password updated successfully"}


# Catalog
@app.get("/categories")
def categories(db: Database = Depends(get_db)):
    return list_categories(db)


@app.get("/products")
def products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    featured: Optional[bool] = None,
    is_new: Optional[bool] = Query(None, alias="new"),
    sort_by: Optional[SortBy] = Query(None, alias="sortBy"),
    limit: Optional[int] = Query(None, gt=0),
    db: Database = Depends(get_db),
):
    filters = ProductFilters(
        category=category,
        search=search,
        min_price=min_price,
        max_price=max_price,
        in_stock=in_stock,
        featured=featured,
        is_new=is_new,
        sort_by=sort_by,
        limit=limit,
    )
    return list_products(db, filters)


@app.get("/products/{product_id}")
def product_detail(product_id: str, db: Database = Depends(get_db)):
    product = get_product_detail(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    return product


@app.get("/products/{product_id}/reviews")
def product_reviews(product_id: str, db: Database = Depends(get_db)):
    product = get_product(db, product_id)
    if product is None:
        raise NotFound("Product not found")
    return list_reviews(db, product["id"])


@app.post("/products/{product_id}/reviews", status_code=201)
def post_review(product_id: str, payload: ReviewRequest, user: dict = Depends(get_current_user),
                db: Database = Depends(get_db)):
    return add_review(db, product_id, str(user["_id"]), payload.rating, payload.text)


# Cart
@app.get("/cart")
def get_cart(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return user_cart(db, user).summary()


@app.post("/cart/add")
def cart_add(item: CartItemRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product = get_product(db, item.product_id)
    if product is None:
        raise NotFound("Product not found")
    variants = [v["name"] for v in db["product_variant"].find({"product_id": product["id"]})]
    if item.variant is not None and item.variant not in variants:
        raise ValidationFailed.single("variant", "Unknown variant for this product")
    cart = user_cart(db, user)
    cart.add_item(
        {
            "product_id": product["id"],
            "name": product["name"],
            "price": product["price"],
            "image_url": product.get("image_url"),
            "in_stock": product.get("in_stock", True),
        },
        quantity=item.quantity,
        variant=item.variant,
    )
    return cart.summary()


@app.post("/cart/increase")
def cart_increase(ref: CartLineRef, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = user_cart(db, user)
    if cart.increase(ref.product_id, ref.variant) is None:
        raise NotFound("Item not in cart")
    return cart.summary()


@app.post("/cart/decrease")
def cart_decrease(ref: CartLineRef, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = user_cart(db, user)
    if cart.decrease(ref.product_id, ref.variant) is None:
        raise NotFound("Item not in cart")
    return cart.summary()


@app.post("/cart/remove")
def cart_remove(ref: CartLineRef, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = user_cart(db, user)
    cart.remove_item(ref.product_id, ref.variant)
    return cart.summary()


@app.delete("/cart")
def cart_clear(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = user_cart(db, user)
    cart.clear()
    return cart.summary()


# Checkout & Orders
@app.get("/orders")
def orders(user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return list_orders(db, str(user["_id"]))


@app.post("/orders", status_code=201)
def place_order(payload: OrderRequest, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    uid = str(user["_id"])
    shipping = ShippingInfo(**payload.model_dump(include=set(ShippingInfo.model_fields)))
    order = create_order(
        db,
        uid,
        shipping,
        payload.payment_method,
        payload.total,
        payload.items,
        order_id=payload.order_id,
    )
    user_cart(db, user).clear()
    return order


def owned_order(db: Database, order_id: str, user: dict) -> dict:
    order = get_order(db, order_id)
    if order is None:
        raise NotFound("Order not found")
    if not can_access_order(user, order):
        raise HTTPException(status_code=403, detail="Forbidden")
    return order


@app.get("/orders/{order_id}")
def order_detail(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return owned_order(db, order_id, user)


@app.post("/orders/{order_id}/cancel")
def order_cancel(order_id: str, user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    owned_order(db, order_id, user)
    return cancel_order(db, order_id)


@app.patch("/orders/{order_id}/status")
def order_status(order_id: str, payload: StatusUpdate, admin: dict = Depends(require_admin),
                 db: Database = Depends(get_db)):
    return update_order_status(db, order_id, payload.status)


# Bank-link payments
@app.post("/plaid/create-link-token")
def plaid_link_token(user: dict = Depends(get_current_user),
                     provider: PlaidPaymentProvider = Depends(get_payment_provider)):
    return provider.create_link_token(str(user["_id"]))


@app.post("/plaid/exchange-token")
def plaid_exchange_token(payload: ExchangeTokenRequest, user: dict = Depends(get_current_user),
                         provider: PlaidPaymentProvider = Depends(get_payment_provider),
                         db: Database = Depends(get_db)):
    exchanged = provider.exchange_public_token(payload.public_token)
    # kept server side; public_user never exposes it
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"plaid_access_token": exchanged.get("access_token"), "plaid_item_id": exchanged.get("item_id")}},
    )
    return {"success": True, "item_id": exchanged.get("item_id")}


@app.post("/plaid/payment")
def plaid_payment(payload: PaymentRequest, user: dict = Depends(get_current_user),
                  provider: PlaidPaymentProvider = Depends(get_payment_provider),
                  db: Database = Depends(get_db)):
    order = owned_order(db, payload.order_id, user)
    if not can_transition(order["status"], OrderStatus.PROCESSING.value):
        raise InvalidTransition(order["status"], OrderStatus.PROCESSING.value)
    if to_money(payload.amount) != to_money(order["total"]):
        raise ValidationFailed.single("amount", "Amount does not match the order total")
    access_token = payload.access_token or user.get("plaid_access_token")
    if not access_token:
        raise ValidationFailed.single("access_token", "No linked bank account")
    reference = f"ORDER-{payload.order_id}-{secrets.token_hex(4)}"
    payment = provider.create_payment(access_token, payload.amount, payload.account_id,
                                      user.get("name") or "Customer", reference)
    update_order_status(db, payload.order_id, "processing", payment_id=payment.get("payment_id"))
    return payment


@app.get("/plaid/payment/{payment_id}")
def plaid_payment_status(payment_id: str, user: dict = Depends(get_current_user),
                         provider: PlaidPaymentProvider = Depends(get_payment_provider)):
    return provider.get_payment_status(payment_id)


# Admin
@app.post("/admin/categories", status_code=201)
def admin_create_category(payload: Category, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return create_category(db, payload)


@app.post("/admin/products", status_code=201)
def admin_create_product(payload: Product, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return create_product(db, payload)


@app.post("/admin/products/{product_id}/variants", status_code=201)
def admin_create_variant(product_id: str, payload: VariantRequest, admin: dict = Depends(require_admin),
                         db: Database = Depends(get_db)):
    return create_variant(db, ProductVariant(product_id=product_id, **payload.model_dump()))


@app.post("/admin/seed")
def admin_seed(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return seed_catalog(db)


# Misc
@app.post("/newsletter/subscribe")
def newsletter_subscribe(payload: NewsletterSubscriber, db: Database = Depends(get_db)):
    db["newsletter"].update_one(
        {"email": payload.email},
        {"$setOnInsert": {"email": payload.email, "created_at": now()}},
        upsert=True,
    )
    return {"success": True, "message": "Subscribed successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
