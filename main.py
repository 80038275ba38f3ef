import re
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import CORS_ORIGINS, PORT
from database import create_document, ensure_indexes, get_db, get_documents, now, sanitize, to_object_id
from logger import get_logger
from payments import (
    CHECKOUT_COMPLETED,
    CHECKOUT_EXPIRED,
    CHECKOUT_PAYMENT_FAILED,
    PaymentError,
    StripeGateway,
    WebhookVerificationError,
    get_payment_gateway,
    shipping_from_session,
)
from schemas import (
    ADMIN_ORDER_STATUSES,
    CartItemCreate,
    CartItemUpdate,
    LoginRequest,
    Order as OrderSchema,
    OrderItem as OrderItemSchema,
    OrderStatus,
    PaymentStatus,
    ProductCreate,
    ProductUpdate,
    ProfileUpdate,
    RegisterRequest,
    Review as ReviewSchema,
    ReviewCreate,
    Role,
    RoleUpdate,
    StatusUpdate,
    User as UserSchema,
    UserOut,
)
from security import create_access_token, get_current_user, get_password_hash, public_user, require_admin, verify_password

logger = get_logger("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL not set; requests needing the database will fail")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----- Error envelope -----

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"message": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors: Dict[str, str] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        errors.setdefault(".".join(loc) or "body", err.get("msg", "Invalid value"))
    return JSONResponse(status_code=400, content={"message": "Validation error", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error", "error": str(exc)})


# ----- Helpers -----

def find_product(db: Database, product_id: str) -> dict:
    product_oid = to_object_id(product_id)
    product = db["product"].find_one({"_id": product_oid}) if product_oid else None
    if not product:
        raise HTTPException(404, "Product not found")
    return product


def products_by_id(db: Database, product_ids: List[str]) -> Dict[str, dict]:
    oids = [ObjectId(p) for p in set(product_ids) if ObjectId.is_valid(p)]
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}


def product_summary(product: dict) -> dict:
    return {"id": str(product["_id"]), "name": product.get("name"), "price": product.get("price"), "image": product.get("image")}


def serialize_cart_item(item: dict, product: Optional[dict]) -> dict:
    d = sanitize(item)
    d["product"] = product_summary(product) if product else None
    return d


def get_order_or_404(db: Database, order_id: str, user_id: Optional[str] = None) -> dict:
    order_oid = to_object_id(order_id)
    query = {"_id": order_oid}
    if user_id is not None:
        # Other users' orders are reported exactly like missing ones.
        query["user_id"] = user_id
    order = db["order"].find_one(query) if order_oid else None
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@app.get("/")
def read_root():
    return {"message": "Welcome to the Storefront API"}


# ----- Auth -----

@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise HTTPException(400, "User with this email already exists")
    user = UserSchema(username=payload.username, email=email, password_hash=get_password_hash(payload.password))
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise HTTPException(400, "User with this email already exists")
    user_doc = db["user"].find_one({"_id": ObjectId(user_id)})
    logger.info("Registered user %s", user_id)
    return {
        "message": "User registered successfully",
        "user": public_user(user_doc).model_dump(),
        "token": create_access_token(user_doc),
    }


@app.post("/api/auth/login")
def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise HTTPException(401, "Invalid email or password")
    return {
        "message": "Login successful",
        "user": public_user(user).model_dump(),
        "token": create_access_token(user),
    }


@app.get("/api/auth/me")
def me(current: UserOut = Depends(get_current_user)):
    return {"message": "User retrieved successfully", "user": current.model_dump()}


@app.post("/api/auth/logout")
def logout(current: UserOut = Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy.
    return {"message": "Logout successful"}


# ----- Profile -----

@app.get("/api/users/profile")
def get_profile(current: UserOut = Depends(get_current_user)):
    return {"message": "Profile retrieved successfully", "user": current.model_dump()}


@app.put("/api/users/profile")
def update_profile(payload: ProfileUpdate, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in updates:
        updates["email"] = updates["email"].lower()
        other = db["user"].find_one({"email": updates["email"]})
        if other and str(other["_id"]) != current.id:
            raise HTTPException(400, "Email already in use")
    if updates:
        try:
            db["user"].update_one({"_id": ObjectId(current.id)}, {"$set": {**updates, "updated_at": now()}})
        except DuplicateKeyError:
            raise HTTPException(400, "Email already in use")
    user = db["user"].find_one({"_id": ObjectId(current.id)})
    return {"message": "Profile updated successfully", "user": public_user(user).model_dump()}


# ----- Catalog -----

@app.get("/api/products")
def list_products(category: Optional[str] = None, search: Optional[str] = None, db: Database = Depends(get_db)):
    filter_q = {}
    if category:
        filter_q["categories"] = category
    if search:
        filter_q["name"] = {"$regex": re.escape(search), "$options": "i"}
    products = get_documents(db, "product", filter_q, sort=[("created_at", 1)])
    return {"message": "Products retrieved successfully", "products": products}


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return {"message": "Product retrieved successfully", "product": sanitize(find_product(db, product_id))}


@app.post("/api/products", status_code=201)
def create_product(payload: ProductCreate, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    product_id = create_document(db, "product", payload)
    logger.info("Product %s created by %s", product_id, admin.id)
    product = db["product"].find_one({"_id": ObjectId(product_id)})
    return {"message": "Product created successfully", "product": sanitize(product)}


@app.put("/api/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    product = find_product(db, product_id)
    updates = payload.model_dump(mode="json", exclude_unset=True)
    if updates:
        product = db["product"].find_one_and_update(
            {"_id": product["_id"]},
            {"$set": {**updates, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
    return {"message": "Product updated successfully", "product": sanitize(product)}


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    product = find_product(db, product_id)
    db["product"].delete_one({"_id": product["_id"]})
    db["cartitem"].delete_many({"product_id": str(product["_id"])})
    logger.info("Product %s deleted by %s", product_id, admin.id)
    return {"message": "Product deleted successfully"}


# ----- Cart -----

@app.get("/api/cart")
def get_cart(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    items = list(db["cartitem"].find({"user_id": current.id}).sort([("created_at", 1), ("_id", 1)]))
    products = products_by_id(db, [i["product_id"] for i in items])
    cart_items = [serialize_cart_item(i, products[i["product_id"]]) for i in items if i["product_id"] in products]
    total = sum(c["product"]["price"] * c["quantity"] for c in cart_items)
    return {"message": "Cart retrieved successfully", "cart_items": cart_items, "total": round(total, 2)}


@app.post("/api/cart/items", status_code=201)
def add_to_cart(payload: CartItemCreate, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    product = find_product(db, payload.product_id)
    stamp = now()
    # One row per (user, product); the unique index makes the upsert the only writer.
    item = db["cartitem"].find_one_and_update(
        {"user_id": current.id, "product_id": str(product["_id"])},
        {"$inc": {"quantity": payload.quantity}, "$set": {"updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return {"message": "Item added to cart successfully", "cart_item": serialize_cart_item(item, product)}


@app.put("/api/cart/items/{item_id}")
def update_cart_item(item_id: str, payload: CartItemUpdate, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    item_oid = to_object_id(item_id)
    item = None
    if item_oid:
        item = db["cartitem"].find_one_and_update(
            {"_id": item_oid, "user_id": current.id},
            {"$set": {"quantity": payload.quantity, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
    if not item:
        raise HTTPException(404, "Cart item not found")
    product = products_by_id(db, [item["product_id"]]).get(item["product_id"])
    return {"message": "Cart item updated successfully", "cart_item": serialize_cart_item(item, product)}


@app.delete("/api/cart/items/{item_id}")
def remove_from_cart(item_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    item_oid = to_object_id(item_id)
    deleted = db["cartitem"].delete_one({"_id": item_oid, "user_id": current.id}).deleted_count if item_oid else 0
    if not deleted:
        raise HTTPException(404, "Cart item not found")
    return {"message": "Item removed from cart successfully"}


# ----- Reviews -----

@app.post("/api/reviews", status_code=201)
def create_review(payload: ReviewCreate, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    product = find_product(db, payload.product_id)
    review = ReviewSchema(user_id=current.id, product_id=str(product["_id"]), rating=payload.rating, comment=payload.comment)
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise HTTPException(400, "You have already reviewed this product")
    return {"message": "Review created successfully", "review": sanitize(db["review"].find_one({"_id": ObjectId(review_id)}))}


@app.get("/api/reviews/{product_id}")
def get_product_reviews(product_id: str, db: Database = Depends(get_db)):
    product = find_product(db, product_id)
    revs = list(db["review"].find({"product_id": str(product["_id"])}).sort([("created_at", -1), ("_id", -1)]))
    user_ids = [ObjectId(r["user_id"]) for r in revs if ObjectId.is_valid(r["user_id"])]
    users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}})} if revs else {}
    reviews = []
    for r in revs:
        d = sanitize(r)
        author = users.get(r["user_id"])
        d["user"] = {"id": r["user_id"], "username": author.get("username")} if author else None
        reviews.append(d)
    average = sum(r["rating"] for r in revs) / len(revs) if revs else 0
    return {
        "message": "Reviews retrieved successfully",
        "average_rating": round(average, 2),
        "total_reviews": len(revs),
        "reviews": reviews,
    }


# ----- Orders -----

@app.post("/api/orders/checkout")
def create_checkout_session(
    current: UserOut = Depends(get_current_user),
    db: Database = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    cart_items = list(db["cartitem"].find({"user_id": current.id}).sort([("created_at", 1), ("_id", 1)]))
    if not cart_items:
        raise HTTPException(400, "Cart is empty")

    # Snapshot: prices read here are the ones charged and recorded.
    products = products_by_id(db, [i["product_id"] for i in cart_items])
    order_items: List[OrderItemSchema] = []
    line_items = []
    total = 0.0
    for item in cart_items:
        product = products.get(item["product_id"])
        if not product:
            raise HTTPException(400, "Invalid product in cart")
        price = float(product["price"])
        total += price * item["quantity"]
        order_items.append(OrderItemSchema(
            id=str(ObjectId()),
            product_id=item["product_id"],
            name=product["name"],
            image=product.get("image"),
            quantity=item["quantity"],
            price_at_time=price,
        ))
        line_items.append(gateway.line_item(product["name"], price, item["quantity"], product.get("image")))
    total = round(total, 2)

    try:
        session = gateway.create_checkout_session(line_items, current.email, {"user_id": current.id})
    except PaymentError as e:
        raise HTTPException(500, {"message": "Error creating checkout session", "error": str(e)})

    order = OrderSchema(user_id=current.id, items=order_items, total_amount=total, stripe_session_id=session.id)
    # Order and its items go in as one document; unset ids stay absent for the sparse indexes.
    order_id = create_document(db, "order", order.model_dump(mode="json", exclude_none=True))
    logger.info("Order %s pending for user %s (session %s, total %.2f)", order_id, current.id, session.id, total)
    return {
        "message": "Checkout session created",
        "session_id": session.id,
        "session_url": session.url,
        "order_id": order_id,
    }


def apply_payment_event(db: Database, event: dict) -> None:
    event_type = event.get("type")
    session = (event.get("data") or {}).get("object") or {}
    session_id = session.get("id")
    if not session_id:
        return

    if event_type == CHECKOUT_COMPLETED:
        updates = {
            "status": OrderStatus.PROCESSING.value,
            "payment_status": PaymentStatus.PAID.value,
            "shipping_address": shipping_from_session(session),
            "updated_at": now(),
        }
        if session.get("payment_intent"):
            updates["payment_intent_id"] = session["payment_intent"]
        order = db["order"].find_one_and_update(
            {"stripe_session_id": session_id},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            logger.info("No order for completed session %s", session_id)
            return
        cleared = db["cartitem"].delete_many({"user_id": order["user_id"]}).deleted_count
        logger.info("Order %s paid; cleared %d cart rows", order["_id"], cleared)
    elif event_type in (CHECKOUT_EXPIRED, CHECKOUT_PAYMENT_FAILED):
        result = db["order"].update_one(
            {"stripe_session_id": session_id, "payment_status": PaymentStatus.PENDING.value},
            {"$set": {
                "status": OrderStatus.CANCELLED.value,
                "payment_status": PaymentStatus.FAILED.value,
                "updated_at": now(),
            }},
        )
        if result.modified_count:
            logger.info("Order for session %s marked failed (%s)", session_id, event_type)
    else:
        logger.debug("Ignoring webhook event %s", event_type)


@app.post("/api/orders/webhook")
async def stripe_webhook(
    request: Request,
    db: Database = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    payload = await request.body()
    try:
        event = gateway.construct_event(payload, request.headers.get("stripe-signature"))
    except WebhookVerificationError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise HTTPException(400, f"Webhook Error: {e}")
    await run_in_threadpool(apply_payment_event, db, event)
    return {"received": True}


@app.get("/api/orders/my-orders")
def get_user_orders(current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    orders = get_documents(db, "order", {"user_id": current.id}, sort=[("created_at", -1), ("_id", -1)])
    return {"message": "Orders retrieved successfully", "orders": orders}


@app.get("/api/orders/my-orders/{order_id}")
def get_order_details(order_id: str, current: UserOut = Depends(get_current_user), db: Database = Depends(get_db)):
    order = get_order_or_404(db, order_id, user_id=current.id)
    return {"message": "Order retrieved successfully", "order": sanitize(order)}


@app.get("/api/orders/all")
def get_all_orders(admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    orders = get_documents(db, "order", sort=[("created_at", -1), ("_id", -1)])
    return {"message": "All orders retrieved successfully", "orders": orders}


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    if payload.status not in ADMIN_ORDER_STATUSES:
        raise HTTPException(400, "Invalid order status")
    order = get_order_or_404(db, order_id)
    order = db["order"].find_one_and_update(
        {"_id": order["_id"]},
        {"$set": {"status": payload.status, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Order %s set to %s by %s", order_id, payload.status, admin.id)
    return {"message": "Order status updated successfully", "order": sanitize(order)}


# ----- Admin -----

@app.get("/api/admin/users")
def get_all_users(admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    users = [public_user(u).model_dump() for u in db["user"].find().sort([("created_at", 1), ("_id", 1)])]
    return {"message": "Users retrieved successfully", "users": users}


@app.put("/api/admin/users/{user_id}/role")
def update_user_role(user_id: str, payload: RoleUpdate, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    if payload.role not in {r.value for r in Role}:
        raise HTTPException(400, "Invalid role specified")
    user_oid = to_object_id(user_id)
    user = None
    if user_oid:
        user = db["user"].find_one_and_update(
            {"_id": user_oid},
            {"$set": {"role": payload.role, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
    if not user:
        raise HTTPException(404, "User not found")
    logger.info("User %s role set to %s by %s", user_id, payload.role, admin.id)
    return {"message": "User role updated successfully", "user": public_user(user).model_dump()}


@app.delete("/api/admin/users/{user_id}")
def delete_user(user_id: str, admin: UserOut = Depends(require_admin), db: Database = Depends(get_db)):
    user_oid = to_object_id(user_id)
    user = db["user"].find_one({"_id": user_oid}) if user_oid else None
    if not user:
        raise HTTPException(404, "User not found")
    if str(user["_id"]) == admin.id:
        raise HTTPException(400, "Cannot delete your own admin account")
    db["user"].delete_one({"_id": user["_id"]})
    db["cartitem"].delete_many({"user_id": str(user["_id"])})
    logger.info("User %s deleted by %s", user_id, admin.id)
    return {"message": "User deleted successfully"}


STOREFRONT_COLLECTIONS = ("user", "product", "cartitem", "review", "order")


@app.get("/test")
def test_database():
    """Report whether MongoDB is reachable, with per-collection counts and index names."""
    response = {"backend": "running", "database": "not configured", "database_name": None, "collections": {}}
    if database.db is None:
        return response
    response["database_name"] = database.db.name
    try:
        for name in STOREFRONT_COLLECTIONS:
            collection = database.db[name]
            response["collections"][name] = {
                "documents": collection.count_documents({}),
                "indexes": sorted(collection.index_information()),
            }
    except PyMongoError as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = "error"
        response["collections"] = {}
        return response
    response["database"] = "connected"
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
