import os
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Depends, File, Form, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from dotenv import load_dotenv
load_dotenv()

import orders
import payments
from catalog import PRODUCTS_PER_PAGE, build_product, read_photo, slugify
from database import create_document, ensure_indexes, get_db, is_obj_id, serialize_doc, to_obj_id
from errors import (
    AuthenticationFailed, Conflict, NotFound, PaymentFailed, ValidationFailed,
    register_exception_handlers,
)
from payments import BraintreePaymentGateway, PaymentGateway, get_gateway
from schemas import (
    CategoryIn, CheckoutRequest, ForgotPasswordRequest, LoginRequest, OrderStatusUpdate,
    ProductFilters, ProfileUpdate, RegisterRequest, User,
)
from security import create_token, hash_password, require_admin, require_sign_in, verify_password

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

NO_PHOTO = {"photo": 0}


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.gateway = BraintreePaymentGateway.from_env()
    try:
        ensure_indexes(get_db())
    except PyMongoError as e:
        logger.warning("Could not ensure indexes: %s", e)
    yield


# FastAPI app
app = FastAPI(title="E-commerce API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


def _public_user(user: dict) -> dict:
    return serialize_doc({k: v for k, v in user.items() if k not in ("password", "answer")})


def _required(pairs):
    for value, message in pairs:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationFailed(message)


def _with_category(db: Database, products: List[dict]) -> List[dict]:
    cat_ids = {p["category"] for p in products if p.get("category") is not None}
    cats = {c["_id"]: c for c in db["category"].find({"_id": {"$in": list(cat_ids)}})}
    return [serialize_doc({**p, "category": cats.get(p.get("category"), p.get("category"))}) for p in products]


# Health
@app.get("/")
def root():
    return {"success": True, "message": "E-commerce API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "collections": []
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        response["error"] = str(e)[:120]
    return response


# Auth
@app.post("/api/v1/auth/register", status_code=status.HTTP_201_CREATED)
def register(body: RegisterRequest, db: Database = Depends(get_db)):
    _required([
        (body.name, "Name is required"),
        (body.email, "Email is required"),
        (body.password, "Password is required"),
        (body.phone, "Phone number is required"),
        (body.address, "Address is required"),
        (body.answer, "Security answer is required"),
    ])
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already registered. Please login.")
    user = User(
        name=body.name.strip(),
        email=email,
        password=hash_password(body.password),
        phone=body.phone.strip(),
        address=body.address.strip(),
        answer=body.answer,
    )
    try:
        doc = create_document(db, "user", user)
    except DuplicateKeyError:
        raise Conflict("User already registered. Please login.")
    logger.info("Registered user %s", doc["_id"])
    return {"success": True, "message": "User registered successfully", "user": _public_user(doc)}


@app.post("/api/v1/auth/login")
def login(body: LoginRequest, db: Database = Depends(get_db)):
    if not body.email or not body.password:
        raise ValidationFailed("Email and password are required")
    user = db["user"].find_one({"email": body.email.strip().lower()})
    # same message for unknown email and wrong password
    if not user or not verify_password(body.password, user.get("password", "")):
        raise AuthenticationFailed("Invalid email or password")
    return {
        "success": True,
        "message": "Login successful",
        "user": _public_user(user),
        "token": create_token(str(user["_id"])),
    }


@app.post("/api/v1/auth/forgot-password")
def forgot_password(body: ForgotPasswordRequest, db: Database = Depends(get_db)):
    _required([
        (body.email, "Email is required"),
        (body.answer, "Security answer is required"),
        (body.new_password, "New password is required"),
    ])
    user = db["user"].find_one({"email": body.email.strip().lower(), "answer": body.answer})
    if not user:
        raise AuthenticationFailed("Invalid email or security answer")
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password": hash_password(body.new_password), "updated_at": datetime.now(timezone.utc)}},
    )
    logger.info("Password reset for user %s", user["_id"])
    return {"success": True, "message": "Password reset successfully"}


@app.get("/api/v1/auth/test")
def protected_test(admin: dict = Depends(require_admin)):
    return {"success": True, "message": "Protected Routes"}


@app.get("/api/v1/auth/user-auth")
def user_auth(identity: dict = Depends(require_sign_in)):
    return {"ok": True}


@app.get("/api/v1/auth/admin-auth")
def admin_auth(admin: dict = Depends(require_admin)):
    return {"ok": True}


@app.put("/api/v1/auth/profile")
def update_profile(body: ProfileUpdate, identity: dict = Depends(require_sign_in), db: Database = Depends(get_db)):
    if not is_obj_id(identity["_id"]):
        raise AuthenticationFailed("Invalid token")
    user = db["user"].find_one({"_id": to_obj_id(identity["_id"])})
    if not user:
        raise NotFound("User not found")
    if body.password and len(body.password) < 6:
        raise ValidationFailed("Password is required and should be at least 6 characters")
    update: Dict[str, Any] = {
        "name": body.name or user["name"],
        "phone": body.phone or user.get("phone"),
        "address": body.address or user.get("address"),
        "updated_at": datetime.now(timezone.utc),
    }
    if body.password:
        update["password"] = hash_password(body.password)
    db["user"].update_one({"_id": user["_id"]}, {"$set": update})
    updated = db["user"].find_one({"_id": user["_id"]})
    return {"success": True, "message": "Profile updated successfully", "updatedUser": _public_user(updated)}


# Orders
@app.get("/api/v1/auth/orders")
def my_orders(identity: dict = Depends(require_sign_in), db: Database = Depends(get_db)):
    return {"success": True, "orders": orders.list_orders(db, buyer_id=identity["_id"])}


@app.get("/api/v1/auth/all-orders")
def all_orders(admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    return {"success": True, "orders": orders.list_orders(db)}


@app.put("/api/v1/auth/order-status/{order_id}")
def order_status(order_id: str, body: OrderStatusUpdate, admin: dict = Depends(require_admin),
                 db: Database = Depends(get_db)):
    order = orders.update_order_status(db, order_id, body.status)
    return {"success": True, "message": "Order status updated successfully", "order": order}


# Categories
@app.post("/api/v1/category/create-category", status_code=status.HTTP_201_CREATED)
def create_category(body: CategoryIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    _required([(body.name, "Name is required")])
    name = body.name.strip()
    slug = slugify(name)
    if db["category"].find_one({"slug": slug}):
        raise Conflict("Category already exists")
    try:
        doc = create_document(db, "category", {"name": name, "slug": slug})
    except DuplicateKeyError:
        raise Conflict("Category already exists")
    return {"success": True, "message": "New category created", "category": serialize_doc(doc)}


@app.put("/api/v1/category/update-category/{category_id}")
def update_category(category_id: str, body: CategoryIn, admin: dict = Depends(require_admin),
                    db: Database = Depends(get_db)):
    _required([(body.name, "Name is required")])
    oid = to_obj_id(category_id, "Invalid category id")
    name = body.name.strip()
    slug = slugify(name)
    if db["category"].find_one({"slug": slug, "_id": {"$ne": oid}}):
        raise Conflict("Category already exists")
    res = db["category"].update_one(
        {"_id": oid},
        {"$set": {"name": name, "slug": slug, "updated_at": datetime.now(timezone.utc)}},
    )
    if res.matched_count == 0:
        raise NotFound("Category not found")
    category = db["category"].find_one({"_id": oid})
    return {"success": True, "message": "Category updated successfully", "category": serialize_doc(category)}


@app.get("/api/v1/category/get-category")
def get_categories(db: Database = Depends(get_db)):
    cats = list(db["category"].find().sort([("name", 1)]))
    return {"success": True, "message": "All Categories List", "categories": serialize_doc(cats)}


@app.get("/api/v1/category/single-category/{slug}")
def single_category(slug: str, db: Database = Depends(get_db)):
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFound("Category not found")
    return {"success": True, "message": "Get single category successfully", "category": serialize_doc(category)}


@app.delete("/api/v1/category/delete-category/{category_id}")
def delete_category(category_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    res = db["category"].delete_one({"_id": to_obj_id(category_id, "Invalid category id")})
    if res.deleted_count == 0:
        raise NotFound("Category not found")
    return {"success": True, "message": "Category deleted successfully"}


# Products
@app.post("/api/v1/product/create-product", status_code=status.HTTP_201_CREATED)
def create_product(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    shipping: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    product = build_product(db, name, description, price, category, quantity, shipping)
    doc = product.model_dump()
    photo_doc = read_photo(photo)
    if photo_doc:
        doc["photo"] = photo_doc
    doc = create_document(db, "product", doc)
    doc.pop("photo", None)
    logger.info("Created product %s", doc["_id"])
    return {"success": True, "message": "Product created successfully.", "product": serialize_doc(doc)}


@app.put("/api/v1/product/update-product/{product_id}")
def update_product(
    product_id: str,
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    shipping: Optional[str] = Form(None),
    photo: Optional[UploadFile] = File(None),
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    oid = to_obj_id(product_id, "Invalid product id")
    product = build_product(db, name, description, price, category, quantity, shipping)
    update = product.model_dump()
    photo_doc = read_photo(photo)
    if photo_doc:
        update["photo"] = photo_doc
    update["updated_at"] = datetime.now(timezone.utc)
    res = db["product"].update_one({"_id": oid}, {"$set": update})
    if res.matched_count == 0:
        raise NotFound("Product not found.")
    doc = db["product"].find_one({"_id": oid}, NO_PHOTO)
    return {"success": True, "message": "Product updated successfully.", "product": serialize_doc(doc)}


@app.get("/api/v1/product/get-product")
def list_products(db: Database = Depends(get_db)):
    products = list(db["product"].find({}, NO_PHOTO).sort([("created_at", DESCENDING)]).limit(12))
    return {
        "success": True,
        "countTotal": len(products),
        "message": "All products fetched successfully.",
        "products": _with_category(db, products),
    }


@app.get("/api/v1/product/get-product/{slug}")
def get_product(slug: str, db: Database = Depends(get_db)):
    product = db["product"].find_one({"slug": slug}, NO_PHOTO)
    if not product:
        raise NotFound("Product not found.")
    return {"success": True, "message": "Product fetched successfully.", "product": _with_category(db, [product])[0]}


@app.get("/api/v1/product/product-photo/{product_id}")
def product_photo(product_id: str, db: Database = Depends(get_db)):
    product = db["product"].find_one({"_id": to_obj_id(product_id, "Invalid product id")}, {"photo": 1})
    if not product:
        raise NotFound("Product not found.")
    photo = product.get("photo") or {}
    if not photo.get("data"):
        raise NotFound("Photo not found for this product.")
    return Response(content=bytes(photo["data"]), media_type=photo.get("content_type"))


@app.delete("/api/v1/product/delete-product/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    res = db["product"].delete_one({"_id": to_obj_id(product_id, "Invalid product id")})
    if res.deleted_count == 0:
        raise NotFound("Product not found.")
    return {"success": True, "message": "Product deleted successfully."}


@app.post("/api/v1/product/product-filters")
def product_filters(body: ProductFilters, db: Database = Depends(get_db)):
    query: Dict[str, Any] = {}
    if body.checked:
        query["category"] = {"$in": [to_obj_id(c, "Invalid category id") for c in body.checked]}
    if body.radio:
        if len(body.radio) != 2:
            raise ValidationFailed("Price range must be [min, max]")
        query["price"] = {"$gte": body.radio[0], "$lte": body.radio[1]}
    products = list(db["product"].find(query, NO_PHOTO))
    return {"success": True, "products": serialize_doc(products)}


@app.get("/api/v1/product/product-count")
def product_count(db: Database = Depends(get_db)):
    return {"success": True, "total": db["product"].count_documents({})}


@app.get("/api/v1/product/product-list/{page}")
def product_list(page: int, db: Database = Depends(get_db)):
    if page < 1:
        raise ValidationFailed("Page must be 1 or greater")
    products = list(
        db["product"].find({}, NO_PHOTO)
        .sort([("created_at", DESCENDING)])
        .skip((page - 1) * PRODUCTS_PER_PAGE)
        .limit(PRODUCTS_PER_PAGE)
    )
    return {"success": True, "products": serialize_doc(products)}


@app.get("/api/v1/product/search/{keyword}")
def search_products(keyword: str, db: Database = Depends(get_db)):
    keyword = keyword.strip()
    if not keyword:
        return {"success": True, "count": 0, "products": []}
    pattern = {"$regex": re.escape(keyword), "$options": "i"}
    results = list(db["product"].find({"$or": [{"name": pattern}, {"description": pattern}]}, NO_PHOTO))
    return {"success": True, "count": len(results), "products": serialize_doc(results)}


@app.get("/api/v1/product/related-product/{product_id}/{category_id}")
def related_products(product_id: str, category_id: str, db: Database = Depends(get_db)):
    query = {
        "category": to_obj_id(category_id, "Invalid category id"),
        "_id": {"$ne": to_obj_id(product_id, "Invalid product id")},
    }
    products = list(db["product"].find(query, NO_PHOTO).limit(3))
    return {"success": True, "products": _with_category(db, products)}


@app.get("/api/v1/product/product-category/{slug}")
def products_by_category(slug: str, db: Database = Depends(get_db)):
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFound("Category not found.")
    products = list(db["product"].find({"category": category["_id"]}, NO_PHOTO))
    return {"success": True, "category": serialize_doc(category), "products": _with_category(db, products)}


# Payments
@app.get("/api/v1/product/braintree/token")
def braintree_token(gateway: PaymentGateway = Depends(get_gateway)):
    try:
        token = gateway.generate_token()
    except payments.GatewayUnavailable as e:
        logger.warning("Client token generation failed: %s", e)
        raise PaymentFailed("Failed to generate token", detail=str(e))
    return {"success": True, "clientToken": token}


@app.post("/api/v1/product/braintree/payment", status_code=status.HTTP_201_CREATED)
def braintree_payment(body: CheckoutRequest, identity: dict = Depends(require_sign_in),
                      db: Database = Depends(get_db), gateway: PaymentGateway = Depends(get_gateway)):
    order = payments.checkout(db, gateway, identity["_id"], body.nonce, body.cart)
    return {"success": True, "message": "Payment successful", "order": serialize_doc(order)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
