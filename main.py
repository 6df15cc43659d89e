import os
from typing import Dict, List, Optional

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.database import Database

import orders
import stock
from auth import CurrentUser, generate_token, get_current_user, hash_password, require_admin, verify_password
from database import PRODUCTS, USERS, create_document, db, get_db, get_documents, now, serialize_document, to_object_id
from errors import ERROR_STATUS_CODES, NotFoundError, StoreError, ValidationError
from logs import configure_logging
from schemas import OrderItem, PaymentStatus, Product, ShippingAddress, User

configure_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Map StoreError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    logger.warning("request.failed", method=request.method, path=request.url.path,
                   status_code=status_code, error_type=type(exc).__name__, detail=str(exc))
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


@app.get("/")
def read_root():
    return {"message": "Storefront backend running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "collections": [],
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


# ---------- Auth Models ----------
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class UpdateProfileRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


# ---------- Helpers ----------
def public_user(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "username": doc.get("username"),
        "email": doc.get("email"),
        "is_admin": bool(doc.get("is_admin", False)),
    }


def find_user(database: Database, user_id) -> dict:
    oid = to_object_id(user_id)
    user = database[USERS].find_one({"_id": oid}) if oid else None
    if not user:
        raise NotFoundError("User", str(user_id))
    return user


# ---------- User Endpoints ----------
@app.post("/api/users/register", status_code=201)
def register_user(payload: RegisterRequest, database: Database = Depends(get_db)):
    if database[USERS].find_one({"email": payload.email}):
        raise HTTPException(status_code=400, detail="User already exists")

    user_doc = User(
        username=payload.username,
        email=payload.email,
        password_hash=hash_password(payload.password),
    ).model_dump()
    user_id = create_document(database, USERS, user_doc)
    logger.info("user.registered", user_id=user_id)

    return {
        "token": generate_token(user_id, user_doc["is_admin"]),
        "user_id": user_id,
        "is_admin": user_doc["is_admin"],
    }


@app.post("/api/users/login")
def login_user(payload: LoginRequest, database: Database = Depends(get_db)):
    if not payload.email or not payload.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = database[USERS].find_one({"email": payload.email})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    is_admin = bool(user.get("is_admin", False))
    return {"token": generate_token(str(user["_id"]), is_admin), "user_id": str(user["_id"]), "is_admin": is_admin}


@app.get("/api/users/profile")
def get_user_profile(current: CurrentUser = Depends(get_current_user), database: Database = Depends(get_db)):
    user = find_user(database, current.id)
    return {"success": True, "user": public_user(user)}


@app.put("/api/users/profile")
def update_user_profile(
    payload: UpdateProfileRequest,
    current: CurrentUser = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    user = find_user(database, current.id)

    changes = {}
    if payload.username:
        changes["username"] = payload.username
    if payload.email and payload.email != user.get("email"):
        if database[USERS].find_one({"email": payload.email}):
            raise HTTPException(status_code=400, detail="Email already in use")
        changes["email"] = payload.email
    if payload.password:
        changes["password_hash"] = hash_password(payload.password)
    changes["updated_at"] = now()

    updated = database[USERS].find_one_and_update(
        {"_id": user["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    return {
        "success": True,
        "message": "Profile updated successfully",
        "token": generate_token(str(updated["_id"]), bool(updated.get("is_admin", False))),
        "user": public_user(updated),
    }


@app.delete("/api/users/profile")
def delete_user_account(current: CurrentUser = Depends(get_current_user), database: Database = Depends(get_db)):
    user = find_user(database, current.id)
    database[USERS].delete_one({"_id": user["_id"]})
    logger.info("user.deleted", user_id=current.id, by="self")
    return {"success": True, "message": "Account deleted successfully"}


@app.delete("/api/users/{user_id}")
def delete_user_by_admin(
    user_id: str,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    user = find_user(database, user_id)
    database[USERS].delete_one({"_id": user["_id"]})
    logger.info("user.deleted", user_id=user_id, by=admin.id)
    return {"success": True, "message": f"User {user.get('username')} deleted successfully"}


@app.get("/api/users")
def get_all_users(admin: CurrentUser = Depends(require_admin), database: Database = Depends(get_db)):
    return [public_user(u) for u in get_documents(database, USERS)]


# ---------- Catalog Models ----------
class UpdateProduct(BaseModel):
    brand: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    image_url: Optional[str] = None
    category: Optional[str] = None
    sizes: Optional[Dict[str, int]] = None


class RestockRequest(BaseModel):
    product_id: str
    sizes: Dict[str, int]


# ---------- Catalog Endpoints ----------
@app.post("/api/products", status_code=201)
def add_product(
    payload: Product,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    product_id = create_document(database, PRODUCTS, payload.model_dump())
    logger.info("product.created", product_id=product_id, by=admin.id)
    return {"product": serialize_document(stock.find_product(database, product_id))}


@app.put("/api/products/{product_id}")
def update_product(
    product_id: str,
    payload: UpdateProduct,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    product = stock.find_product(database, product_id)

    sent = {k: v for k, v in payload.model_dump().items() if v is not None}
    merged = {k: v for k, v in product.items() if k in Product.model_fields}
    merged.update(sent)
    try:
        validated = Product(**merged).model_dump()
    except SchemaError as e:
        raise ValidationError(f"Invalid product: {e.errors()[0]['msg']}") from e
    # Write only what was sent; sizes otherwise change through stock updates alone
    changes = {k: validated[k] for k in sent}
    changes["updated_at"] = now()

    updated = database[PRODUCTS].find_one_and_update(
        {"_id": product["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if updated is None:
        raise NotFoundError("Product", product_id)
    return {"product": serialize_document(updated)}


@app.patch("/api/products/restock")
def restock_product(
    payload: RestockRequest,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    product = stock.restock(database, payload.product_id, payload.sizes)
    return {"message": "Product restocked successfully", "product": serialize_document(product)}


@app.delete("/api/products/{product_id}")
def delete_product(
    product_id: str,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    product = stock.find_product(database, product_id)
    database[PRODUCTS].delete_one({"_id": product["_id"]})
    logger.info("product.deleted", product_id=product_id, by=admin.id)
    return {"message": "Product deleted successfully"}


@app.get("/api/products")
def get_all_products(database: Database = Depends(get_db)):
    return {"products": [serialize_document(p) for p in get_documents(database, PRODUCTS)]}


@app.get("/api/products/featured")
def get_featured_products(database: Database = Depends(get_db)):
    products = get_documents(database, PRODUCTS, limit=10)
    if not products:
        raise HTTPException(status_code=404, detail="No products found")
    return [serialize_document(p) for p in products]


@app.get("/api/products/category/{category}")
def get_products_by_category(category: str, database: Database = Depends(get_db)):
    products = get_documents(database, PRODUCTS, {"category": category})
    if not products:
        raise HTTPException(status_code=404, detail="No products found for this category")
    return {"products": [serialize_document(p) for p in products]}


@app.get("/api/products/brand/{brand}")
def get_products_by_brand(brand: str, database: Database = Depends(get_db)):
    products = get_documents(database, PRODUCTS, {"brand": brand})
    if not products:
        raise HTTPException(status_code=404, detail="No products found for this brand")
    return {"products": [serialize_document(p) for p in products]}


@app.get("/api/products/{product_id}")
def get_product_by_id(product_id: str, database: Database = Depends(get_db)):
    return {"product": serialize_document(stock.find_product(database, product_id))}


# ---------- Order Models ----------
class PaymentDetailsIn(BaseModel):
    method: Optional[str] = None
    transaction_id: str
    status: PaymentStatus = "Pending"


class CreateOrderRequest(BaseModel):
    order_items: List[OrderItem] = Field(default_factory=list)
    shipping_address: ShippingAddress
    payment_method: Optional[str] = None
    payment_details: PaymentDetailsIn


class UpdateOrderStatusRequest(BaseModel):
    new_status: str


# ---------- Order Endpoints ----------
@app.post("/api/orders", status_code=201)
def create_order(
    payload: CreateOrderRequest,
    current: CurrentUser = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    return orders.create_order(
        database,
        current.id,
        payload.order_items,
        payload.shipping_address,
        payload.payment_method,
        payload.payment_details,
    )


@app.get("/api/orders")
def get_orders(admin: CurrentUser = Depends(require_admin), database: Database = Depends(get_db)):
    return orders.list_orders(database)


@app.get("/api/orders/my-orders")
def get_user_orders(current: CurrentUser = Depends(get_current_user), database: Database = Depends(get_db)):
    return orders.list_user_orders(database, current.id)


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    current: CurrentUser = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    order = orders.cancel_order(database, order_id, current)
    return {"message": "Order cancelled successfully", "order": order}


@app.delete("/api/orders/{order_id}")
def delete_order(
    order_id: str,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    orders.delete_order(database, order_id)
    return {"message": "Order removed"}


@app.put("/api/orders/{order_id}")
def update_order_status(
    order_id: str,
    payload: UpdateOrderStatusRequest,
    admin: CurrentUser = Depends(require_admin),
    database: Database = Depends(get_db),
):
    order = orders.transition_order(database, order_id, payload.new_status, admin)
    return {"message": f"Order status updated to {payload.new_status}", "order": order}


@app.get("/api/orders/{order_id}")
def get_order_by_id(
    order_id: str,
    current: CurrentUser = Depends(get_current_user),
    database: Database = Depends(get_db),
):
    return orders.get_order(database, order_id, current)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
