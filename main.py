import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from auth import create_token, hash_password, public_user, require_admin, get_token_claims, verify_password
from database import (
    NEWEST_FIRST,
    connect,
    create_document,
    ensure_indexes,
    get_db,
    get_documents,
    now,
    parse_object_id,
    serialize_doc,
)
from schemas import (
    BulkDeleteConfirmation,
    Category as CategorySchema,
    CategoryCreate,
    CategoryUpdate,
    Order as OrderSchema,
    OrderStatusUpdate,
    Product as ProductSchema,
    ProductUpdate,
    User as UserSchema,
    slugify,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

BULK_DELETE_PHRASE = "DELETE ALL"
TOGGLE_ATTEMPTS = 3

DEFAULT_CATEGORIES = ["t-shirt", "pants", "shorts", "cap", "zip-up", "hoodies", "polo shirts"]


# ----------------------- Bootstrap -----------------------
def ensure_admin(db) -> bool:
    """Create the admin user from ADMIN_EMAIL / ADMIN_PASSWORD if it does not exist yet."""
    email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
    password = os.getenv("ADMIN_PASSWORD") or ""
    if not email or not password:
        return False
    if db["user"].find_one({"email": email}):
        return False
    admin = UserSchema(
        name=os.getenv("ADMIN_NAME", "Admin"),
        email=email,
        password_hash=hash_password(password),
        is_admin=True,
    )
    create_document(db, "user", admin)
    logger.info("Created admin user %s", email)
    return True


def seed_categories(db) -> int:
    if db["category"].count_documents({}) > 0:
        return 0
    for name in DEFAULT_CATEGORIES:
        create_document(db, "category", CategorySchema(name=name, slug=slugify(name)))
    logger.info("Seeded %d default categories", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)


@asynccontextmanager
async def lifespan(app: FastAPI):
    client, db = connect()
    app.state.db = db
    if db is not None:
        ensure_indexes(db)
        ensure_admin(db)
        seed_categories(db)
    yield
    if client is not None:
        client.close()


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Errors -----------------------
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = err.get("msg", "Invalid value")
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return JSONResponse(status_code=400, content={"detail": "; ".join(messages) or "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Server error"})


# ----------------------- Utils -----------------------
def find_or_404(db, collection: str, oid, entity: str) -> dict:
    doc = db[collection].find_one({"_id": oid})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{entity} not found")
    return doc


def check_category(db, slug: str) -> None:
    if not db["category"].find_one({"slug": slug}):
        raise HTTPException(status_code=400, detail=f"Unknown category: {slug}")


# ----------------------- Models -----------------------
class LoginBody(BaseModel):
    email: EmailStr
    password: str


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "Storefront API running"}


@app.get("/api/health")
def health(request: Request):
    response = {
        "status": "OK",
        "database": "Not Configured",
        "collections": [],
    }
    db = getattr(request.app.state, "db", None)
    if db is None:
        response["status"] = "ERROR"
        return response
    try:
        db.command("ping")
        response["database"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        logger.warning("Health check failed: %s", e)
        response["status"] = "ERROR"
        response["database"] = "Unavailable"
    return response


# ----------------------- Auth -----------------------
@app.post("/api/auth/login")
def login(body: LoginBody, db=Depends(get_db)):
    email = body.email.strip().lower()
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(body.password, user.get("passwordHash", "")):
        logger.warning("Failed login for %s", email)
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return {"token": create_token(user), "user": public_user(user)}


@app.get("/api/auth/me")
def me(claims: dict = Depends(get_token_claims)):
    return {
        "id": claims["userId"],
        "name": claims.get("name"),
        "email": claims.get("email"),
        "isAdmin": bool(claims.get("isAdmin")),
    }


# ----------------------- Products -----------------------
@app.get("/api/products")
def list_products(category: Optional[str] = None, q: Optional[str] = None,
                  available: Optional[bool] = None, db=Depends(get_db)):
    filt = {}
    if category:
        filt["category"] = category
    if q:
        pattern = re.escape(q)
        filt["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if available is not None:
        filt["isAvailable"] = available
    return [serialize_doc(p) for p in get_documents(db, "product", filt, sort=NEWEST_FIRST)]


@app.get("/api/products/latest")
def latest_product(db=Depends(get_db)):
    items = get_documents(db, "product", sort=NEWEST_FIRST, limit=1)
    if not items:
        raise HTTPException(status_code=404, detail="Product not found")
    return serialize_doc(items[0])


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    oid = parse_object_id(product_id, "product")
    return serialize_doc(find_or_404(db, "product", oid, "Product"))


@app.post("/api/products", status_code=201)
def create_product(body: ProductSchema, admin=Depends(require_admin), db=Depends(get_db)):
    check_category(db, body.category)
    doc = create_document(db, "product", body)
    logger.info("Product %s created by %s", doc["_id"], admin["userId"])
    return serialize_doc(doc)


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(product_id, "product")
    update = body.model_dump(by_alias=True, exclude_none=True)
    if "category" in update:
        check_category(db, update["category"])
    update["updatedAt"] = now()
    doc = db["product"].find_one_and_update(
        {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s updated by %s", product_id, admin["userId"])
    return serialize_doc(doc)


@app.put("/api/products/{product_id}/toggle")
def toggle_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(product_id, "product")
    for _ in range(TOGGLE_ATTEMPTS):
        product = find_or_404(db, "product", oid, "Product")
        current = product.get("isAvailable", True)
        available = not current
        # only flip if nobody flipped it since the read
        expected = {"$ne": False} if current else False
        doc = db["product"].find_one_and_update(
            {"_id": oid, "isAvailable": expected},
            {"$set": {"isAvailable": available, "updatedAt": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if doc:
            break
    else:
        raise HTTPException(status_code=409, detail="Product was modified concurrently, try again")
    logger.info("Product %s isAvailable=%s", product_id, available)
    return serialize_doc(doc)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(product_id, "product")
    # images are embedded in the document and go with it
    res = db["product"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    logger.info("Product %s deleted by %s", product_id, admin["userId"])
    return {"message": "Product deleted successfully"}


# ----------------------- Categories -----------------------
@app.get("/api/categories")
def list_categories(db=Depends(get_db)):
    cats = get_documents(db, "category", {"isActive": True}, sort=[("name", ASCENDING)])
    return [serialize_doc(c) for c in cats]


@app.get("/api/categories/{slug}/products")
def category_products(slug: str, db=Depends(get_db)):
    if not db["category"].find_one({"slug": slug, "isActive": True}):
        raise HTTPException(status_code=404, detail="Category not found")
    products = get_documents(db, "product", {"category": slug}, sort=NEWEST_FIRST)
    return [serialize_doc(p) for p in products]


@app.post("/api/categories", status_code=201)
def create_category(body: CategoryCreate, admin=Depends(require_admin), db=Depends(get_db)):
    category = CategorySchema(slug=slugify(body.name), **body.model_dump())
    try:
        doc = create_document(db, "category", category)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail=f"Category already exists: {category.slug}")
    logger.info("Category %s created by %s", category.slug, admin["userId"])
    return serialize_doc(doc)


@app.put("/api/categories/{category_id}")
def update_category(category_id: str, body: CategoryUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(category_id, "category")
    current = find_or_404(db, "category", oid, "Category")
    update = body.model_dump(by_alias=True, exclude_none=True)
    old_slug = current["slug"]
    if "name" in update:
        update["slug"] = slugify(update["name"])
    update["updatedAt"] = now()
    try:
        doc = db["category"].find_one_and_update(
            {"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail=f"Category already exists: {update['slug']}")
    if not doc:
        raise HTTPException(status_code=404, detail="Category not found")
    if doc["slug"] != old_slug:
        moved = db["product"].update_many({"category": old_slug}, {"$set": {"category": doc["slug"]}})
        logger.info("Category %s renamed to %s, %d products moved", old_slug, doc["slug"], moved.modified_count)
    return serialize_doc(doc)


@app.delete("/api/categories/{category_id}")
def delete_category(category_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(category_id, "category")
    category = find_or_404(db, "category", oid, "Category")
    in_use = db["product"].count_documents({"category": category["slug"]})
    if in_use:
        raise HTTPException(status_code=400, detail=f"Category has {in_use} products")
    db["category"].delete_one({"_id": oid})
    logger.info("Category %s deleted by %s", category["slug"], admin["userId"])
    return {"message": "Category deleted successfully"}


# ----------------------- Orders -----------------------
def snapshot_items(db, body: OrderSchema) -> list:
    """Store items as submitted, filling omitted name/price/image from the referenced product."""
    items = []
    for index, item in enumerate(body.items):
        data = item.model_dump(by_alias=True, exclude_none=True)
        if item.product is not None:
            oid = parse_object_id(item.product, "product")
            product = db["product"].find_one({"_id": oid})
            if not product:
                raise HTTPException(status_code=400, detail=f"Product not found: {item.product}")
            if not product.get("isAvailable", True):
                raise HTTPException(status_code=400, detail=f"{product.get('name')} is sold out")
            data.setdefault("productName", product.get("name"))
            data.setdefault("price", product.get("salePrice"))
            if product.get("images"):
                data.setdefault("image", product["images"][0])
        if not data.get("productName") or data.get("price") is None:
            raise HTTPException(status_code=400, detail=f"items.{index}: productName and price are required")
        items.append(data)
    return items


@app.get("/api/orders")
def list_orders(admin=Depends(require_admin), db=Depends(get_db)):
    return [serialize_doc(o) for o in get_documents(db, "order", sort=NEWEST_FIRST)]


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(order_id, "order")
    return serialize_doc(find_or_404(db, "order", oid, "Order"))


@app.post("/api/orders", status_code=201)
def create_order(body: OrderSchema, db=Depends(get_db)):
    doc = body.model_dump(by_alias=True, exclude_none=True)
    doc["items"] = snapshot_items(db, body)
    doc["status"] = "pending"
    order = create_document(db, "order", doc)
    logger.info("Order %s placed, total %s", order["_id"], order["totalAmount"])
    return serialize_doc(order)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusUpdate, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(order_id, "order")
    doc = db["order"].find_one_and_update(
        {"_id": oid},
        {"$set": {"status": body.status, "updatedAt": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s status=%s", order_id, body.status)
    return serialize_doc(doc)


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, admin=Depends(require_admin), db=Depends(get_db)):
    oid = parse_object_id(order_id, "order")
    res = db["order"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Order not found")
    logger.info("Order %s deleted by %s", order_id, admin["userId"])
    return {"message": "Order deleted successfully"}


@app.delete("/api/orders")
def delete_all_orders(body: BulkDeleteConfirmation, admin=Depends(require_admin), db=Depends(get_db)):
    if body.confirm != BULK_DELETE_PHRASE:
        raise HTTPException(status_code=400, detail=f'Type "{BULK_DELETE_PHRASE}" to confirm')
    res = db["order"].delete_many({})
    logger.warning("%d orders deleted by %s", res.deleted_count, admin["userId"])
    return {"message": f"Deleted {res.deleted_count} orders", "deletedCount": res.deleted_count}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
