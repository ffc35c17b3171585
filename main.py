import logging
import os
import re
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import DuplicateKeyError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

import database
import workflow
from auth import current_user, decode_token, hash_password, issue_tokens, sanitize_user, verify_password
from errors import AuthenticationError, NotFoundError, ValidationError
from policy import authorize
from repositories import Repositories, get_repositories
from schemas import (
    LoginRequest, OrderCreate, Product, ProductCreate, ProductUpdate,
    ProfileUpdate, PurchaseRequestCreate, RefreshRequest, RegisterRequest,
    StatusUpdate, User,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("marketplace")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_BYTES = 1_000_000
IMAGE_TYPES = {"jpeg", "jpg", "png", "gif"}

RATE_LIMIT_WINDOW_MS = int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000"))
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", "100"))

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{RATE_LIMIT_MAX} per {max(1, RATE_LIMIT_WINDOW_MS // 1000)} seconds"],
    storage_uri=os.getenv("RATE_LIMIT_STORAGE", "memory://"),
)

app = FastAPI(title="Marketplace API")
app.state.limiter = limiter

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SlowAPIMiddleware)

app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR, check_dir=False), name="uploads")


# ---------- Error handling ----------
@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning("Rate limit hit by %s on %s", get_remote_address(request), request.url.path)
    return JSONResponse(
        status_code=429,
        content={"detail": "Too many requests from this IP, please try again later"},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return JSONResponse(status_code=400, content={"detail": "; ".join(parts) or "Invalid request"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ---------- Public routes ----------
@app.get("/")
def health():
    return {"status": "ok", "service": "marketplace"}


@app.post("/auth/register", status_code=201)
def register(payload: RegisterRequest, repos: Repositories = Depends(get_repositories)):
    email = payload.email.lower().strip()
    if repos.users.find_one({"email": email}):
        raise ValidationError("Email already registered")
    user = User(
        email=email,
        password_hash=hash_password(payload.password),
        display_name=payload.display_name or f"{payload.first_name} {payload.last_name}",
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        location=payload.location or "Not specified",
    )
    try:
        user_id = repos.users.create(user)
    except DuplicateKeyError:
        raise ValidationError("Email already registered")
    created = repos.users.get(user_id)
    logger.info("Registered user %s", user_id)
    return {**issue_tokens(created), "user": sanitize_user(created)}


@app.post("/auth/login")
def login(payload: LoginRequest, repos: Repositories = Depends(get_repositories)):
    email = payload.email.lower().strip()
    user = repos.users.find_one({"email": email})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        logger.warning("Failed login for %s", email)
        raise AuthenticationError("Invalid credentials")
    return {**issue_tokens(user), "user": sanitize_user(user)}


@app.post("/auth/refresh")
def refresh(payload: RefreshRequest, repos: Repositories = Depends(get_repositories)):
    claims = decode_token(payload.refresh_token, token_type="refresh")
    user = repos.users.get(claims["sub"])
    if not user:
        raise AuthenticationError("User not found")
    return issue_tokens(user)


# ---------- Users ----------
@app.get("/users")
def list_users(user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    authorize(user, "user", "list_all")
    return [sanitize_user(u) for u in repos.users.find(sort=workflow.NEWEST_FIRST)]


@app.get("/users/profile")
def get_profile(user=Depends(current_user)):
    return sanitize_user(user)


@app.put("/users/profile")
def update_profile(data: ProfileUpdate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    update = data.model_dump(exclude_none=True)
    if not update:
        return sanitize_user(user)
    updated = repos.users.update(user["_id"], update)
    if updated is None:
        raise NotFoundError("User not found")
    return sanitize_user(updated)


@app.delete("/users/{user_id}")
def delete_user(user_id: str, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    authorize(user, "user", "delete")
    if not repos.users.delete(user_id):
        raise NotFoundError("User not found")
    logger.info("User %s removed by %s", user_id, user["_id"])
    return {"deleted": True}


# ---------- Products ----------
@app.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    seller_id: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    repos: Repositories = Depends(get_repositories),
):
    f = {}
    if q:
        pattern = re.escape(q)
        f["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    if category:
        f["category"] = category
    if seller_id:
        f["seller_id"] = seller_id
    if min_price is not None or max_price is not None:
        price = {}
        if min_price is not None:
            price["$gte"] = min_price
        if max_price is not None:
            price["$lte"] = max_price
        f["price"] = price

    if sort == "price_asc":
        order = [("price", 1)]
    elif sort == "price_desc":
        order = [("price", -1)]
    else:
        order = workflow.NEWEST_FIRST
    return repos.products.find(f, sort=order, limit=limit)


@app.get("/products/mine")
def my_products(user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return repos.products.find({"seller_id": user["_id"]}, sort=workflow.NEWEST_FIRST)


@app.get("/products/{product_id}")
def get_product(product_id: str, repos: Repositories = Depends(get_repositories)):
    doc = repos.products.get(product_id)
    if not doc:
        raise NotFoundError("Product not found")
    return doc


@app.post("/products", status_code=201)
def create_product(data: ProductCreate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    product = Product(seller_id=user["_id"], **data.model_dump())
    product_id = repos.products.create(product)
    logger.info("Product %s listed by %s", product_id, user["_id"])
    return repos.products.get(product_id)


@app.post("/products/upload", status_code=201)
async def upload_image(image: UploadFile = File(...), user=Depends(current_user)):
    ext = os.path.splitext(image.filename or "")[1].lower()
    mime = (image.content_type or "").split("/")[-1].lower()
    if ext.lstrip(".") not in IMAGE_TYPES or mime not in IMAGE_TYPES:
        raise ValidationError("Images only (jpeg, jpg, png, gif)")
    content = await image.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("Image exceeds 1 MB limit")

    os.makedirs(UPLOAD_DIR, exist_ok=True)
    filename = f"image-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"
    with open(os.path.join(UPLOAD_DIR, filename), "xb") as fh:
        fh.write(content)
    logger.info("Image %s uploaded by %s", filename, user["_id"])
    return {"url": f"/uploads/{filename}"}


@app.put("/products/{product_id}")
def update_product(product_id: str, data: ProductUpdate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    doc = repos.products.get(product_id)
    if not doc:
        raise NotFoundError("Product not found")
    authorize(user, "product", "update", doc)
    update = data.model_dump(exclude_none=True)
    if not update:
        return doc
    updated = repos.products.update(product_id, update)
    if updated is None:
        raise NotFoundError("Product not found")
    return updated


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    doc = repos.products.get(product_id)
    if not doc:
        raise NotFoundError("Product not found")
    authorize(user, "product", "delete", doc)
    repos.products.delete(product_id)
    logger.info("Product %s removed by %s", product_id, user["_id"])
    return {"deleted": True}


# ---------- Purchase requests ----------
@app.post("/purchase-requests", status_code=201)
def create_purchase_request(data: PurchaseRequestCreate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.create_purchase_request(repos, user, data)


@app.get("/purchase-requests/received")
def received_requests(user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.list_received_requests(repos, user)


@app.get("/purchase-requests/sent")
def sent_requests(user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.list_sent_requests(repos, user)


@app.get("/purchase-requests/{request_id}")
def get_purchase_request(request_id: str, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.get_purchase_request(repos, user, request_id)


@app.patch("/purchase-requests/{request_id}/status")
def update_purchase_request_status(request_id: str, data: StatusUpdate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.update_purchase_request_status(repos, user, request_id, data.status)


# ---------- Orders ----------
@app.get("/orders")
def list_orders(user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    authorize(user, "order", "list_all")
    return repos.orders.find(sort=workflow.NEWEST_FIRST)


@app.get("/orders/mine")
def my_orders(user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return repos.orders.find({"user_id": user["_id"]}, sort=workflow.NEWEST_FIRST)


@app.post("/orders", status_code=201)
def create_order(data: OrderCreate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.create_order(repos, user, data)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    doc = repos.orders.get(order_id)
    if not doc:
        raise NotFoundError("Order not found")
    authorize(user, "order", "read", doc)
    return doc


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, data: StatusUpdate, user=Depends(current_user), repos: Repositories = Depends(get_repositories)):
    return workflow.update_order_status(repos, user, order_id, data.status)


# ---------- Utilities ----------
@app.get("/test")
def test_database():
    resp = {"backend": "ok", "db": "not configured", "database_name": database.DATABASE_NAME}
    try:
        if database.db is not None:
            resp["db"] = "connected"
            resp["collections"] = database.db.list_collection_names()
    except Exception as e:
        resp["db_error"] = str(e)
    return resp


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
