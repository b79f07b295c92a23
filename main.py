import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import accounts
import carts
import catalog
import config
import orders
import payments
import reviews
import site_settings
from database import create_document, ensure_indexes, get_database
from errors import StoreError
from schemas import Product, User
from security import hash_password

# Logging
logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("storefront")


async def store_error_handler(request: Request, exc: StoreError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Sample data (dev only)
SEED_ADMIN_EMAIL = "admin@storefront.dev"
SEED_PRODUCTS = [
    dict(name="Classic Tee", description="Soft cotton tee", price=20.0, category="Apparel", stock=100,
         featured=True, image_url="https://images.unsplash.com/photo-1520975682031-a1248f1a6386"),
    dict(name="Wireless Earbuds", description="Noise isolating, long battery life", price=59.99,
         category="Electronics", stock=50, featured=True,
         image_url="https://images.unsplash.com/photo-1585386959984-a41552231620"),
    dict(name="Stainless Steel Bottle", description="Insulated, 1L", price=19.99, category="Home & Kitchen",
         stock=75, image_url="https://images.unsplash.com/photo-1602143407151-7111542de8f5"),
]


def seed_store(db: Database) -> dict:
    created = {"admin": False, "products": 0, "settings": False}
    if not db["user"].find_one({"email": SEED_ADMIN_EMAIL}):
        admin = User(username="admin", email=SEED_ADMIN_EMAIL, password_hash=hash_password("admin123"), role="admin")
        create_document(db, "user", admin)
        created["admin"] = True
    if db["product"].count_documents({}) == 0:
        for data in SEED_PRODUCTS:
            create_document(db, "product", Product(**data))
        created["products"] = len(SEED_PRODUCTS)
    if not db["settings"].find_one({"key": "carousel"}):
        site_settings.SettingsService(db).put("carousel", {})
        created["settings"] = True
    return created


def create_app(database: Optional[Database] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ensure_indexes(app.state.db)
        yield

    app = FastAPI(title=f"{config.STORE_NAME} API", version="1.0.0", lifespan=lifespan)
    app.state.db = database if database is not None else get_database()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in config.ALLOWED_ORIGINS] if config.ALLOWED_ORIGINS else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(accounts.router)
    app.include_router(accounts.admin_router)
    app.include_router(catalog.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(reviews.router)
    app.include_router(site_settings.router)
    app.include_router(payments.router)

    # Health and config
    @app.get("/")
    def root():
        return {"name": config.STORE_NAME, "status": "ok"}

    @app.get("/config")
    def get_config():
        return {
            "storeName": config.STORE_NAME,
            "currency": config.PRIMARY_CURRENCY,
            "payments": {"stripe": bool(config.STRIPE_SECRET)},
        }

    if config.ENABLE_DEV_SEED:
        @app.post("/dev/seed")
        def seed(request: Request):
            return seed_store(request.app.state.db)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
