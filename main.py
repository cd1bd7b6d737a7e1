"""Grocery Store API: FastAPI application entry point.

Invariants:
    - The MongoDB handle lives on app.state.db; handlers reach it through get_db
    - Routers are registered explicitly, one per resource under /api
    - Uploaded files are served read-only from /uploads
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pymongo.database import Database
from pymongo.errors import PyMongoError

from config import get_settings
from database import connect, ensure_indexes, utcnow
from error_handlers import register_error_handlers
from observability import log_requests, setup_logging
from routers import addresses, auth, categories, notifications, orders, products, transactions, users

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    owns_client = getattr(app.state, "db", None) is None
    if owns_client:
        app.state.db = connect(settings)
    ensure_indexes(app.state.db)
    os.makedirs(settings.upload_dir, exist_ok=True)
    logger.info("Grocery API started")
    yield
    logger.info("Grocery API shutting down")
    if owns_client:
        app.state.db.client.close()
        app.state.db = None


def create_app(database: Optional[Database] = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Grocery Store API", version="1.0.0", lifespan=lifespan)
    app.state.db = database

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(log_requests)
    register_error_handlers(app)

    for module in (auth, users, addresses, products, categories, orders, transactions, notifications):
        app.include_router(module.router)

    app.mount("/uploads", StaticFiles(directory=settings.upload_dir, check_dir=False), name="uploads")

    @app.get("/")
    def root():
        return {
            "success": True,
            "message": "Grocery Store API running",
            "version": app.version,
            "endpoints": {
                "auth": "/api/auth",
                "users": "/api/users",
                "addresses": "/api/addresses",
                "products": "/api/products",
                "categories": "/api/categories",
                "orders": "/api/orders",
                "transactions": "/api/transactions",
                "notifications": "/api/notifications",
            },
        }

    @app.get("/health")
    def health():
        return {"success": True, "status": "OK", "timestamp": utcnow().isoformat()}

    @app.get("/test")
    def test_database(request: Request):
        db = request.app.state.db
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": settings.database_name,
            "connection_status": "Not Connected",
            "collections": [],
        }
        if db is None:
            return response
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"❌ Error: {str(e)[:80]}"
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)
