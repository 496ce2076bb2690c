# shop_hub/main.py
# Shop Hub - storefront + back-office API
from __future__ import annotations
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from shop_hub import __version__
from shop_hub.settings import settings
from shop_hub.database import init_db, close_db, create_all, check_db_health, get_database_url
from shop_hub.errors import ShopError

from shop_hub.routers.products import router as products_router
from shop_hub.routers.categories import router as categories_router
from shop_hub.routers.cart import router as cart_router
from shop_hub.routers.vouchers import router as vouchers_router
from shop_hub.routers.orders import router as orders_router
from shop_hub.routers.payments import router as payments_router
from shop_hub.routers.financial import router as financial_router

# ---------------------------------------------------------
# Logging setup
# ---------------------------------------------------------
from shop_hub.logging_setup import setup_logging
setup_logging(settings)

log = logging.getLogger("shop_hub")

# ---------------------------------------------------------
# Lifespan: Database init/cleanup
# ---------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    url = get_database_url()
    await init_db(url)
    if url.startswith("sqlite"):
        # local runs have no migration step
        await create_all()
    log.info("Database ready (%s)", url.split("://", 1)[0])
    yield
    # Shutdown
    await close_db()
    log.info("Database disconnected")

# ---------------------------------------------------------
# FastAPI app + CORS
# ---------------------------------------------------------
app = FastAPI(
    title="Shop Hub API",
    version=__version__,
    description="Storefront and back-office API: catalog, cart, vouchers, orders, payments, reports",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(products_router)
app.include_router(categories_router)
app.include_router(cart_router)
app.include_router(vouchers_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(financial_router)

# ---------------------------------------------------------
# Error handlers: {"success": false, "error": {"code", "message"}}
# ---------------------------------------------------------
def _error(status_code: int, code: str, message: str, details=None) -> JSONResponse:
    err = {"code": code, "message": message}
    if details:
        err["details"] = details
    return JSONResponse(status_code=status_code, content=jsonable_encoder({"success": False, "error": err}))


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return _error(400, "VALIDATION_ERROR", "Request validation failed", exc.errors())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, f"HTTP_{exc.status_code}", str(exc.detail))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    log.warning("%s %s integrity error: %s", request.method, request.url.path, exc.orig)
    return _error(409, "CONFLICT", "The request conflicts with existing data")


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    log.error("%s %s unexpected error", request.method, request.url.path, exc_info=exc)
    details = None
    if settings.is_development:
        details = {"exception": repr(exc), "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))}
    return _error(500, "INTERNAL_ERROR", "Internal server error", details)

# ---------------------------------------------------------
# Health
# ---------------------------------------------------------
@app.get("/health")
async def health():
    db = await check_db_health()
    return {
        "status": "ok" if db["status"] == "healthy" else "degraded",
        "version": __version__,
        "database": db,
    }
