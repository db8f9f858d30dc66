import time
import uuid

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from resale_sync import __version__
from resale_sync.config import settings
from resale_sync.errors import (
    AuthExchangeError,
    InvalidOAuthStateError,
    MarketplaceConfigError,
    NoCredentialError,
    PermanentFetchError,
    PersistenceError,
    ReauthRequiredError,
    ResaleSyncError,
    SyncCancelledError,
    SyncInProgressError,
    TokenRefreshError,
    TransientFetchError,
)
from resale_sync.routers import ebay, sync
from resale_sync.utils.logger import logger

app = FastAPI(title="Resale Sync API", version=__version__)

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)

ERROR_STATUS = {
    NoCredentialError: status.HTTP_404_NOT_FOUND,
    ReauthRequiredError: status.HTTP_401_UNAUTHORIZED,
    InvalidOAuthStateError: status.HTTP_400_BAD_REQUEST,
    SyncInProgressError: status.HTTP_409_CONFLICT,
    SyncCancelledError: status.HTTP_409_CONFLICT,
    AuthExchangeError: status.HTTP_502_BAD_GATEWAY,
    TokenRefreshError: status.HTTP_502_BAD_GATEWAY,
    PermanentFetchError: status.HTTP_502_BAD_GATEWAY,
    TransientFetchError: status.HTTP_503_SERVICE_UNAVAILABLE,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
    MarketplaceConfigError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for_error(exc: ResaleSyncError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(ResaleSyncError)
async def resale_sync_error_handler(request: Request, exc: ResaleSyncError):
    status_code = status_for_error(exc)
    rid = getattr(request.state, "rid", None)
    log = logger.error if status_code >= 500 else logger.warning
    log(f"{request.method} {request.url.path} failed rid={rid}: {exc.code}: {exc.message}")
    body = exc.to_dict()
    body["rid"] = rid
    return JSONResponse(body, status_code=status_code)


@app.middleware("http")
async def request_logger(request: Request, call_next):
    # Reuse the caller's id so a request can be followed across services
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    request.state.rid = rid
    started = time.perf_counter()
    logger.info(f"→ {request.method} {request.url.path} rid={rid}")
    try:
        resp = await call_next(request)
    except Exception as e:
        logger.exception(f"Unhandled error rid={rid}: {e}")
        resp = JSONResponse(
            {"error": "internal_error", "rid": rid, "message": str(e), "type": type(e).__name__},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"← {request.url.path} status={resp.status_code} rid={rid} {elapsed_ms:.0f}ms")
    resp.headers["X-Request-ID"] = rid
    return resp


app.include_router(ebay.router)
app.include_router(sync.router)


@app.on_event("startup")
async def startup_event():
    logger.info(
        f"Starting Resale Sync API: marketplace_client={settings.MARKETPLACE_CLIENT} "
        f"environment={settings.EBAY_ENVIRONMENT}"
    )
    if settings.DATABASE_URL.startswith("sqlite"):
        from resale_sync.init_db import init_db

        init_db()
    else:
        logger.info("Non-SQLite database: apply schema with `alembic upgrade head`")


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/healthz/db")
async def healthz_db():
    from resale_sync.models_sqlalchemy import engine

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.exception("Database health check failed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Database unavailable: {type(e).__name__}: {e}",
        )
    return {"status": "ok", "database": "connected", "dialect": engine.dialect.name}


@app.get("/")
async def root():
    return {
        "message": "Resale Sync API",
        "version": __version__,
        "marketplace_client": settings.MARKETPLACE_CLIENT,
        "docs": "/docs",
    }
