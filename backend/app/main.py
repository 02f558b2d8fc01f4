import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.engine.url import make_url

from app.auth.router import router as auth_router
from app.cache.client import CacheClient
from app.core.config import settings
from app.core.errors import AppError, StoreUnavailable, app_error_handler
from app.cycles.router import programs_router
from app.cycles.router import router as cycles_router
from app.db.init_db import init_db
from app.db.session import engine
from app.leads.router import router as leads_router
from app.system.router import router as system_router
from app.users.router import router as users_router

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Training Operations Backend",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.add_exception_handler(AppError, app_error_handler)


@app.on_event("startup")
def on_startup() -> None:
    db_url = make_url(settings.DATABASE_URL)
    logger.info(
        "Config sanity: env=%s db_host=%s cors_origins=%s access_exp_min=%s refresh_exp_days=%s cache=%s",
        settings.ENV,
        db_url.host or "local",
        len(settings.CORS_ORIGINS),
        settings.JWT_ACCESS_EXP_MINUTES,
        settings.JWT_REFRESH_EXP_DAYS,
        settings.CACHE_ENABLED,
    )
    init_db()
    app.state.cache = CacheClient.from_settings(settings)


@app.on_event("shutdown")
def on_shutdown() -> None:
    cache = getattr(app.state, "cache", None)
    if cache is not None:
        cache.close()
    engine.dispose()


# --- Routers ---
app.include_router(auth_router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(users_router, prefix="/api/v1/users", tags=["users"])
app.include_router(programs_router, prefix="/api/v1/programs", tags=["programs"])
app.include_router(cycles_router, prefix="/api/v1/cycles", tags=["cycles"])
app.include_router(leads_router, prefix="/api/v1/leads", tags=["leads"])
app.include_router(system_router, prefix="/api/v1/system", tags=["system"])


# --- System ---
@app.get("/health", tags=["system"])
def health():
    return {"status": "ok"}


@app.get("/ready", tags=["system"])
def readiness():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("Readiness check failed: %s", exc)
        raise StoreUnavailable("Database not ready")
    return {"status": "ready"}
