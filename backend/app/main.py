import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import engine
from app.middleware.exceptions import register_exception_handlers
from app.routers import backup, health
from app.utils.cache import close_redis

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("solar_backup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Backup service starting (%s)", settings.environment)
    try:
        yield
    finally:
        await close_redis()
        await engine.dispose()
        logger.info("Backup service stopped")


app = FastAPI(
    title="Solar Backup",
    description="Customer backup archives and document storage reclamation",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Documents-Included", "X-Documents-Skipped"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(backup.router, prefix="/api/admin/backup", tags=["backup"])
