import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cache import ResponseCache
from config import get_settings
from db import AsyncSessionLocal, create_tables, engine
from errors import register_error_handlers
from identity import IdentityStore
from routes import router as api_router

# Read and validate configuration at import time: a bad SECRET_KEY stops the
# process here instead of on the first login.
settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def seed_admin() -> None:
    if not (settings.admin_username and settings.admin_password):
        return
    async with AsyncSessionLocal() as session:
        admin = await IdentityStore(session).ensure_admin(
            settings.admin_username, settings.admin_password, email=settings.admin_email
        )
        logger.info("Admin account %r ready (id=%s)", admin.username, admin.id)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed the admin on startup; dispose of the pool on shutdown."""
    if settings.auto_create_tables:
        await create_tables()
    await seed_admin()
    yield
    await engine.dispose()


app = FastAPI(lifespan=lifespan, title="Task Management API",
              description="Async FastAPI + SQLAlchemy task manager with JWT sessions")
app.state.cache = ResponseCache(ttl_seconds=settings.cache_ttl_seconds)

register_error_handlers(app)
app.include_router(api_router)
