# cinebook/main.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cinebook.core.config import settings
from cinebook.core.exception_handlers import register_exception_handlers
from cinebook.database import models  # noqa: F401  registers every table on Base
from cinebook.database.database import Base, SessionLocal, engine
from cinebook.deps.services import Services, build_services
from cinebook.routers import booking_routes, health, hold_routes, payment_routes
from cinebook.services.expiry_sweeper import ExpirySweeper

logger = logging.getLogger(__name__)

ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def create_app(
    services: Optional[Services] = None,
    start_sweeper: Optional[bool] = None,
    use_redis: bool = True,
) -> FastAPI:
    """
    Build the API. Tests pass their own services (database, gateway, clock);
    otherwise everything is built from settings at startup.
    """
    if start_sweeper is None:
        start_sweeper = settings.SWEEPER_ENABLED

    # Lifespan events (startup/shutdown)
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=settings.LOG_LEVEL,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        if services is None:
            # Ensure DB models/tables exist
            Base.metadata.create_all(bind=engine)
            app.state.services = build_services(SessionLocal)
        else:
            app.state.services = services

        # Redis init (non-fatal)
        app.state.redis = None
        if use_redis and settings.REDIS_URL:
            try:
                from cinebook.core.redis import get_redis

                app.state.redis = await get_redis()
            except Exception as e:
                logger.warning(f"⚠ Redis connection failed (sweeper runs without leader lock): {e}")

        sweeper = None
        if start_sweeper:
            sweeper = ExpirySweeper(
                app.state.services.reservations,
                app.state.services.bookings,
                interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
                redis=app.state.redis,
                lock_ttl_ms=settings.SWEEPER_LOCK_TTL_MS,
                key_prefix=settings.KEY_PREFIX,
            )
            sweeper.start()
        app.state.sweeper = sweeper

        yield

        # Shutdown: cleanup resources gracefully
        try:
            logger.info("🔄 Starting graceful shutdown...")
            if sweeper is not None:
                await sweeper.stop()
            if app.state.redis is not None:
                from cinebook.core.redis import close_redis

                await close_redis()
            logger.info("✅ Graceful shutdown complete")
        except asyncio.CancelledError:
            logger.debug("Shutdown process cancelled (normal during Ctrl+C)")
        except Exception as e:
            logger.error(f"Unexpected error during shutdown: {e}", exc_info=True)

    fastapi_app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Seat holds, bookings and payment reconciliation for cinema screenings",
        version=settings.VERSION,
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(fastapi_app)

    # --- Register routers under the /api prefix the frontend expects ---
    fastapi_app.include_router(hold_routes.router, prefix="/api")
    fastapi_app.include_router(booking_routes.router, prefix="/api")
    fastapi_app.include_router(payment_routes.router, prefix="/api")
    fastapi_app.include_router(health.router, prefix="/api")

    @fastapi_app.get("/")
    def root():
        return {"message": f"🎬 {settings.PROJECT_NAME} is running"}

    return fastapi_app


app = create_app()
