import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from contracts.schemas.enums import fallback_events
from gateway.cache import create_cache
from gateway.config import Settings, get_settings
from gateway.errors import register_exception_handlers
from gateway.routers import analysis, appointments, auth, facilities, notifications, packages, tests, upload, users
from gateway.seed import seed_catalog
from gateway.services import NotificationDispatcher, build_services
from gateway.store import create_store

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    app_settings: Optional[Settings] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> FastAPI:
    """Build the gateway application; store and cache are opened by the lifespan."""
    app_settings = app_settings or settings

    # Service health state
    service_state: Dict[str, Any] = {
        "store": False,
        "cache": False,
        "catalog_seeded": False,
        "startup_complete": False,
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application startup/shutdown lifecycle."""
        logger.info("=" * 50)
        logger.info(f"{app_settings.APP_NAME} Starting...")
        logger.info("=" * 50)

        store = await create_store(app_settings)
        cache = create_cache(app_settings)

        logger.info("Checking backing services...")
        service_state["store"] = await store.ping()
        logger.info(f"  Store ({app_settings.STORE_BACKEND}): {'Connected' if service_state['store'] else 'Not available'}")
        service_state["cache"] = await cache.ping()
        logger.info(f"  Cache ({app_settings.CACHE_BACKEND}): {'Connected' if service_state['cache'] else 'Not available'}")

        if app_settings.SEED_CATALOG:
            await seed_catalog(store)
            service_state["catalog_seeded"] = True

        app.state.services = build_services(app_settings, store, cache, dispatcher)
        service_state["startup_complete"] = True

        logger.info("=" * 50)
        logger.info(f"Service ready on CORS origins: {app_settings.CORS_ORIGINS}")
        logger.info("=" * 50)

        yield

        # Shutdown
        logger.info(f"Shutting down {app_settings.APP_NAME}...")
        service_state["startup_complete"] = False
        app.state.services = None
        await cache.close()
        await store.close()

    app = FastAPI(
        title=app_settings.APP_NAME,
        description="Super One Health API - lab reports, health analysis, tests and appointments",
        version=app_settings.APP_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.services = None
    app.state.service_state = service_state

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app, debug=app_settings.DEBUG)

    # Include routers
    for module in (auth, users, tests, packages, facilities, appointments, upload, analysis, notifications):
        app.include_router(module.router, prefix=app_settings.API_PREFIX)

    @app.get("/health")
    async def health_check():
        """
        Basic health check endpoint for load balancers.
        Returns 200 if service is running.
        """
        return {"status": "healthy", "service": "gateway"}

    @app.get("/ready")
    async def readiness_check():
        """
        Detailed readiness check with dependency status.
        Enum decode fallbacks are listed so contract drift is visible.
        """
        return {
            "status": "ready" if service_state["startup_complete"] else "starting",
            "services": {
                "store": service_state["store"],
                "cache": service_state["cache"],
                "catalog_seeded": service_state["catalog_seeded"],
            },
            "enum_fallbacks": fallback_events(),
            "config": {
                "debug": app_settings.DEBUG,
                "store_backend": app_settings.STORE_BACKEND,
                "cache_backend": app_settings.CACHE_BACKEND,
            },
        }

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "service": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "api": app_settings.API_PREFIX,
            "docs": "/docs",
            "health": "/health",
            "ready": "/ready",
        }

    return app


app = create_app()
