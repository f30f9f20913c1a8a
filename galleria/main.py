import logging
import mimetypes
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from starlette.middleware.sessions import SessionMiddleware
from starlette.responses import JSONResponse, PlainTextResponse

from .config import Settings, settings as default_settings
from .database import engine, Base
from .routers import admin, public
from .services.access import AccessTokenGate
from .services.photos import PhotoPipeline
from .services.ratelimit import RateLimiter
from .services.storage import S3ObjectStore, StorageNotConfigured
from .services.url_cache import SignedUrlCache

# Register additional MIME types
mimetypes.add_type("image/webp", ".webp")
mimetypes.add_type("image/heic", ".heic")

logging.basicConfig(
    level=default_settings.LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger("galleria")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create database tables if they don't exist
    Base.metadata.create_all(bind=engine)
    app.state.urls.start()
    logger.info("Galleria started (%s)", app.state.settings.ENVIRONMENT)
    try:
        yield
    finally:
        await app.state.urls.stop()


def create_app(settings: Optional[Settings] = None, store=None) -> FastAPI:
    """
    Build the application and the components it owns.

    `store` defaults to the configured S3 bucket; tests pass an in-memory one.
    """
    settings = settings or default_settings
    store = store if store is not None else S3ObjectStore.from_settings(settings)

    # ===== FastAPI setup =====
    app = FastAPI(
        title=settings.SITE_TITLE,
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )

    urls = SignedUrlCache(
        store,
        expires_in=settings.SIGNED_URL_EXPIRES,
        cache_ttl=settings.SIGNED_URL_CACHE_TTL,
        sweep_interval=settings.URL_CACHE_SWEEP_INTERVAL,
        production=settings.is_production,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.urls = urls
    app.state.gate = AccessTokenGate.from_settings(settings)
    app.state.pipeline = PhotoPipeline.from_settings(settings, store, urls)
    app.state.limiter = RateLimiter(
        max_requests=settings.TRACKING_RATE_LIMIT,
        window=settings.TRACKING_RATE_WINDOW,
    )

    # Admin console session cookie
    app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

    @app.exception_handler(StorageNotConfigured)
    async def storage_not_configured(request: Request, exc: StorageNotConfigured):
        logger.error("Storage unavailable for %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Storage is not available"})

    # Routers
    app.include_router(admin.router)
    app.include_router(public.router)

    @app.get("/healthz", response_class=JSONResponse)
    def health():
        """Health check endpoint."""
        return {"ok": True, "storage": store.configured}

    @app.get("/robots.txt", response_class=PlainTextResponse)
    def robots():
        """robots.txt file."""
        return "User-agent: *\nDisallow: /admin\nDisallow: /api\n"

    return app


app = create_app()
