# main.py
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from config.logging_config import configure_logging
from config.settings import Settings, load_settings
from database import create_db_engine, create_session_factory, init_db
from middleware.rate_limit import configure_limiter, retry_after_seconds
from middleware.request_logging import RequestLoggingMiddleware
from routers.auth_routes import router as auth_router
from routers.dividend_routes import router as dividend_router
from routers.portfolio_routes import router as portfolio_router
from routers.screener_routes import router as screener_router
from routers.search_routes import router as search_router
from schemas.general import fail
from services.cache.cache_backend import build_cache_backend
from services.cache.cache_manager import CacheManager, CacheSweeper
from services.dividend_service import DividendService
from services.enrichment_service import EnrichmentService
from services.errors import AppError
from services.market_data.base import MarketDataProvider
from services.market_data.gateway import MarketDataGateway, build_providers
from services.screener_service import ScreenerService

logger = logging.getLogger(__name__)


def _field_errors(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        # drop the "body"/"query" location prefix
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = str(err.get("msg", "invalid value")).removeprefix("Value error, ")
        parts.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error("request failed path=%s error=%s", request.url.path, exc.error)
        return JSONResponse(status_code=exc.status_code, content=fail(exc.error, exc.message))

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        if exc.status_code == 401:
            return JSONResponse(status_code=401, content=fail("Unauthorized"))
        detail = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return JSONResponse(status_code=exc.status_code, content=fail(detail), headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=fail("Validation failed", _field_errors(exc)))

    # Plain function: SlowAPIMiddleware calls this handler without awaiting it
    def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        logger.warning("rate limit exceeded path=%s", request.url.path)
        return JSONResponse(
            status_code=429,
            content=fail("Too many requests", "Rate limit exceeded, please try again later"),
            headers={"Retry-After": str(retry_after_seconds(exc))},
        )

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content=fail("Something went wrong", "An unexpected error occurred"),
        )


def create_app(
    settings: Optional[Settings] = None,
    providers: Optional[List[MarketDataProvider]] = None,
) -> FastAPI:
    """
    Build the application. Everything stateful is constructed in the lifespan hook
    and torn down there; `providers` overrides the configured provider chain.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_db_engine(settings)
        init_db(engine)
        session_factory = create_session_factory(engine)

        cache = CacheManager(build_cache_backend(settings, session_factory))
        sweeper = CacheSweeper(cache, settings.cache_cleanup_interval_sec)
        chain = providers if providers is not None else build_providers(settings)
        market = MarketDataGateway(chain, cache, session_factory)

        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.cache = cache
        app.state.gateway = market
        app.state.enrichment = EnrichmentService(market, cache)
        app.state.dividends = DividendService(market, cache)
        app.state.screener = ScreenerService(market, cache)

        sweeper.start()
        logger.info("startup complete env=%s cache=%s", settings.app_env, cache.backend.name)
        try:
            yield
        finally:
            await sweeper.stop()
            await market.aclose()
            cache.backend.close()
            engine.dispose()
            logger.info("shutdown complete")

    app = FastAPI(title="Stocklio API", lifespan=lifespan)
    app.state.settings = settings
    app.state.limiter = configure_limiter(settings)

    register_exception_handlers(app)

    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(portfolio_router, prefix="/api/portfolio")
    app.include_router(dividend_router, prefix="/api/dividends")
    app.include_router(screener_router, prefix="/api/screener")
    app.include_router(search_router, prefix="/api/search")

    @app.get("/health")
    def health():
        return {"success": True, "data": {"status": "ok"}}

    return app


def build_default_app() -> FastAPI:
    settings = load_settings()
    configure_logging(settings)
    return create_app(settings)
