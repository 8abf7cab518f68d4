from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from mailscout.api.routes import chat
from mailscout.config import settings
from mailscout.errors import AppError, InternalError, ValidationError
from mailscout.models.schemas import HealthResponse, validation_details
from mailscout.services import logger as log_service
from mailscout.services.cache import InMemoryCacheStore, ResponseCache, build_store
from mailscout.services.orchestrator import ChatOrchestrator
from mailscout.services.rate_limiter import SlidingWindowRateLimiter


def _error_response(error: AppError) -> JSONResponse:
    body = error.to_dict()
    body.setdefault("details", None)
    body.pop("retryAfter", None)
    headers = {}
    if error.retry_after is not None:
        headers["Retry-After"] = str(error.retry_after)
    return JSONResponse({"error": body}, status_code=error.status_code, headers=headers)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return _error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError("Invalid request", validation_details(list(exc.errors())))
    return _error_response(error)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return _error_response(InternalError("Internal server error"))


def create_app(
    orchestrator: ChatOrchestrator | None = None,
    rate_limiter: SlidingWindowRateLimiter | None = None,
) -> FastAPI:
    """Build the API with its shared cache store, orchestrator and limiter."""
    store = build_store(settings)
    if orchestrator is None:
        orchestrator = ChatOrchestrator.from_settings(
            settings, ResponseCache(store, ttl=settings.cache_ttl_seconds)
        )
    if rate_limiter is None:
        # Per-request timestamps stay in memory even when responses go to disk.
        limiter_store = store if isinstance(store, InMemoryCacheStore) else InMemoryCacheStore()
        rate_limiter = SlidingWindowRateLimiter.from_settings(settings, limiter_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        log_service.log_event("startup", "MailScout API starting", cache_backend=settings.cache_backend)
        yield
        log_service.log_event("shutdown", "MailScout API stopping")

    app = FastAPI(
        title="MailScout",
        description="Direct mail campaign assistant backed by web search and a language model",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.rate_limiter = rate_limiter

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Routes
    app.include_router(chat.router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", service="mailscout")

    return app


app = create_app()
