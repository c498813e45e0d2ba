from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from dotenv import load_dotenv
from pathlib import Path
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

env_path = Path(__file__).resolve().parent.parent / ".env"
_ = load_dotenv(dotenv_path=env_path)

from app.config import settings
from app.core.exceptions import MarketplaceError
from app.core.sentry_helpers import capture_exception_with_context, set_request_context
from app.core.auth import user_id_from_token
from app.schemas.common import ErrorResponse
from app.services.realtime_service import realtime_hub
from app.api import conversations, messages, offers, websockets

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info(f"{settings.APP_NAME} starting up ({settings.ENVIRONMENT})")

    if settings.DEBUG:
        logger.info("Running in debug mode - enhanced logging enabled")

    yield

    logger.info(f"{settings.APP_NAME} shutting down")


if settings.SENTRY_DSN:
    _ = sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=1.0 if settings.DEBUG else 0.1,
        environment=settings.ENVIRONMENT,
        release=f"help-exchange@{settings.VERSION}",
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        ignore_errors=[
            KeyboardInterrupt,
            MarketplaceError,
        ],
        send_default_pii=False,
        attach_stacktrace=True,
    )

    logger.info(f"Sentry initialized for environment: {settings.ENVIRONMENT}")
else:
    logger.info("Sentry DSN not configured - error tracking disabled")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    openapi_url="/api/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(offers.router, prefix="/api/offers", tags=["offers"])
app.include_router(
    conversations.router, prefix="/api/conversations", tags=["conversations"]
)
app.include_router(messages.router, prefix="/api/messages", tags=["messages"])
app.include_router(websockets.router, tags=["realtime"])


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 409:
        logger.info(
            f"{request.method} {request.url.path} -> {exc.status_code} "
            f"{exc.code}: {exc.detail}"
        )

    body = ErrorResponse(
        error=exc.code,
        detail=exc.detail,
        field=exc.field,
        retryable=exc.retryable,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(
        status_code=exc.status_code, content=body.model_dump(mode="json")
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    set_request_context(request)
    capture_exception_with_context(
        exc,
        {
            "caller": {
                "user_id": user_id_from_token(request.cookies.get("access_token")),
                "endpoint": request.url.path,
            }
        },
    )

    body = ErrorResponse(
        error="internal_error",
        detail="An unexpected error occurred",
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(status_code=500, content=body.model_dump(mode="json"))


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "features": {
            "offers": True,
            "conversations": True,
            "cancellation_protocol": True,
            "websocket_feed": True,
            "error_tracking": bool(settings.SENTRY_DSN),
        },
        "realtime": realtime_hub.get_connection_stats(),
    }
