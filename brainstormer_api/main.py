"""FastAPI application entrypoint for the Brainstormer API."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from brainstormer_api import __version__
from brainstormer_api.config import get_settings
from brainstormer_api.guard import (
    GuardError,
    check_credentials,
    check_method,
    parse_distill_request,
)
from brainstormer_api.models import DistilledPlan, ErrorResponse, HealthResponse
from brainstormer_api.normalizer import InvalidResponseStructureError, ResponseParseError
from brainstormer_api.observability import (
    generate_trace_id,
    record_distill_outcome,
    set_trace_id,
)
from brainstormer_api.openai_client import (
    CostControlError,
    OpenAIAuthError,
    OpenAIEmptyResponseError,
    OpenAIError,
    OpenAIRateLimitError,
    close_openai_client,
    get_openai_client,
)
from brainstormer_api.pipeline import distill
from brainstormer_api.rate_limiter import get_rate_limiter, resolve_client_key

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level)

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
INTERNAL_ERROR_MESSAGE = "Internal server error"

# Every method is routed to the distill handler so the guard owns the 405.
DISTILL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Brainstormer API", version=__version__)

    try:
        await get_openai_client()
        logger.info("OpenAI client initialized")
    except Exception as e:
        logger.warning("Failed to initialize OpenAI client", error=str(e))

    yield

    logger.info("Shutting down Brainstormer API")
    await close_openai_client()


app = FastAPI(
    title="Brainstormer API",
    description="Distills brain-dump text into categorized, actionable task lists",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["POST"],
    allow_headers=["*"],
)


# Trace ID middleware for request correlation
@app.middleware("http")
async def trace_id_middleware(request: Request, call_next):
    """Add trace ID to every request for log correlation."""
    trace_id = request.headers.get("X-Trace-ID", generate_trace_id())
    set_trace_id(trace_id)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)

    response = await call_next(request)

    response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as ``{"error": ...}`` bodies."""
    message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=message).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


Instrumentator().instrument(app).expose(app)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=HealthResponse)
@app.get("/api/v1/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Report whether distill requests can currently be served."""
    current = get_settings()
    configured = current.completion_configured
    return HealthResponse(
        status="healthy" if configured else "degraded",
        completion_configured=configured,
        mock_mode=current.mock_openai and not current.has_openai_key,
        tracked_clients=get_rate_limiter().count(),
        version=__version__,
    )


# =============================================================================
# Distill Endpoint
# =============================================================================


def _fail(status_code: int, message: str, outcome: str) -> HTTPException:
    record_distill_outcome(outcome)
    return HTTPException(status_code=status_code, detail=message)


@app.api_route(
    "/api/distill",
    methods=DISTILL_METHODS,
    response_model=DistilledPlan,
    responses={
        400: {"model": ErrorResponse},
        405: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
@app.api_route("/api/v1/distill", methods=DISTILL_METHODS, response_model=DistilledPlan)
async def distill_endpoint(request: Request):
    """
    Distill a brain dump into categorized action items.

    - **text**: Raw brain-dump text (1 to 20000 characters)

    Any ``model`` field in the body is ignored.
    """
    current = get_settings()

    try:
        check_method(request.method)
        check_credentials(current)
        distill_request = parse_distill_request(await request.body(), current)
    except GuardError as e:
        raise _fail(e.status_code, e.message, "rejected") from e

    client_key = resolve_client_key(request)
    if not get_rate_limiter().allow(client_key):
        raise _fail(429, RATE_LIMIT_MESSAGE, "rate_limited")

    logger.info("Distill request accepted", text_length=len(distill_request.text))

    try:
        openai_client = await get_openai_client()
        plan = await distill(distill_request.text, openai_client)
    except CostControlError as e:
        logger.error("Completion client misconfigured", error=str(e))
        raise _fail(500, INTERNAL_ERROR_MESSAGE, "config_error") from e
    except OpenAIEmptyResponseError as e:
        raise _fail(500, "No response from AI", "upstream_error") from e
    except OpenAIAuthError as e:
        raise _fail(500, "AI processing failed", "upstream_auth_error") from e
    except OpenAIRateLimitError as e:
        raise _fail(500, "AI processing failed", "upstream_rate_limited") from e
    except OpenAIError as e:
        raise _fail(500, "AI processing failed", "upstream_error") from e
    except ResponseParseError as e:
        if current.parse_failure_as_success:
            record_distill_outcome("fallback")
            return e.fallback
        record_distill_outcome("parse_error")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(error=str(e), fallback=e.fallback).model_dump(),
        )
    except InvalidResponseStructureError as e:
        raise _fail(500, "Invalid response structure", "format_error") from e
    except Exception as e:
        logger.exception("AI processing error", error=str(e))
        raise _fail(500, INTERNAL_ERROR_MESSAGE, "internal_error") from e

    record_distill_outcome("success")
    return plan
