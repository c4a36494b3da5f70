"""Observability utilities: trace IDs, LLM metrics, and payload logging.

This module provides:
- Trace ID generation and propagation via context vars
- Prometheus metrics for LLM calls (tokens, latency, errors) and distill outcomes
- Structured logging helpers for LLM request/response correlation
"""

import secrets
import time
from contextvars import ContextVar
from dataclasses import dataclass

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# =============================================================================
# Trace ID Context
# =============================================================================

trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")


def generate_trace_id() -> str:
    """Generate cryptographically secure trace ID for request tracking."""
    return secrets.token_hex(16)


def get_trace_id() -> str:
    """Get current trace ID from context, or empty string if not set."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str) -> None:
    """Set trace ID in context."""
    trace_id_ctx.set(trace_id)


# =============================================================================
# Prometheus Metrics
# =============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total LLM API requests",
    ["model", "status"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total tokens used in LLM calls",
    ["model", "type"],  # values: prompt, completion, total
)

llm_latency_seconds = Histogram(
    "llm_latency_seconds",
    "LLM response latency in seconds",
    ["model"],
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

llm_active_requests = Gauge(
    "llm_active_requests",
    "Currently active LLM requests",
    ["model"],
)

distill_requests_total = Counter(
    "distill_requests_total",
    "Distill requests by outcome",
    ["outcome"],
)

distill_input_chars = Histogram(
    "distill_input_chars",
    "Characters of brain-dump text per accepted request",
    buckets=[100, 500, 1000, 2000, 5000, 10000, 20000],
)


def record_distill_outcome(outcome: str) -> None:
    """Count a finished distill request (e.g. "success", "rate_limited", "upstream_error")."""
    distill_requests_total.labels(outcome=outcome).inc()


# =============================================================================
# LLM Payload Logging
# =============================================================================


@dataclass
class LLMRequestLog:
    """Structured log data for LLM requests."""

    trace_id: str
    model: str
    system_prompt_chars: int
    user_prompt_chars: int
    input_chars: int
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp == 0.0:
            self.timestamp = time.time()


def log_llm_request(model: str, system_prompt: str, user_prompt: str, text: str) -> LLMRequestLog:
    """Log an outgoing completion request.

    Only sizes are logged; brain-dump text never reaches the log.

    Returns LLMRequestLog for correlation with the response.
    """
    log_data = LLMRequestLog(
        trace_id=get_trace_id(),
        model=model,
        system_prompt_chars=len(system_prompt),
        user_prompt_chars=len(user_prompt),
        input_chars=len(text),
    )

    logger.info(
        "llm_request",
        trace_id=log_data.trace_id,
        model=log_data.model,
        system_prompt_chars=log_data.system_prompt_chars,
        user_prompt_chars=log_data.user_prompt_chars,
        input_chars=log_data.input_chars,
    )

    llm_active_requests.labels(model=model).inc()
    distill_input_chars.observe(len(text))

    return log_data


def log_llm_response(
    request_log: LLMRequestLog,
    tokens_prompt: int = 0,
    tokens_completion: int = 0,
    tokens_total: int = 0,
    finish_reason: str = "unknown",
    error: str | None = None,
) -> None:
    """Log a completion response with metrics and correlation."""
    latency_ms = int((time.time() - request_log.timestamp) * 1000)

    if error:
        logger.error(
            "llm_response",
            trace_id=request_log.trace_id,
            model=request_log.model,
            latency_ms=latency_ms,
            error=error,
        )
        status = "error"
    else:
        logger.info(
            "llm_response",
            trace_id=request_log.trace_id,
            model=request_log.model,
            tokens_prompt=tokens_prompt,
            tokens_completion=tokens_completion,
            tokens_total=tokens_total,
            latency_ms=latency_ms,
            finish_reason=finish_reason,
        )
        status = "success"

    llm_active_requests.labels(model=request_log.model).dec()
    llm_requests_total.labels(model=request_log.model, status=status).inc()

    if tokens_total > 0:
        llm_tokens_total.labels(model=request_log.model, type="prompt").inc(tokens_prompt)
        llm_tokens_total.labels(model=request_log.model, type="completion").inc(tokens_completion)
        llm_tokens_total.labels(model=request_log.model, type="total").inc(tokens_total)

    llm_latency_seconds.labels(model=request_log.model).observe(latency_ms / 1000.0)
