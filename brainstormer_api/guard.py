"""Input guard for the distill endpoint.

Checks run in the order the endpoint applies them:
- HTTP method (POST only)
- Completion credential configured (operator error, never client-caused)
- Body is a JSON object with a non-empty string ``text`` field
- ``text`` length within the configured ceiling
"""

import json
from typing import Any

import structlog
from pydantic import ValidationError

from brainstormer_api.config import Settings
from brainstormer_api.models import DistillRequest

logger = structlog.get_logger()

ALLOWED_METHOD = "POST"


class GuardError(Exception):
    """Base exception for rejected requests."""

    status_code = 400
    message = "Bad request"

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MethodNotAllowedError(GuardError):
    """Raised for any HTTP method other than POST."""

    status_code = 405
    message = "Method not allowed"


class ServiceNotConfiguredError(GuardError):
    """Raised when the completion credential is missing.

    The message is deliberately generic; which setting is missing only goes to the log.
    """

    status_code = 500
    message = "Service temporarily unavailable"


class InvalidBodyError(GuardError):
    """Raised when the body is not a JSON object."""

    message = "Invalid request body"


class InvalidTextError(GuardError):
    """Raised when ``text`` is missing, empty, or not a string."""

    message = "Missing or invalid text field"


class TextTooLongError(GuardError):
    """Raised when ``text`` exceeds the configured ceiling."""

    status_code = 413

    def __init__(self, max_length: int):
        self.max_length = max_length
        super().__init__(f"Text exceeds maximum length of {max_length} characters")


def check_method(method: str) -> None:
    """Reject every method except POST."""
    if method.upper() != ALLOWED_METHOD:
        raise MethodNotAllowedError()


def check_credentials(settings: Settings) -> None:
    """Fail closed when the completion service cannot be called."""
    if settings.completion_configured:
        return
    logger.error("Completion service credential not configured", setting="OPENAI_API_KEY")
    raise ServiceNotConfiguredError()


def parse_distill_request(raw_body: bytes, settings: Settings) -> DistillRequest:
    """Validate a raw request body and return the parsed request.

    Args:
        raw_body: Body bytes as received.
        settings: Settings providing the length ceiling.

    Returns:
        DistillRequest with the text untouched.

    Raises:
        InvalidBodyError: Body is not a JSON object.
        InvalidTextError: ``text`` missing, empty or not a string.
        TextTooLongError: ``text`` longer than ``settings.max_text_length``.
    """
    try:
        payload: Any = json.loads(raw_body) if raw_body else None
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.info("Rejected unparseable request body", error=str(e))
        raise InvalidBodyError() from e

    if not isinstance(payload, dict):
        raise InvalidBodyError()

    text = payload.get("text")
    if not isinstance(text, str) or not text:
        raise InvalidTextError()

    if len(text) > settings.max_text_length:
        raise TextTooLongError(settings.max_text_length)

    if "model" in payload:
        logger.warning("Ignoring client-supplied model field")

    try:
        return DistillRequest.model_validate(payload)
    except ValidationError as e:
        raise InvalidTextError() from e
