"""OpenAI chat-completions client with a hard-locked model."""

import json
import re
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from brainstormer_api.config import get_settings

logger = structlog.get_logger()

# Cost control: the only completion target this service may call.
LOCKED_MODEL = "gpt-4o-mini"


class CostControlError(Exception):
    """Raised when a client is built for any model other than LOCKED_MODEL."""

    pass


class OpenAIError(Exception):
    """Base exception for completion failures."""

    pass


class OpenAIAuthError(OpenAIError):
    """Raised when authentication fails or no key is configured.

    Clients see the generic failure message; the distinction feeds the
    ``upstream_auth_error`` distill outcome.
    """

    pass


class OpenAIRateLimitError(OpenAIError):
    """Raised when the upstream rate limit is exceeded (``upstream_rate_limited`` outcome)."""

    pass


class OpenAIEmptyResponseError(OpenAIError):
    """Raised when a successful reply carries no message content."""

    pass


@dataclass
class CompletionResult:
    """Raw completion text plus usage."""

    content: str
    tokens_used: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: str | None = None


class OpenAIClient:
    """Async single-shot client for the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str = LOCKED_MODEL,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the OpenAI client.

        Args:
            api_key: OpenAI API key. Defaults to config value.
            base_url: API base URL. Defaults to config value.
            model: Model ID. Anything other than LOCKED_MODEL is rejected.
            max_tokens: Maximum tokens in response. Defaults to config value.
            temperature: Sampling temperature. Defaults to config value.
            timeout_seconds: Read timeout for the completion call. Defaults to config value.
            transport: Optional httpx transport (used by tests).

        Raises:
            CostControlError: If ``model`` is not LOCKED_MODEL.
        """
        if model != LOCKED_MODEL:
            logger.error("Cost control violation", requested_model=model, locked_model=LOCKED_MODEL)
            raise CostControlError(f"Cost control violation: model must be {LOCKED_MODEL}")

        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.openai_api_key
        self._base_url = base_url or settings.openai_base_url
        self._model = model
        self._max_tokens = max_tokens or settings.llm_max_tokens
        self._temperature = temperature if temperature is not None else settings.llm_temperature
        self._timeout = timeout_seconds or settings.llm_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "OpenAIClient":
        """Enter async context."""
        await self.connect()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Exit async context."""
        await self.close()

    @property
    def model(self) -> str:
        return self._model

    @property
    def is_configured(self) -> bool:
        """Check if the client has an API key."""
        return bool(self._api_key and self._api_key.strip())

    async def connect(self) -> None:
        """Create the HTTP client.

        In mock mode (MOCK_OPENAI=true) without a key, no HTTP client is created
        since every completion is served by the mock.
        """
        settings = get_settings()
        if settings.mock_openai and not self.is_configured:
            logger.info("OpenAI client in mock mode, skipping HTTP client creation", model=self._model)
            return

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(self._timeout, connect=10.0),
            transport=self._transport,
        )
        logger.info("OpenAI client connected", model=self._model)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("OpenAI client closed")

    def _build_payload(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

    async def complete(self, system_prompt: str, user_prompt: str) -> CompletionResult:
        """Send one chat completion request and return the raw reply text.

        Args:
            system_prompt: System instructions for the model.
            user_prompt: Rendered user instruction.

        Returns:
            CompletionResult with the stripped message content.

        Raises:
            OpenAIAuthError: No key configured and mock mode off, or a 401 reply.
            OpenAIEmptyResponseError: The reply has no message content.
            OpenAIError: Transport failure, timeout or non-success status.
        """
        settings = get_settings()

        if not self.is_configured:
            if settings.mock_openai:
                logger.info("MOCK_OPENAI=true: Using mock completion")
                return self._mock_complete(user_prompt)
            logger.error("OpenAI API key not configured with MOCK_OPENAI=false")
            raise OpenAIAuthError("OpenAI API key not configured")

        if not self._client:
            await self.connect()

        payload = self._build_payload(system_prompt, user_prompt)

        try:
            response = await self._client.post("/chat/completions", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e)
            raise  # _handle_http_error always raises
        except httpx.TimeoutException as e:
            logger.error("OpenAI request timed out", timeout_seconds=self._timeout)
            raise OpenAIError(f"Request timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            logger.error("OpenAI transport error", error=str(e))
            raise OpenAIError(f"Transport error: {e}") from e
        except ValueError as e:
            logger.error("OpenAI returned a non-JSON body", error=str(e))
            raise OpenAIError("Malformed response body") from e

        if not isinstance(data, dict):
            logger.error("OpenAI returned an unexpected body", body_type=type(data).__name__)
            raise OpenAIError("Malformed response body")

        choices = data.get("choices")
        choice = choices[0] if isinstance(choices, list) and choices else {}
        if not isinstance(choice, dict):
            choice = {}
        message = choice.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        content = content.strip() if isinstance(content, str) else ""

        if not content:
            logger.error("OpenAI returned no message content", finish_reason=choice.get("finish_reason"))
            raise OpenAIEmptyResponseError("No response from AI")

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        result = CompletionResult(
            content=content,
            tokens_used=_token_count(usage, "total_tokens"),
            prompt_tokens=_token_count(usage, "prompt_tokens"),
            completion_tokens=_token_count(usage, "completion_tokens"),
            finish_reason=choice.get("finish_reason"),
        )
        logger.info(
            "LLM response received",
            tokens=result.tokens_used,
            finish_reason=result.finish_reason,
        )
        return result

    def _handle_http_error(self, error: httpx.HTTPStatusError) -> None:
        """Log and translate an error status from the OpenAI API."""
        status = error.response.status_code
        try:
            detail = error.response.json().get("error", {}).get("message", str(error))
        except Exception:
            detail = str(error)

        logger.error("OpenAI API error", status=status, detail=detail)

        if status == 401:
            raise OpenAIAuthError(f"Authentication failed: {detail}") from error
        elif status == 429:
            raise OpenAIRateLimitError(f"Rate limit exceeded: {detail}") from error
        else:
            raise OpenAIError(f"API error ({status}): {detail}") from error

    def _mock_complete(self, user_prompt: str) -> CompletionResult:
        """Return a keyword-categorised plan in the shape the model is asked for."""
        return CompletionResult(
            content=json.dumps({"sections": _mock_sections(user_prompt)}),
            tokens_used=0,
            finish_reason="stop",
        )


def _token_count(usage: dict[str, Any], key: str) -> int:
    """Read a usage counter, treating null or non-numeric values as 0."""
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(int(value), 0)


_MOCK_CATEGORIES = [
    (
        {"work", "job", "career", "project", "task"},
        "Work & Projects",
        [
            "Review project timeline and deliverables",
            "Schedule team sync meeting",
            "Update project documentation",
        ],
    ),
    (
        {"personal", "life", "home", "family"},
        "Personal",
        ["Plan weekend activities", "Organize home workspace"],
    ),
    (
        {"health", "exercise", "fitness", "gym", "workout"},
        "Health & Wellness",
        ["Schedule gym sessions for the week", "Meal prep for healthy lunches"],
    ),
    (
        {"learn", "study", "course", "skill", "education"},
        "Learning & Growth",
        ["Complete online course module", "Practice new skill for 30 minutes"],
    ),
]

_MOCK_DEFAULT = (
    "Action Items",
    [
        "Prioritize and organize tasks",
        "Break down larger goals into steps",
        "Set deadlines for key actions",
    ],
)


def _mock_sections(text: str) -> list[dict[str, Any]]:
    words = set(re.findall(r"[a-z]+", text.lower()))
    sections = [
        {"title": title, "bullets": list(bullets)}
        for keywords, title, bullets in _MOCK_CATEGORIES
        if words & keywords
    ]
    if not sections:
        title, bullets = _MOCK_DEFAULT
        sections.append({"title": title, "bullets": list(bullets)})
    return sections


# Global client instance
_openai_client: OpenAIClient | None = None


async def get_openai_client() -> OpenAIClient:
    """Get or create the global OpenAI client instance."""
    global _openai_client
    if _openai_client is None:
        _openai_client = OpenAIClient()
        await _openai_client.connect()
    return _openai_client


async def close_openai_client() -> None:
    """Close the global OpenAI client."""
    global _openai_client
    if _openai_client:
        await _openai_client.close()
        _openai_client = None


def reset_openai_client() -> None:
    """Reset the global OpenAI client (for testing)."""
    global _openai_client
    _openai_client = None
