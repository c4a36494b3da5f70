"""Normalization of raw model output into a DistilledPlan.

The model is asked for ``{"sections": [{"title": ..., "bullets": [...]}]}``
but may wrap it in prose or code fences, omit fields, or ignore the shape
entirely. Two failure classes are kept apart:

- the reply contains no parseable JSON: ``ResponseParseError``, which carries
  a ready-made fallback plan;
- the JSON parses but has no ``sections`` list: ``InvalidResponseStructureError``,
  surfaced without a fallback.

Everything else is repaired so the returned plan always has at least one item.
"""

import json
import re
import time
from collections.abc import Callable
from typing import Any

import structlog

from brainstormer_api.models import ActionItem, ActionSection, DistilledPlan

logger = structlog.get_logger()

# Widest span from the first "{" to the last "}".
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class NormalizationError(Exception):
    """Base exception for model output that cannot be normalized."""

    pass


class ResponseParseError(NormalizationError):
    """Raised when no JSON can be parsed from the model output."""

    def __init__(self, message: str, fallback: DistilledPlan):
        super().__init__(message)
        self.fallback = fallback


class InvalidResponseStructureError(NormalizationError):
    """Raised when parsed JSON lacks a ``sections`` list."""

    pass


def processing_error_plan() -> DistilledPlan:
    """Deterministic plan returned when the model output is unparseable."""
    return DistilledPlan(
        sections=[
            ActionSection(
                id="error-1",
                title="Processing Error",
                items=[
                    ActionItem(
                        id="error-item-1",
                        text="Unable to process input. Please try again.",
                    )
                ],
            )
        ]
    )


def empty_plan_section() -> ActionSection:
    """Section appended when the model produced no items at all."""
    return ActionSection(
        id="fallback-1",
        title="Action Items",
        items=[ActionItem(id="fallback-item-1", text="Review and organize the input")],
    )


def extract_json_text(raw_text: str) -> str:
    """Return the widest ``{...}`` substring, or the whole text if there is none."""
    match = _JSON_OBJECT_RE.search(raw_text)
    return match.group(0) if match else raw_text


def _bullet_text(bullet: Any) -> str | None:
    if bullet is None or isinstance(bullet, (dict, list)):
        return None
    if isinstance(bullet, str):
        return bullet if bullet.strip() else None
    return json.dumps(bullet)


def _map_section(section: Any, index: int, stamp: int) -> ActionSection:
    if not isinstance(section, dict):
        section = {}

    title = section.get("title")
    if not isinstance(title, str) or not title.strip():
        title = f"Section {index + 1}"

    bullets = section.get("bullets")
    if not isinstance(bullets, list):
        bullets = []

    items = []
    for bullet in bullets:
        text = _bullet_text(bullet)
        if text is None:
            continue
        items.append(ActionItem(id=f"item-{index}-{len(items)}-{stamp}", text=text))

    return ActionSection(id=f"section-{index + 1}-{stamp}", title=title, items=items)


def normalize(raw_text: str, clock: Callable[[], float] = time.time) -> DistilledPlan:
    """Convert raw completion text into a DistilledPlan.

    Args:
        raw_text: Completion text, possibly wrapped in prose or code fences.
        clock: Wall-clock source for the id timestamp component.

    Returns:
        A plan with at least one section and at least one item.

    Raises:
        ResponseParseError: No JSON could be parsed. ``fallback`` holds the
            processing-error plan.
        InvalidResponseStructureError: The JSON has no ``sections`` list.
    """
    candidate = extract_json_text(raw_text)

    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError) as e:
        logger.error(
            "Failed to parse AI response as JSON",
            error=str(e),
            response_chars=len(raw_text),
        )
        raise ResponseParseError("Invalid response format", processing_error_plan()) from e

    sections = parsed.get("sections") if isinstance(parsed, dict) else None
    if not isinstance(sections, list):
        logger.error(
            "AI response missing sections list",
            parsed_type=type(parsed).__name__,
            sections_type=type(sections).__name__,
        )
        raise InvalidResponseStructureError("Invalid response structure")

    stamp = int(clock() * 1000)
    plan = DistilledPlan(
        sections=[_map_section(section, index, stamp) for index, section in enumerate(sections)]
    )

    if not plan.has_items():
        logger.warning("AI response produced no items, adding fallback section", sections=len(sections))
        plan.sections.append(empty_plan_section())

    return plan
