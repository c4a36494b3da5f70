"""Distillation pipeline: prompt -> completion -> normalized plan."""

import structlog

from brainstormer_api.models import DistilledPlan
from brainstormer_api.normalizer import normalize
from brainstormer_api.observability import log_llm_request, log_llm_response
from brainstormer_api.openai_client import OpenAIClient
from brainstormer_api.prompts import build_prompt

logger = structlog.get_logger()


async def distill(text: str, client: OpenAIClient) -> DistilledPlan:
    """Turn validated brain-dump text into a DistilledPlan.

    Single-shot: nothing is retried. Completion errors (OpenAIError and
    subclasses) and normalizer errors propagate to the caller.
    """
    system_prompt, user_prompt = build_prompt(text)
    request_log = log_llm_request(
        model=client.model,
        system_prompt=system_prompt,
        user_prompt=user_prompt,
        text=text,
    )

    try:
        result = await client.complete(system_prompt, user_prompt)
    except Exception as e:
        log_llm_response(request_log=request_log, error=str(e))
        raise

    log_llm_response(
        request_log=request_log,
        tokens_prompt=result.prompt_tokens,
        tokens_completion=result.completion_tokens,
        tokens_total=result.tokens_used,
        finish_reason=result.finish_reason or "stop",
    )

    plan = normalize(result.content)
    logger.info(
        "Distillation completed",
        sections=len(plan.sections),
        items=sum(len(section.items) for section in plan.sections),
    )
    return plan
