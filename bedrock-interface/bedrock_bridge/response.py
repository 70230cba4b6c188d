import time
import uuid
from collections.abc import Mapping
from typing import Any

from bedrock_bridge.bedrock_types import ConverseOutput, TokenUsage
from bedrock_bridge.models import (
    AssistantMessage,
    ChatCompletionChoice,
    ChatCompletionResponse,
    FinishReason,
    Usage,
)
from bedrock_bridge.usage import estimate_tokens

# Bedrock stopReason -> OpenAI finish_reason
FINISH_REASON_MAPPING: Mapping[str, FinishReason] = {
    "end_turn": "stop",
    "max_tokens": "length",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "content_filter": "content_filter",
    "content_filtered": "content_filter",
    "guardrail_intervened": "content_filter",
}


def map_finish_reason(stop_reason: str | None) -> FinishReason:
    return FINISH_REASON_MAPPING.get(stop_reason or "", "stop")


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def build_usage(usage: TokenUsage | None, prompt_fallback: int, completion_fallback: int) -> Usage:
    """
    Combine reported token counts with estimates for whatever is missing.

    Args:
        usage: Counts reported by Bedrock, if any
        prompt_fallback: Estimated prompt tokens
        completion_fallback: Estimated completion tokens

    Returns:
        Usage in OpenAI format
    """
    usage = usage or TokenUsage()
    prompt_tokens = usage.input_tokens if usage.input_tokens is not None else prompt_fallback
    completion_tokens = (
        usage.output_tokens if usage.output_tokens is not None else completion_fallback
    )
    total_tokens = usage.total_tokens
    if total_tokens is None:
        total_tokens = prompt_tokens + completion_tokens
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


def map_response(
    output: ConverseOutput | Mapping[str, Any],
    public_model: str,
    backend_model: str,
) -> ChatCompletionResponse:
    """Convert a Converse response to an OpenAI chat completion."""
    if not isinstance(output, ConverseOutput):
        output = ConverseOutput.model_validate(dict(output))

    content = output.text
    # Without reported usage both counts fall back to the reply's word count
    estimate = estimate_tokens(content)

    return ChatCompletionResponse(
        id=new_completion_id(),
        created=int(time.time()),
        model=public_model,
        choices=[
            ChatCompletionChoice(
                index=0,
                message=AssistantMessage(content=content),
                finish_reason=map_finish_reason(output.stop_reason),
            )
        ],
        usage=build_usage(output.usage, estimate, estimate),
        system_fingerprint=backend_model,
    )
