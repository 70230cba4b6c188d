import logging

from bedrock_bridge.bedrock_types import BedrockPayload, InferenceConfig
from bedrock_bridge.config import settings
from bedrock_bridge.content import normalize_messages
from bedrock_bridge.errors import EmptyMessagesError
from bedrock_bridge.models import ChatCompletionRequest
from bedrock_bridge.registry import ModelKind, ModelRegistry, model_registry

logger = logging.getLogger(__name__)

# Bedrock rejects a temperature or top_p of exactly 0 on several model
# families and a top_p of exactly 1 on others.
TEMPERATURE_RANGE = (0.01, 1.0)
TOP_P_RANGE = (0.01, 0.99)
MAX_STOP_SEQUENCES = 4

JSON_MODE_INSTRUCTION = "Respond only with a valid JSON object."

# Public fields with no Converse counterpart; accepted and dropped
IGNORED_FIELDS = (
    "tools",
    "tool_choice",
    "logit_bias",
    "seed",
    "logprobs",
    "top_logprobs",
    "presence_penalty",
    "frequency_penalty",
    "user",
)


def _clamp(value: float, bounds: tuple[float, float]) -> float:
    low, high = bounds
    return min(max(value, low), high)


def build_stop_sequences(stop: str | list[str] | None) -> list[str] | None:
    """Flatten ``stop`` into at most four non-empty sequences, order preserved."""
    if stop is None:
        return None
    sequences = [stop] if isinstance(stop, str) else list(stop)
    sequences = [s for s in sequences if s]
    if len(sequences) > MAX_STOP_SEQUENCES:
        logger.debug(f"Truncating {len(sequences)} stop sequences to {MAX_STOP_SEQUENCES}")
    return sequences[:MAX_STOP_SEQUENCES] or None


def build_inference_config(request: ChatCompletionRequest) -> InferenceConfig:
    temperature = request.temperature
    if temperature is None:
        temperature = settings.default_temperature
    top_p = request.top_p
    if top_p is None:
        top_p = settings.default_top_p
    max_tokens = request.requested_max_tokens or settings.default_max_tokens

    return InferenceConfig(
        temperature=_clamp(temperature, TEMPERATURE_RANGE),
        top_p=_clamp(top_p, TOP_P_RANGE),
        max_tokens=min(max(max_tokens, 1), settings.max_tokens_limit),
        stop_sequences=build_stop_sequences(request.stop),
    )


def build_payload(
    request: ChatCompletionRequest,
    registry: ModelRegistry = model_registry,
) -> BedrockPayload:
    """
    Build the Converse request for an OpenAI chat completion request.

    Args:
        request: Validated chat completion request
        registry: Model id lookup

    Returns:
        Payload ready for ``converse`` / ``converse_stream``

    Raises:
        EmptyMessagesError: If the request has no messages
        UnknownModelError: If the model cannot be mapped to Bedrock
    """
    if not request.messages:
        raise EmptyMessagesError()

    model_id = registry.resolve(request.model, ModelKind.CHAT)

    ignored = [name for name in IGNORED_FIELDS if getattr(request, name) is not None]
    if ignored:
        logger.debug(f"Ignoring fields not supported by Bedrock: {', '.join(ignored)}")
    if request.n > 1:
        logger.warning(f"n={request.n} requested; Bedrock returns a single choice")

    system_suffix = None
    if request.response_format and request.response_format.type == "json_object":
        system_suffix = JSON_MODE_INSTRUCTION

    messages = normalize_messages(request.messages, system_suffix)
    if not messages:
        raise EmptyMessagesError()

    return BedrockPayload(
        model_id=model_id,
        messages=messages,
        inference_config=build_inference_config(request),
    )
