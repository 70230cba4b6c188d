"""
Flattening of OpenAI chat messages into Bedrock Converse messages.

Converse only knows ``user`` and ``assistant`` turns made of text blocks,
so system prompts, tool results and tool calls are all rewritten as text:

* system messages are joined, prefixed with ``System:`` and folded into
  the first emitted message
* ``tool`` / ``function`` results become assistant turns with an
  attribution prefix
* assistant tool calls are written out as ``name(arguments)`` lines
"""

import logging
from collections.abc import Sequence

from bedrock_bridge.bedrock_types import BedrockMessage, TextBlock
from bedrock_bridge.models import ChatMessage, ContentPart, FunctionCall, TextContentPart, ToolCall

logger = logging.getLogger(__name__)

SYSTEM_PREFIX = "System:"
NON_TEXT_PLACEHOLDER = "[non-text content omitted]"
PART_SEPARATOR = "\n\n"


def normalize_content(content: str | Sequence[ContentPart] | None) -> list[TextBlock]:
    """
    Convert message content into Converse text blocks.

    Args:
        content: Plain string or list of multimodal content parts

    Returns:
        A single-element list of text blocks
    """
    if content is None:
        return [TextBlock(text="")]
    if isinstance(content, str):
        return [TextBlock(text=content)]

    texts = [part.text for part in content if isinstance(part, TextContentPart)]
    dropped = len(content) - len(texts)
    if dropped:
        logger.debug(f"Dropped {dropped} non-text content part(s)")
    if not texts:
        return [TextBlock(text=NON_TEXT_PLACEHOLDER)]
    return [TextBlock(text=PART_SEPARATOR.join(texts))]


def serialize_tool_calls(
    tool_calls: Sequence[ToolCall] | None = None,
    function_call: FunctionCall | None = None,
) -> str:
    """Render tool calls as ``name(arguments)`` lines."""
    calls = [call.function for call in tool_calls or ()]
    if function_call is not None:
        calls.append(function_call)
    return "\n".join(f"{call.name}({call.arguments})" for call in calls)


def _tool_attribution(message: ChatMessage) -> str:
    source = message.tool_call_id or message.name
    return f"[tool result {source}]" if source else "[tool result]"


def _message_text(message: ChatMessage) -> str:
    text = "".join(block.text for block in normalize_content(message.content))

    if message.role in ("tool", "function"):
        return f"{_tool_attribution(message)} {text}"

    if message.role == "assistant":
        calls = serialize_tool_calls(message.tool_calls, message.function_call)
        if calls:
            return f"{text}\n{calls}" if text else calls

    return text


def build_system_prefix(messages: Sequence[ChatMessage], suffix: str | None = None) -> str | None:
    """Join every system message into a single ``System:`` prefix."""
    texts = [
        "".join(block.text for block in normalize_content(m.content))
        for m in messages
        if m.role == "system"
    ]
    if suffix:
        texts.append(suffix)
    if not texts:
        return None
    return f"{SYSTEM_PREFIX} {PART_SEPARATOR.join(texts)}"


def normalize_messages(
    messages: Sequence[ChatMessage],
    system_suffix: str | None = None,
) -> list[BedrockMessage]:
    """
    Convert an OpenAI conversation into Converse messages.

    Args:
        messages: Conversation in request order
        system_suffix: Extra instruction appended to the system prefix

    Returns:
        Converse messages with the system prefix folded into the first one
    """
    system_prefix = build_system_prefix(messages, system_suffix)

    converted: list[BedrockMessage] = []
    for message in messages:
        if message.role == "system":
            continue
        role = "user" if message.role == "user" else "assistant"
        converted.append(
            BedrockMessage(role=role, content=[TextBlock(text=_message_text(message))])
        )

    # Without a user turn, blank assistant turns would reach Bedrock as the
    # only content
    if not any(m.role == "user" for m in messages):
        converted = [m for m in converted if m.text]

    if system_prefix is None:
        return converted

    if not converted:
        return [BedrockMessage(role="user", content=[TextBlock(text=system_prefix)])]

    first = converted[0]
    folded = f"{system_prefix}{PART_SEPARATOR}{first.text}" if first.text else system_prefix
    converted[0] = BedrockMessage(role=first.role, content=[TextBlock(text=folded)])
    return converted
