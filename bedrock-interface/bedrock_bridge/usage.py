"""
Token accounting fallbacks.

Bedrock normally reports exact token counts. When it does not, counts are
approximated by whitespace-separated words. This is a rough estimate, not a
tokenizer, and it is only used where no reported figure exists.
"""

from collections.abc import Iterable

from bedrock_bridge.models import ChatMessage, TextContentPart


def estimate_tokens(text: str | None) -> int:
    """Approximate token count using word splitting."""
    if not text:
        return 0
    return len(text.split())


def _message_text(message: ChatMessage) -> str:
    if isinstance(message.content, str):
        return message.content
    if message.content is None:
        return ""
    return " ".join(
        part.text for part in message.content if isinstance(part, TextContentPart)
    )


def estimate_prompt_tokens(messages: Iterable[ChatMessage]) -> int:
    """Approximate the prompt size of a whole conversation."""
    return sum(estimate_tokens(_message_text(m)) for m in messages)
