"""
Re-framing of Bedrock ConverseStream events as OpenAI chat completion chunks.

A stream goes through three states::

    START --first text delta--> STREAMING --messageStop--> DONE

The first text delta is sent together with ``role: assistant``. After
``messageStop`` the remaining events are only read for the ``metadata``
usage block, which becomes the optional trailing usage chunk. An error
event, or an exception while reading the next event, produces a single
error chunk and ends the stream.
"""

import asyncio
import enum
import logging
import time
from collections.abc import AsyncGenerator, AsyncIterable, AsyncIterator, Mapping
from typing import Any, Protocol

from bedrock_bridge.bedrock_types import TokenUsage
from bedrock_bridge.errors import BridgeError, translate_error, translate_stream_event
from bedrock_bridge.models import (
    ChatCompletionChunk,
    ChatCompletionStreamChoice,
    ChoiceDelta,
    ErrorDetail,
    FinishReason,
    StreamErrorChunk,
)
from bedrock_bridge.response import build_usage, map_finish_reason, new_completion_id
from bedrock_bridge.usage import estimate_tokens

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


class EventStream(Protocol):
    """A closable asynchronous sequence of ConverseStream events."""

    def __aiter__(self) -> AsyncIterator[Mapping[str, Any]]: ...

    async def aclose(self) -> None: ...


class StreamState(enum.Enum):
    START = "start"
    STREAMING = "streaming"
    DONE = "done"


class ChatStreamMapper:
    """
    Turns one ConverseStream into OpenAI chunks.

    Instances are single use: each request needs a fresh mapper.
    """

    def __init__(
        self,
        public_model: str,
        backend_model: str,
        include_usage: bool = False,
        prompt_tokens: int = 0,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        self.public_model = public_model
        self.backend_model = backend_model
        self.include_usage = include_usage
        self.prompt_tokens = prompt_tokens
        self.cancel_event = cancel_event

        self.completion_id = new_completion_id()
        self.created = int(time.time())
        self.state = StreamState.START
        self.completion_tokens = 0
        self.finish_reason: FinishReason | None = None
        self.reported_usage: TokenUsage | None = None
        self._started = False

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def stream(
        self, events: EventStream
    ) -> AsyncIterator[ChatCompletionChunk | StreamErrorChunk]:
        """
        Yield OpenAI chunks for each relevant backend event.

        Args:
            events: Backend event stream; it is closed when this generator
                finishes, fails or is cancelled

        Yields:
            Content chunks, one terminal chunk with a finish reason, an
            optional usage chunk, or a single error chunk
        """
        if self._started:
            raise RuntimeError("ChatStreamMapper instances cannot be reused")
        self._started = True

        iterator = events.__aiter__()
        try:
            while not self.cancelled:
                try:
                    event = await iterator.__anext__()
                    error = translate_stream_event(event)
                    chunk = None if error is not None else self._handle_event(event)
                except StopAsyncIteration:
                    break
                except Exception as e:
                    logger.error(f"Bedrock stream failed: {e}", exc_info=True)
                    yield self._error_chunk(translate_error(e))
                    return

                if error is not None:
                    logger.error(f"Bedrock stream error event: {error.message}")
                    yield self._error_chunk(error)
                    return

                if chunk is not None and not self.cancelled:
                    yield chunk

            if self.cancelled:
                logger.info(f"Stream {self.completion_id} cancelled by client")
                return

            if self.state is not StreamState.DONE:
                logger.warning(f"Bedrock stream {self.completion_id} ended without messageStop")
                yield self._finish("end_turn")

            if self.include_usage:
                yield self._usage_chunk()
        finally:
            await events.aclose()

    def _handle_event(self, event: Mapping[str, Any]) -> ChatCompletionChunk | None:
        if "contentBlockDelta" in event:
            delta = event["contentBlockDelta"].get("delta") or {}
            text = delta.get("text")
            if text is None or self.state is StreamState.DONE:
                return None
            return self._content_chunk(text)

        if "messageStop" in event:
            if self.state is StreamState.DONE:
                return None
            return self._finish(event["messageStop"].get("stopReason"))

        if "metadata" in event:
            usage = event["metadata"].get("usage")
            if usage:
                self.reported_usage = TokenUsage.model_validate(usage)
            return None

        # messageStart, contentBlockStart, contentBlockStop
        return None

    def _chunk(self, choices: list[ChatCompletionStreamChoice], **kwargs: Any) -> ChatCompletionChunk:
        return ChatCompletionChunk(
            id=self.completion_id,
            created=self.created,
            model=self.public_model,
            choices=choices,
            system_fingerprint=self.backend_model,
            **kwargs,
        )

    def _content_chunk(self, text: str) -> ChatCompletionChunk:
        self.completion_tokens += estimate_tokens(text)
        if self.state is StreamState.START:
            self.state = StreamState.STREAMING
            delta = ChoiceDelta(role="assistant", content=text)
        else:
            delta = ChoiceDelta(content=text)
        return self._chunk([ChatCompletionStreamChoice(delta=delta)])

    def _finish(self, stop_reason: str | None) -> ChatCompletionChunk:
        delta = ChoiceDelta(role="assistant") if self.state is StreamState.START else ChoiceDelta()
        self.state = StreamState.DONE
        self.finish_reason = map_finish_reason(stop_reason)
        return self._chunk(
            [ChatCompletionStreamChoice(delta=delta, finish_reason=self.finish_reason)]
        )

    def _usage_chunk(self) -> ChatCompletionChunk:
        usage = build_usage(self.reported_usage, self.prompt_tokens, self.completion_tokens)
        return self._chunk([], usage=usage)

    def _error_chunk(self, error: BridgeError) -> StreamErrorChunk:
        self.state = StreamState.DONE
        return StreamErrorChunk(
            id=self.completion_id,
            created=self.created,
            model=self.public_model,
            error=ErrorDetail(
                message=error.message,
                type="stream_error",
                code=error.code or error.error_type,
            ),
        )


async def encode_sse(
    chunks: AsyncIterable[ChatCompletionChunk | StreamErrorChunk],
    model: str = "",
) -> AsyncGenerator[str, None]:
    """
    Frame chunks as Server-Sent Events, always ending with ``[DONE]``.

    A failure escaping ``chunks`` is sent as one error frame before the
    terminator. ``chunks`` is closed when framing stops, including when the
    consumer closes this generator early.
    """
    try:
        async for chunk in chunks:
            yield f"data: {chunk.model_dump_json()}\n\n"
    except Exception as e:
        logger.error(f"Stream aborted: {e}", exc_info=True)
        error = translate_error(e)
        chunk = StreamErrorChunk(
            id=new_completion_id(),
            created=int(time.time()),
            model=model,
            error=ErrorDetail(
                message=error.message,
                type="stream_error",
                code=error.code or error.error_type,
            ),
        )
        yield f"data: {chunk.model_dump_json()}\n\n"
    finally:
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            await aclose()
    yield f"data: {DONE_SENTINEL}\n\n"
