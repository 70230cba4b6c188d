import asyncio
import json
import logging
from collections.abc import AsyncGenerator, AsyncIterator, Iterable
from typing import Any

import boto3
from botocore.config import Config

from bedrock_bridge.config import settings
from bedrock_bridge.embeddings import embed_inputs
from bedrock_bridge.errors import BridgeError, translate_error
from bedrock_bridge.models import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelInfo,
    StreamErrorChunk,
)
from bedrock_bridge.payload import build_payload
from bedrock_bridge.registry import ModelKind, ModelRegistry, model_registry
from bedrock_bridge.response import map_response
from bedrock_bridge.streaming import ChatStreamMapper, encode_sse
from bedrock_bridge.usage import estimate_prompt_tokens

logger = logging.getLogger(__name__)

_END = object()


class BedrockEventStream:
    """Async view over the blocking botocore ``EventStream``."""

    def __init__(self, stream: Iterable[dict[str, Any]]) -> None:
        self._stream = stream
        self._iterator = iter(stream)
        self.closed = False

    def __aiter__(self) -> "BedrockEventStream":
        return self

    async def __anext__(self) -> dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        event = await asyncio.to_thread(next, self._iterator, _END)
        if event is _END:
            raise StopAsyncIteration
        return event

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        close = getattr(self._stream, "close", None)
        if close is not None:
            await asyncio.to_thread(close)


class BedrockClient:
    """Client for the Bedrock Runtime API exposing OpenAI-shaped results."""

    def __init__(self, runtime: Any = None, registry: ModelRegistry = model_registry) -> None:
        self._runtime = runtime
        self.registry = registry

    @property
    def runtime(self) -> Any:
        """The boto3 ``bedrock-runtime`` client, created on first use."""
        if self._runtime is None:
            self._runtime = self._create_runtime()
        return self._runtime

    @staticmethod
    def _create_runtime() -> Any:
        session = boto3.Session(
            profile_name=settings.aws_profile,
            region_name=settings.aws_region,
            aws_access_key_id=(
                settings.aws_access_key_id.get_secret_value()
                if settings.aws_access_key_id else None
            ),
            aws_secret_access_key=(
                settings.aws_secret_access_key.get_secret_value()
                if settings.aws_secret_access_key else None
            ),
        )
        config = Config(
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        logger.info(f"Creating bedrock-runtime client in {settings.aws_region}")
        return session.client(
            "bedrock-runtime",
            endpoint_url=settings.bedrock_endpoint_url,
            config=config,
        )

    async def list_models(self) -> list[ModelInfo]:
        """
        List the public model ids served through Bedrock.

        Returns:
            List of ModelInfo objects in OpenAI-compatible format
        """
        return self.registry.list_models()

    async def get_model(self, model_id: str) -> ModelInfo:
        return self.registry.get_model(model_id)

    async def create_completion(
        self,
        request: ChatCompletionRequest
    ) -> ChatCompletionResponse:
        """Create a non-streaming chat completion."""
        payload = build_payload(request, self.registry)
        logger.debug(
            f"Converse request: model={payload.model_id}, messages={len(payload.messages)}"
        )
        try:
            response = await asyncio.to_thread(self.runtime.converse, **payload.to_request())
        except Exception as e:
            logger.error(f"Error creating Bedrock completion: {e}", exc_info=True)
            raise translate_error(e) from e

        return map_response(response, request.model, payload.model_id)

    async def open_chunk_stream(
        self,
        request: ChatCompletionRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[ChatCompletionChunk | StreamErrorChunk]:
        """
        Start a ConverseStream call and return its chunk iterator.

        Request validation and the initial call happen here, so failures
        surface before any chunk is produced.
        """
        payload = build_payload(request, self.registry)
        logger.debug(
            f"ConverseStream request: model={payload.model_id}, messages={len(payload.messages)}"
        )
        try:
            response = await asyncio.to_thread(
                self.runtime.converse_stream, **payload.to_request()
            )
        except Exception as e:
            logger.error(f"Error starting Bedrock stream: {e}", exc_info=True)
            raise translate_error(e) from e

        mapper = ChatStreamMapper(
            public_model=request.model,
            backend_model=payload.model_id,
            include_usage=request.include_usage,
            prompt_tokens=estimate_prompt_tokens(request.messages),
            cancel_event=cancel_event,
        )
        return mapper.stream(BedrockEventStream(response["stream"]))

    async def create_stream_completion(
        self,
        request: ChatCompletionRequest,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncGenerator[str, None]:
        """Create a streaming chat completion framed as Server-Sent Events."""
        chunks = await self.open_chunk_stream(request, cancel_event)
        return encode_sse(chunks, model=request.model)

    async def _invoke_embedding(self, model_id: str, body: str) -> dict[str, Any]:
        response = await asyncio.to_thread(
            self.runtime.invoke_model,
            modelId=model_id,
            body=body,
            contentType="application/json",
            accept="application/json",
        )
        return json.loads(response["body"].read())

    async def create_embeddings(self, request: EmbeddingRequest) -> EmbeddingResponse:
        """Create embeddings, one InvokeModel call per input."""
        model_id = self.registry.resolve(request.model, ModelKind.EMBEDDING)
        try:
            return await embed_inputs(
                self._invoke_embedding,
                public_model=request.model,
                backend_model=model_id,
                inputs=request.inputs,
                dimensions=request.dimensions,
                encoding_format=request.encoding_format,
            )
        except BridgeError:
            raise
        except Exception as e:
            logger.error(f"Error creating Bedrock embeddings: {e}", exc_info=True)
            raise translate_error(e) from e


# Global client instance
bedrock_client = BedrockClient()
