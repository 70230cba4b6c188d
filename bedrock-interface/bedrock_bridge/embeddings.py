"""Titan embeddings through ``InvokeModel``, one call per input."""

import asyncio
import base64
import json
import logging
import struct
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from bedrock_bridge.errors import InvalidRequestError
from bedrock_bridge.models import Embedding, EmbeddingResponse, EmbeddingUsage

logger = logging.getLogger(__name__)

# (model_id, json_body) -> parsed response body
InvokeFn = Callable[[str, str], Awaitable[dict[str, Any]]]


def build_embedding_body(text: str, dimensions: int | None = None) -> str:
    body: dict[str, Any] = {"inputText": text}
    if dimensions is not None:
        body["dimensions"] = dimensions
    return json.dumps(body)


def encode_embedding(vector: Sequence[float], encoding_format: str) -> list[float] | str:
    """Return the vector as floats or as base64 of little-endian float32."""
    if encoding_format == "base64":
        packed = struct.pack(f"<{len(vector)}f", *vector)
        return base64.b64encode(packed).decode("ascii")
    return list(vector)


async def embed_inputs(
    invoke: InvokeFn,
    public_model: str,
    backend_model: str,
    inputs: Sequence[str],
    dimensions: int | None = None,
    encoding_format: str = "float",
) -> EmbeddingResponse:
    """
    Embed every input concurrently and reassemble the results in input order.

    Args:
        invoke: Coroutine function performing one ``InvokeModel`` call
        public_model: Model id echoed back to the client
        backend_model: Bedrock embedding model id
        inputs: Texts to embed
        dimensions: Requested vector size, forwarded only when set
        encoding_format: ``float`` or ``base64``

    Returns:
        OpenAI-compatible embeddings response
    """
    if not inputs:
        raise InvalidRequestError("'input' must not be empty.", code="invalid_value", param="input")

    logger.info(f"Embedding {len(inputs)} input(s) with {backend_model}")
    results = await asyncio.gather(
        *(invoke(backend_model, build_embedding_body(text, dimensions)) for text in inputs)
    )

    data = []
    total_tokens = 0
    for index, result in enumerate(results):
        data.append(Embedding(
            index=index,
            embedding=encode_embedding(result.get("embedding") or [], encoding_format),
        ))
        total_tokens += result.get("inputTextTokenCount") or 0

    return EmbeddingResponse(
        model=public_model,
        data=data,
        usage=EmbeddingUsage(prompt_tokens=total_tokens, total_tokens=total_tokens),
    )
