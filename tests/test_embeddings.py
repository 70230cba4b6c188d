import asyncio
import base64
import json
import struct

import pytest

from bedrock_bridge.embeddings import build_embedding_body, embed_inputs, encode_embedding
from bedrock_bridge.errors import InvalidRequestError, UnknownModelError
from bedrock_bridge.models import EmbeddingRequest


async def test_results_keep_input_order():
    finished = []

    async def invoke(model_id, body):
        text = json.loads(body)["inputText"]
        # Later inputs finish first
        await asyncio.sleep(0.01 * (3 - int(text)))
        finished.append(text)
        return {"embedding": [float(text)], "inputTextTokenCount": 1}

    response = await embed_inputs(invoke, "text-embedding-3-small", "amazon.titan-embed-text-v1", ["0", "1", "2"])

    assert finished == ["2", "1", "0"]
    assert [d.index for d in response.data] == [0, 1, 2]
    assert [d.embedding for d in response.data] == [[0.0], [1.0], [2.0]]
    assert response.usage.prompt_tokens == 3
    assert response.usage.total_tokens == 3
    assert response.model == "text-embedding-3-small"


def test_dimensions_are_forwarded_only_when_set():
    assert json.loads(build_embedding_body("hi")) == {"inputText": "hi"}
    assert json.loads(build_embedding_body("hi", 256)) == {"inputText": "hi", "dimensions": 256}


def test_base64_encoding_packs_float32():
    encoded = encode_embedding([1.0, -0.5, 0.25], "base64")

    assert struct.unpack("<3f", base64.b64decode(encoded)) == (1.0, -0.5, 0.25)
    assert encode_embedding((1.0, 2.0), "float") == [1.0, 2.0]


async def test_empty_input_is_rejected():
    async def invoke(model_id, body):
        raise AssertionError("should not be called")

    with pytest.raises(InvalidRequestError):
        await embed_inputs(invoke, "m", "amazon.titan-embed-text-v1", [])


async def test_client_invokes_once_per_input(bedrock, runtime):
    request = EmbeddingRequest(model="text-embedding-3-large", input=["a b", "c"], dimensions=512)

    response = await bedrock.create_embeddings(request)

    assert len(runtime.invoke_calls) == 2
    assert {c["modelId"] for c in runtime.invoke_calls} == {"amazon.titan-embed-text-v2:0"}
    assert json.loads(runtime.invoke_calls[0]["body"])["dimensions"] == 512
    assert response.data[0].embedding == [3.0, 0.5, -0.25]
    assert response.usage.total_tokens == 3


async def test_single_string_input(bedrock, runtime):
    response = await bedrock.create_embeddings(
        EmbeddingRequest(model="text-embedding-ada-002", input="hello")
    )

    assert len(response.data) == 1
    assert runtime.invoke_calls[0]["modelId"] == "amazon.titan-embed-text-v1"


async def test_chat_model_is_not_an_embedding_model(bedrock, runtime):
    with pytest.raises(UnknownModelError):
        await bedrock.create_embeddings(EmbeddingRequest(model="gpt-4o", input="hello"))
    assert runtime.invoke_calls == []
