"""The official openai client talking to the bridge in-process."""

import httpx
import openai
import pytest
from openai import AsyncOpenAI

from bedrock_bridge.main import app, get_bedrock_client
from conftest import FakeBotoEventStream, converse_response, stream_events


@pytest.fixture
async def sdk(bedrock):
    app.dependency_overrides[get_bedrock_client] = lambda: bedrock
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://bridge") as http_client:
        yield AsyncOpenAI(api_key="brg_test", base_url="http://bridge/v1", http_client=http_client, max_retries=0)
    app.dependency_overrides.clear()


async def test_sdk_chat_completion(sdk, runtime):
    runtime.converse_result = converse_response("I am Claude.", stop_reason="end_turn")

    completion = await sdk.chat.completions.create(
        model="gpt-4o-mini",
        messages=[
            {"role": "system", "content": "You are a helpful assistant."},
            {"role": "user", "content": [{"type": "text", "text": "Who are you?"}]},
        ],
    )

    assert completion.choices[0].message.content == "I am Claude."
    assert completion.choices[0].finish_reason == "stop"
    assert completion.model == "gpt-4o-mini"
    assert completion.system_fingerprint == "us.anthropic.claude-3-5-haiku-20241022-v1:0"


async def test_sdk_streaming(sdk, runtime):
    runtime.stream = FakeBotoEventStream(
        stream_events("One", " two", usage={"inputTokens": 4, "outputTokens": 2, "totalTokens": 6})
    )

    stream = await sdk.chat.completions.create(
        model="claude-3-7-sonnet",
        messages=[{"role": "user", "content": "Count"}],
        stream=True,
        stream_options={"include_usage": True},
    )
    chunks = [chunk async for chunk in stream]

    text = "".join(c.choices[0].delta.content or "" for c in chunks if c.choices)
    assert text == "One two"
    assert chunks[0].choices[0].delta.role == "assistant"
    assert chunks[-1].usage.total_tokens == 6


async def test_sdk_unknown_model(sdk):
    with pytest.raises(openai.BadRequestError) as exc_info:
        await sdk.chat.completions.create(
            model="not-a-real-model",
            messages=[{"role": "user", "content": "hi"}],
        )
    assert exc_info.value.code == "model_not_found"
    assert exc_info.value.param == "model"


async def test_sdk_embeddings(sdk):
    result = await sdk.embeddings.create(model="text-embedding-3-small", input=["a", "bb"], encoding_format="float")

    assert [d.index for d in result.data] == [0, 1]
    assert result.data[1].embedding == [2.0, 0.5, -0.25]


async def test_sdk_models(sdk):
    page = await sdk.models.list()
    assert "gpt-4o" in [m.id for m in page.data]
