import asyncio
import io
import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from bedrock_bridge.bedrock_client import BedrockClient
from bedrock_bridge.main import app, get_bedrock_client


def converse_response(
    text: str = "Hello there",
    stop_reason: str = "end_turn",
    usage: dict[str, int] | None = None,
) -> dict[str, Any]:
    """A ``converse`` response as returned by boto3."""
    return {
        "output": {"message": {"role": "assistant", "content": [{"text": text}]}},
        "stopReason": stop_reason,
        "usage": usage or {"inputTokens": 10, "outputTokens": 2, "totalTokens": 12},
        "metrics": {"latencyMs": 120},
    }


def stream_events(*texts: str, stop_reason: str = "end_turn", usage: dict[str, int] | None = None):
    """A well-formed ConverseStream event sequence."""
    events: list[dict[str, Any]] = [{"messageStart": {"role": "assistant"}}]
    events.append({"contentBlockStart": {"start": {}, "contentBlockIndex": 0}})
    for text in texts:
        events.append({"contentBlockDelta": {"delta": {"text": text}, "contentBlockIndex": 0}})
    events.append({"contentBlockStop": {"contentBlockIndex": 0}})
    events.append({"messageStop": {"stopReason": stop_reason}})
    if usage is not None:
        events.append({"metadata": {"usage": usage, "metrics": {"latencyMs": 80}}})
    return events


class FakeBotoEventStream:
    """Stand-in for botocore's blocking EventStream."""

    def __init__(self, events, error_at: int | None = None, error: Exception | None = None):
        self.events = list(events)
        self.error_at = error_at
        self.error = error
        self.closed = False

    def __iter__(self):
        for index, event in enumerate(self.events):
            if index == self.error_at:
                raise self.error
            yield event

    def close(self):
        self.closed = True


class FakeEvents:
    """Async event source recording how far it was consumed."""

    def __init__(self, events, error_at: int | None = None, error: Exception | None = None):
        self.events = list(events)
        self.error_at = error_at
        self.error = error
        self.pulled = 0
        self.closed = False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.pulled == self.error_at:
            self.pulled += 1
            raise self.error
        if self.pulled >= len(self.events):
            raise StopAsyncIteration
        event = self.events[self.pulled]
        self.pulled += 1
        await asyncio.sleep(0)
        return event

    async def aclose(self):
        self.closed = True


class FakeRuntime:
    """Records calls made to the bedrock-runtime client."""

    def __init__(self):
        self.converse_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.invoke_calls: list[dict[str, Any]] = []
        self.converse_result: dict[str, Any] | Exception = converse_response()
        self.stream: FakeBotoEventStream | Exception = FakeBotoEventStream(
            stream_events("Hello", " world", usage={"inputTokens": 7, "outputTokens": 2, "totalTokens": 9})
        )

    def converse(self, **kwargs):
        self.converse_calls.append(kwargs)
        if isinstance(self.converse_result, Exception):
            raise self.converse_result
        return self.converse_result

    def converse_stream(self, **kwargs):
        self.stream_calls.append(kwargs)
        if isinstance(self.stream, Exception):
            raise self.stream
        return {"stream": self.stream}

    def invoke_model(self, **kwargs):
        self.invoke_calls.append(kwargs)
        body = json.loads(kwargs["body"])
        vector = [float(len(body["inputText"])), 0.5, -0.25]
        payload = {"embedding": vector, "inputTextTokenCount": len(body["inputText"].split())}
        return {"body": io.BytesIO(json.dumps(payload).encode())}


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def bedrock(runtime):
    return BedrockClient(runtime=runtime)


@pytest.fixture
def api_client(bedrock):
    app.dependency_overrides[get_bedrock_client] = lambda: bedrock
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
