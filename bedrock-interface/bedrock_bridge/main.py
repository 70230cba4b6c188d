import asyncio
import logging
from collections.abc import AsyncGenerator, AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from bedrock_bridge.auth import BearerTokenMiddleware, parse_api_keys
from bedrock_bridge.bedrock_client import BedrockClient, bedrock_client
from bedrock_bridge.config import settings
from bedrock_bridge.errors import BridgeError, UnknownModelError, translate_error
from bedrock_bridge.models import (
    ChatCompletionRequest,
    ChatCompletionResponse,
    EmbeddingRequest,
    EmbeddingResponse,
    ModelInfo,
    ModelsResponse,
)

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="OpenAI to Amazon Bedrock API Bridge",
    description="OpenAI-compatible API backed by the Bedrock Converse API",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add bearer token authentication middleware
valid_tokens = parse_api_keys(settings.api_keys)
if valid_tokens:
    app.add_middleware(BearerTokenMiddleware, valid_tokens=valid_tokens)
    logger.info(f"Bearer token authentication enabled with {len(valid_tokens)} valid tokens")
else:
    logger.warning("No API keys configured - authentication is DISABLED")


def get_bedrock_client() -> BedrockClient:
    return bedrock_client


def _error_response(error: BridgeError, status_code: int | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code or error.status_code,
        content=error.to_response().model_dump(),
    )


@app.exception_handler(BridgeError)
async def bridge_error_handler(request: Request, exc: BridgeError) -> JSONResponse:
    logger.warning(f"{request.url.path} failed: {exc.error_type}: {exc.message}")
    return _error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = translate_error(exc)
    logger.warning(f"Invalid request to {request.url.path}: {error.message}")
    return _error_response(error)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return _error_response(translate_error(exc))


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with API information."""
    return {
        "message": "OpenAI to Amazon Bedrock API Bridge",
        "docs": "/docs",
        "models": "/v1/models"
    }


@app.get("/v1/models")
async def list_models(client: BedrockClient = Depends(get_bedrock_client)) -> ModelsResponse:
    """List the OpenAI model ids served through Bedrock."""
    models = await client.list_models()
    logger.info(f"Listing {len(models)} models")
    return ModelsResponse(data=models)


@app.get("/v1/models/{model_id}", response_model=None)
async def get_model(
    model_id: str,
    client: BedrockClient = Depends(get_bedrock_client),
) -> ModelInfo | JSONResponse:
    """Get a specific model by ID in OpenAI format."""
    try:
        return await client.get_model(model_id)
    except UnknownModelError as e:
        logger.warning(f"Model {model_id} not found")
        return _error_response(e, status_code=404)


async def _forward_until_disconnect(
    request: Request,
    frames: AsyncGenerator[str, None],
    cancel_event: asyncio.Event,
) -> AsyncIterator[str]:
    try:
        async for frame in frames:
            if await request.is_disconnected():
                logger.info("Client disconnected, cancelling stream")
                cancel_event.set()
                break
            yield frame
    finally:
        await frames.aclose()


@app.post("/v1/chat/completions", response_model=None)
async def create_chat_completion(
    request: ChatCompletionRequest,
    http_request: Request,
    client: BedrockClient = Depends(get_bedrock_client),
) -> ChatCompletionResponse | StreamingResponse:
    """
    Create a chat completion through Bedrock Converse.

    Supports both streaming and non-streaming responses.
    """
    logger.info(
        f"Chat completion request: model={request.model}, "
        f"messages={len(request.messages)}, stream={request.stream}"
    )

    if request.stream:
        cancel_event = asyncio.Event()
        frames = await client.create_stream_completion(request, cancel_event)
        return StreamingResponse(
            _forward_until_disconnect(http_request, frames, cancel_event),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    response = await client.create_completion(request)
    logger.info(
        f"Completion successful: tokens={response.usage.total_tokens}, "
        f"finish_reason={response.choices[0].finish_reason}"
    )
    return response


@app.post("/v1/embeddings")
async def create_embeddings(
    request: EmbeddingRequest,
    client: BedrockClient = Depends(get_bedrock_client),
) -> EmbeddingResponse:
    """Create embeddings through Bedrock InvokeModel."""
    logger.info(f"Embeddings request: model={request.model}, inputs={len(request.inputs)}")
    return await client.create_embeddings(request)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bedrock_bridge.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level
    )
