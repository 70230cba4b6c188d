import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from bedrock_bridge.models import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

RATE_LIMIT_CODES = frozenset({
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceQuotaExceededException",
})

PERMISSION_CODES = frozenset({
    "AccessDeniedException",
    "UnrecognizedClientException",
    "ExpiredTokenException",
    "InvalidSignatureException",
})

# Error members of the ConverseStream event union
STREAM_ERROR_EVENTS = (
    "internalServerException",
    "modelStreamErrorException",
    "validationException",
    "throttlingException",
    "serviceUnavailableException",
)


class BridgeError(Exception):
    """Base class for every error surfaced to API clients."""

    error_type = "api_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        param: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.param = param
        if status_code is not None:
            self.status_code = status_code

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=ErrorDetail(
                message=self.message,
                type=self.error_type,
                param=self.param,
                code=self.code,
            )
        )


class InvalidRequestError(BridgeError):
    error_type = "invalid_request_error"
    status_code = 400


class UnknownModelError(InvalidRequestError):
    """Raised when a model id is neither mapped nor a Bedrock model id."""

    def __init__(self, model: str, valid_models: Iterable[str] = ()) -> None:
        self.model = model
        self.valid_models = sorted(valid_models)
        message = f"The model '{model}' does not exist or is not supported."
        if self.valid_models:
            message += f" Available models: {', '.join(self.valid_models)}"
        super().__init__(message, code="model_not_found", param="model")


class EmptyMessagesError(InvalidRequestError):
    def __init__(self) -> None:
        super().__init__(
            "'messages' must contain at least one message.",
            code="empty_messages",
            param="messages",
        )


class AuthenticationError(InvalidRequestError):
    status_code = 401

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid_api_key")


class RateLimitError(BridgeError):
    error_type = "rate_limit_error"
    status_code = 429


class PermissionDeniedError(BridgeError):
    error_type = "permission_error"
    status_code = 403


class BackendError(BridgeError):
    error_type = "api_error"
    status_code = 502


class StreamError(BridgeError):
    """A failure after the first chunk was sent; only reported in-band."""

    error_type = "stream_error"


def _validation_param(loc: Sequence[Any]) -> str | None:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) or None


def _from_validation_errors(errors: Sequence[Mapping[str, Any]]) -> InvalidRequestError:
    if not errors:
        return InvalidRequestError("Invalid request body.")
    first = errors[0]
    param = _validation_param(first.get("loc", ()))
    message = first.get("msg", "Invalid value")
    if param:
        message = f"Invalid value for '{param}': {message}"
    return InvalidRequestError(message, code="invalid_value", param=param)


def _from_backend_code(code: str, message: str) -> BridgeError:
    text = f"Bedrock {code}: {message}" if message else f"Bedrock {code}"
    if code in RATE_LIMIT_CODES:
        return RateLimitError(text, code="rate_limit_exceeded")
    if code in PERMISSION_CODES:
        return PermissionDeniedError(text, code="access_denied")
    return BackendError(text, code=code)


def translate_error(exc: BaseException) -> BridgeError:
    """
    Classify any failure into the public error taxonomy.

    Args:
        exc: Exception raised while validating, building, calling Bedrock
            or mapping its response

    Returns:
        A BridgeError whose ``to_response()`` renders the public error body
    """
    if isinstance(exc, BridgeError):
        return exc
    if isinstance(exc, (ValidationError, RequestValidationError)):
        return _from_validation_errors(exc.errors())
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        return _from_backend_code(
            error.get("Code", "UnknownError"), error.get("Message", "")
        )
    if isinstance(exc, BotoCoreError):
        return BackendError(f"Bedrock transport error: {exc}", code="transport_error")

    logger.error(f"Unexpected error: {exc!r}", exc_info=exc)
    return BridgeError(f"Internal error: {type(exc).__name__}", code="internal_error")


def translate_stream_event(event: Mapping[str, Any]) -> BridgeError | None:
    """Return the error carried by a ConverseStream event, if any."""
    for name in STREAM_ERROR_EVENTS:
        if name in event:
            body = event[name] or {}
            code = name[0].upper() + name[1:]
            return _from_backend_code(code, body.get("message", ""))
    return None
