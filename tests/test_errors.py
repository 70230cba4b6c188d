import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, ReadTimeoutError
from pydantic import ValidationError

from bedrock_bridge.errors import (
    BackendError,
    BridgeError,
    EmptyMessagesError,
    PermissionDeniedError,
    RateLimitError,
    UnknownModelError,
    translate_error,
    translate_stream_event,
)
from bedrock_bridge.models import ChatCompletionRequest


def client_error(code, message="details", operation="Converse"):
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@pytest.mark.parametrize(
    "code,error_class,error_type,status",
    [
        ("ThrottlingException", RateLimitError, "rate_limit_error", 429),
        ("ServiceQuotaExceededException", RateLimitError, "rate_limit_error", 429),
        ("AccessDeniedException", PermissionDeniedError, "permission_error", 403),
        ("UnrecognizedClientException", PermissionDeniedError, "permission_error", 403),
        ("ValidationException", BackendError, "api_error", 502),
        ("ModelNotReadyException", BackendError, "api_error", 502),
        ("InternalServerException", BackendError, "api_error", 502),
    ],
)
def test_client_errors_are_classified(code, error_class, error_type, status):
    error = translate_error(client_error(code))

    assert isinstance(error, error_class)
    assert error.error_type == error_type
    assert error.status_code == status
    assert error.message == f"Bedrock {code}: details"


def test_transport_errors_are_api_errors():
    connect = translate_error(EndpointConnectionError(endpoint_url="https://bedrock.invalid"))
    timeout = translate_error(ReadTimeoutError(endpoint_url="https://bedrock.invalid"))

    for error in (connect, timeout):
        assert isinstance(error, BackendError)
        assert error.error_type == "api_error"
        assert error.code == "transport_error"
        assert error.message.startswith("Bedrock transport error: ")


def test_validation_errors_are_invalid_requests():
    with pytest.raises(ValidationError) as exc_info:
        ChatCompletionRequest(model="gpt-4o", messages=[], temperature=3)

    error = translate_error(exc_info.value)

    assert error.error_type == "invalid_request_error"
    assert error.status_code == 400
    assert error.param == "temperature"


def test_unknown_model_error_body():
    body = translate_error(UnknownModelError("not-a-real-model", ["gpt-4o"])).to_response()

    assert body.error.type == "invalid_request_error"
    assert body.error.code == "model_not_found"
    assert body.error.param == "model"
    assert "not-a-real-model" in body.error.message
    assert "gpt-4o" in body.error.message


def test_bridge_errors_pass_through_unchanged():
    error = EmptyMessagesError()
    assert translate_error(error) is error


def test_unexpected_errors_do_not_leak_text():
    error = translate_error(RuntimeError("arn:aws:iam::123456789012:role/internal"))

    assert type(error) is BridgeError
    assert error.error_type == "api_error"
    assert error.status_code == 500
    assert error.message == "Internal error: RuntimeError"


def test_stream_error_events():
    error = translate_stream_event({"throttlingException": {"message": "busy"}})
    assert isinstance(error, RateLimitError)
    assert error.message == "Bedrock ThrottlingException: busy"

    error = translate_stream_event({"internalServerException": {}})
    assert isinstance(error, BackendError)
    assert error.message == "Bedrock InternalServerException"

    assert translate_stream_event({"contentBlockDelta": {"delta": {"text": "x"}}}) is None
