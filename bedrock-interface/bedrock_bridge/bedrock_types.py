"""Request and response shapes of the Bedrock Runtime Converse API."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that serializes to the camelCase keys boto3 expects."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class TextBlock(CamelModel):
    text: str


class BedrockMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: list[TextBlock]

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content)


class InferenceConfig(CamelModel):
    temperature: float
    max_tokens: int
    top_p: float
    stop_sequences: list[str] | None = None


class BedrockPayload(CamelModel):
    model_id: str
    messages: list[BedrockMessage]
    inference_config: InferenceConfig

    def to_request(self) -> dict[str, Any]:
        """Keyword arguments for ``converse`` / ``converse_stream``."""
        return self.model_dump(by_alias=True, exclude_none=True)


class TokenUsage(CamelModel):
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None


class OutputContentBlock(CamelModel):
    text: str | None = None


class OutputMessage(CamelModel):
    role: str = "assistant"
    content: list[OutputContentBlock] = Field(default_factory=list)


class ConverseOutput(CamelModel):
    """
    The interesting part of a ``converse`` response.

    boto3 nests the message under ``output``; a flattened shape with the
    message at the top level is accepted as well.
    """
    message: OutputMessage | None = None
    stop_reason: str | None = None
    usage: TokenUsage | None = None

    @model_validator(mode="before")
    @classmethod
    def _lift_output(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("output"), dict):
            data = {**data, "message": data["output"].get("message")}
        return data

    @property
    def text(self) -> str:
        if self.message is None:
            return ""
        for block in self.message.content:
            if block.text is not None:
                return block.text
        return ""
