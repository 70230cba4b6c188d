import enum
import logging
import time
from collections.abc import Mapping
from types import MappingProxyType

from bedrock_bridge.errors import UnknownModelError
from bedrock_bridge.models import ModelInfo, ModelPermission

logger = logging.getLogger(__name__)


class ModelKind(str, enum.Enum):
    CHAT = "chat"
    EMBEDDING = "embedding"


# OpenAI model id -> Bedrock model id (or cross-region inference profile)
CHAT_MODEL_MAPPING: Mapping[str, str] = MappingProxyType({
    "gpt-4o": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
    "gpt-4o-mini": "us.anthropic.claude-3-5-haiku-20241022-v1:0",
    "gpt-4": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
    "gpt-4-32k": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
    "gpt-4-turbo": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
    "gpt-4-turbo-preview": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
    "gpt-3.5-turbo": "us.anthropic.claude-3-5-haiku-20241022-v1:0",
    "claude-3-5-sonnet-v2": "us.anthropic.claude-3-5-sonnet-20241022-v2:0",
    "claude-3-5-haiku": "us.anthropic.claude-3-5-haiku-20241022-v1:0",
    "claude-3-7-sonnet": "us.anthropic.claude-3-7-sonnet-20250219-v1:0",
    "claude-sonnet-4-20250514": "us.anthropic.claude-sonnet-4-20250514-v1:0",
    "claude-opus-4-20250514": "us.anthropic.claude-opus-4-20250514-v1:0",
})

EMBEDDING_MODEL_MAPPING: Mapping[str, str] = MappingProxyType({
    "text-embedding-ada-002": "amazon.titan-embed-text-v1",
    "text-embedding-3-small": "amazon.titan-embed-text-v1",
    "text-embedding-3-large": "amazon.titan-embed-text-v2:0",
})

# Bedrock model ids look like "<provider>.<model>", optionally behind an
# inference profile region such as "us." or "global."
BEDROCK_PROVIDERS = (
    "anthropic",
    "amazon",
    "meta",
    "mistral",
    "cohere",
    "ai21",
    "deepseek",
    "writer",
    "stability",
)
INFERENCE_PROFILE_REGIONS = ("us", "eu", "apac", "global")

# Foundation models, inference profiles and provisioned throughput can also be
# addressed by ARN
BEDROCK_ARN_PREFIX = "arn:aws:bedrock:"


def is_backend_model_id(model_id: str) -> bool:
    """Whether ``model_id`` already follows Bedrock's model naming."""
    if model_id.startswith(BEDROCK_ARN_PREFIX):
        return len(model_id.split(":", 5)) == 6 and "/" in model_id
    head, _, rest = model_id.partition(".")
    if head in INFERENCE_PROFILE_REGIONS:
        head, _, rest = rest.partition(".")
    return head in BEDROCK_PROVIDERS and bool(rest)


class ModelRegistry:
    """Read-only lookup from public model ids to Bedrock model ids."""

    def __init__(
        self,
        chat: Mapping[str, str] = CHAT_MODEL_MAPPING,
        embedding: Mapping[str, str] = EMBEDDING_MODEL_MAPPING,
    ) -> None:
        overlap = set(chat) & set(embedding)
        if overlap:
            raise ValueError(f"Model ids mapped as both chat and embedding: {sorted(overlap)}")
        self._tables: Mapping[ModelKind, Mapping[str, str]] = MappingProxyType({
            ModelKind.CHAT: MappingProxyType(dict(chat)),
            ModelKind.EMBEDDING: MappingProxyType(dict(embedding)),
        })

    def table(self, kind: ModelKind) -> Mapping[str, str]:
        return self._tables[kind]

    def resolve(self, public_id: str, kind: ModelKind = ModelKind.CHAT) -> str:
        """
        Map a public model id to the Bedrock model id to call.

        Args:
            public_id: Model id sent by the client
            kind: Which table to look in

        Returns:
            The mapped Bedrock id, or ``public_id`` itself when it is
            already a Bedrock model id

        Raises:
            UnknownModelError: If the id is neither mapped nor a Bedrock id
        """
        table = self._tables[kind]
        backend_id = table.get(public_id)
        if backend_id is not None:
            logger.debug(f"Mapped {kind.value} model {public_id} -> {backend_id}")
            return backend_id
        if is_backend_model_id(public_id):
            logger.debug(f"Passing through Bedrock model id {public_id}")
            return public_id
        raise UnknownModelError(public_id, table.keys())

    def list_models(self) -> list[ModelInfo]:
        """
        Return every public model id in OpenAI model-listing format.

        Returns:
            Chat models followed by embedding models
        """
        created = int(time.time())
        return [
            self._model_info(model_id, created)
            for kind in ModelKind
            for model_id in self._tables[kind]
        ]

    def get_model(self, model_id: str) -> ModelInfo:
        for kind in ModelKind:
            if model_id in self._tables[kind]:
                return self._model_info(model_id, int(time.time()))
        known = [m for kind in ModelKind for m in self._tables[kind]]
        raise UnknownModelError(model_id, known)

    @staticmethod
    def _model_info(model_id: str, created: int) -> ModelInfo:
        return ModelInfo(
            id=model_id,
            created=created,
            owned_by="bedrock",
            root=model_id,
            permission=[
                ModelPermission(id=f"modelperm-{model_id}-{created}", created=created)
            ],
        )


# Global registry instance
model_registry = ModelRegistry()
