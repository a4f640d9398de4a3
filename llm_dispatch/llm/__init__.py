"""Model catalog, request types, payload builders and backend adapters."""

from llm_dispatch.llm.config import (
    Backend,
    CompatibleConfig,
    LlamaCppConfig,
    OllamaConfig,
    OpenAIConfig,
    VertexConfig,
    parse_backend_config,
)
from llm_dispatch.llm.registry import ModelRegistry, get_registry
from llm_dispatch.llm.types import (
    ChatMessage,
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    MixedContent,
    ModelCategory,
    ModelMetadata,
    NormalizedResponse,
    TextResponse,
    ToolCall,
    ToolCallResponse,
    ToolDeclaration,
)

__all__ = [
    "Backend",
    "ChatMessage",
    "CompatibleConfig",
    "CompletionRequest",
    "EmbeddingRequest",
    "ImageRequest",
    "LlamaCppConfig",
    "MixedContent",
    "ModelCategory",
    "ModelMetadata",
    "ModelRegistry",
    "NormalizedResponse",
    "OllamaConfig",
    "OpenAIConfig",
    "TextResponse",
    "ToolCall",
    "ToolCallResponse",
    "ToolDeclaration",
    "VertexConfig",
    "get_registry",
    "parse_backend_config",
]
