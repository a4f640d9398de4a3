"""Request, metadata and normalized response types shared by all backends."""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ModelCategory(str, Enum):
    CHAT = "chat"
    REASONING = "reasoning"
    EMBEDDING = "embedding"
    IMAGE = "image"
    AUDIO = "audio"
    COMPLETION = "completion"


class ModelMetadata(BaseModel):
    """Capability record for one hosted model. Immutable once loaded."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str
    category: ModelCategory
    supported_params: frozenset[str] = Field(default_factory=frozenset, alias="supportedParams")
    max_context_tokens: int | None = Field(default=None, alias="maxContextTokens")
    max_output_tokens: int | None = Field(default=None, alias="maxOutputTokens")
    reasoning_required: bool = Field(default=False, alias="reasoningRequired")
    endpoints: dict[str, str] = Field(default_factory=dict)
    description: str = ""
    post_parameters: dict[str, Any] | None = Field(default=None, alias="postParameters")
    # True when synthesized from the id instead of read from the catalog
    heuristic: bool = False

    @field_validator("category", mode="before")
    @classmethod
    def _legacy_category(cls, v: Any) -> Any:
        # Older catalogs call the reasoning category "inference"
        return "reasoning" if v == "inference" else v

    @field_validator("endpoints", mode="before")
    @classmethod
    def _none_endpoints(cls, v: Any) -> Any:
        return v or {}

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, v: Any) -> Any:
        return v or ""

    def endpoint(self, operation: str) -> str | None:
        return self.endpoints.get(operation)


Role = Literal["system", "developer", "user", "assistant", "tool"]


class ChatMessage(BaseModel):
    """One prior turn of chat history, in OpenAI wire shape."""

    model_config = ConfigDict(frozen=True, extra="allow")

    role: Role
    content: str | None = None
    tool_calls: list[dict[str, Any]] | None = None
    tool_call_id: str | None = None
    name: str | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ToolDeclaration(BaseModel):
    """Function the model may call. Accepts the OpenAI {"type": "function", "function": {...}} wrapper."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("function"), dict):
            return data["function"]
        return data


class CallOptions(BaseModel):
    """Per-call overrides and controls. Override fields win over stored config.

    Subclasses that name an ``extras_field`` accept flat request shapes: keys
    that are not fields are moved into that mapping (explicit entries in the
    mapping win). Other unknown keys are rejected.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, extra="forbid")
    extras_field: ClassVar[str | None] = None

    model: str | None = None
    api_key: str | None = None
    bearer: str | None = None
    endpoint: str | None = None
    config_name: str | None = None
    timeout: float | None = Field(default=None, gt=0)
    cancel: asyncio.Event | None = Field(default=None, exclude=True)
    debug: bool = False

    @model_validator(mode="before")
    @classmethod
    def _fold_extras(cls, data: Any) -> Any:
        if cls.extras_field is None or not isinstance(data, dict):
            return data
        extras = {k: v for k, v in data.items() if k not in cls.model_fields}
        if not extras:
            return data
        folded = {k: v for k, v in data.items() if k in cls.model_fields}
        folded[cls.extras_field] = {**extras, **(data.get(cls.extras_field) or {})}
        return folded


class CompletionRequest(CallOptions):
    extras_field: ClassVar[str | None] = "options"

    prompt: str = ""
    system_prompt: str | None = None
    chat: tuple[ChatMessage, ...] = ()
    tools: tuple[ToolDeclaration, ...] = ()
    tool_choice: str | dict[str, Any] | None = None
    temperature: float | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    stop: str | list[str] | None = None
    n: int | None = None
    store: bool | None = None
    response_format: dict[str, Any] | None = None
    # Free-form extra parameters, e.g. "reasoning.effort", "output_format", "seed"
    options: dict[str, Any] = Field(default_factory=dict)

    def sampling_options(self) -> dict[str, Any]:
        """Flat option map fed to whitelist merges. Named fields win over ``options``."""
        merged = {k: v for k, v in self.options.items() if v is not None}
        named = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "max_output_tokens": self.max_output_tokens,
            "stop": self.stop,
            "n": self.n,
            "store": self.store,
        }
        merged.update({k: v for k, v in named.items() if v is not None})
        return merged


class EmbeddingRequest(CallOptions):
    extras_field: ClassVar[str | None] = "options"

    input: str | list[str]
    options: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_batch(self) -> bool:
        return isinstance(self.input, list)

    @property
    def inputs(self) -> list[str]:
        return list(self.input) if isinstance(self.input, list) else [self.input]


class ImageRequest(CallOptions):
    extras_field: ClassVar[str | None] = "params"

    prompt: str = ""
    params: dict[str, Any] = Field(default_factory=dict)


# --- Normalized responses ---


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]

    def arguments_json(self) -> str:
        return json.dumps(self.arguments, ensure_ascii=False)

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json()},
        }


@dataclass(frozen=True)
class TextResponse:
    text: str
    kind: Literal["text"] = field(default="text", init=False)

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return ()

    def to_message(self) -> dict[str, Any]:
        return {"role": "assistant", "content": self.text}


@dataclass(frozen=True)
class ToolCallResponse:
    call: ToolCall
    kind: Literal["tool_call"] = field(default="tool_call", init=False)

    @property
    def name(self) -> str:
        return self.call.name

    @property
    def arguments(self) -> dict[str, Any]:
        return self.call.arguments

    @property
    def text(self) -> str:
        return ""

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return (self.call,)

    def to_message(self) -> dict[str, Any]:
        return {"role": "assistant", "content": None, "tool_calls": [self.call.to_wire()]}


@dataclass(frozen=True)
class MixedContent:
    text: str
    tool_calls: tuple[ToolCall, ...]
    kind: Literal["mixed"] = field(default="mixed", init=False)

    def to_message(self) -> dict[str, Any]:
        return {
            "role": "assistant",
            "content": self.text or None,
            "tool_calls": [c.to_wire() for c in self.tool_calls],
        }


NormalizedResponse = TextResponse | ToolCallResponse | MixedContent
