"""Backend configuration variants.

One pydantic model per backend, discriminated on ``backend``. Each variant is
validated when constructed and knows how to apply call-time overrides without
mutating the stored configuration.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from llm_dispatch.errors import MissingRequiredField, UnsupportedBackend
from llm_dispatch.llm.types import CallOptions


class Backend(str, Enum):
    OPENAI = "openai"
    OPENAI_COMPATIBLE = "openai_compatible"
    OLLAMA = "ollama"
    LLAMA_CPP = "llama_cpp"
    VERTEX = "vertex"


# Labels used by the host configuration UI
BACKEND_ALIASES: dict[str, Backend] = {
    "OpenAI": Backend.OPENAI,
    "OpenAI-compatible API": Backend.OPENAI_COMPATIBLE,
    "Local Ollama": Backend.OLLAMA,
    "Local llama.cpp": Backend.LLAMA_CPP,
    "Google Vertex AI": Backend.VERTEX,
}

Purpose = Literal["complete", "embed", "image"]


class _BaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    def with_overrides(self, opts: CallOptions, purpose: Purpose = "complete") -> "_BaseConfig":
        return self


class OpenAIConfig(_BaseConfig):
    """Hosted metadata-driven backend."""

    backend: Literal[Backend.OPENAI] = Backend.OPENAI
    api_key: str | None = None
    # Sent as the Azure-style "api-key" header when set
    header_api_key: str | None = None
    base_url: str = "https://api.openai.com"
    model: str | None = None
    embed_model: str | None = "text-embedding-3-small"

    def with_overrides(self, opts: CallOptions, purpose: Purpose = "complete") -> "OpenAIConfig":
        update: dict[str, Any] = {}
        if opts.api_key:
            update["api_key"] = opts.api_key
            update["header_api_key"] = opts.api_key
        if opts.bearer:
            update["api_key"] = opts.bearer
        if opts.endpoint:
            update["base_url"] = opts.endpoint
        if opts.model:
            update["embed_model" if purpose == "embed" else "model"] = opts.model
        return self.model_copy(update=update)


class AlternateConfig(BaseModel):
    """Named alternative endpoint/model/credentials for the compatible backend."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    model: str | None = None
    endpoint: str | None = None
    bearer: str | None = Field(default=None, validation_alias=AliasChoices("bearer", "bearer_auth"))
    api_key: str | None = None


class CompatibleConfig(_BaseConfig):
    """Any server speaking the chat-completions protocol at a caller-given URL."""

    backend: Literal[Backend.OPENAI_COMPATIBLE] = Backend.OPENAI_COMPATIBLE
    endpoint: str | None = None
    embed_endpoint: str | None = None
    bearer: str | None = None
    api_key: str | None = None
    model: str | None = None
    embed_model: str | None = None
    temperature: float = 0.7
    alternates: tuple[AlternateConfig, ...] = ()

    def alternate(self, name: str) -> AlternateConfig:
        for alt in self.alternates:
            if alt.name == name:
                return alt
        raise MissingRequiredField(
            "config_name", f"alternate configuration {name!r} (not configured)"
        )

    def with_overrides(self, opts: CallOptions, purpose: Purpose = "complete") -> "CompatibleConfig":
        base = self
        if opts.config_name:
            alt = self.alternate(opts.config_name)
            base = self._apply(alt.endpoint, alt.bearer, alt.api_key, alt.model, purpose)
        return base._apply(opts.endpoint, opts.bearer or opts.api_key, opts.api_key, opts.model, purpose)

    def _apply(
        self,
        endpoint: str | None,
        bearer: str | None,
        api_key: str | None,
        model: str | None,
        purpose: Purpose,
    ) -> "CompatibleConfig":
        update: dict[str, Any] = {}
        if endpoint:
            update["embed_endpoint" if purpose == "embed" else "endpoint"] = endpoint
        if bearer:
            update["bearer"] = bearer
        if api_key:
            update["api_key"] = api_key
        if model:
            update["embed_model" if purpose == "embed" else "model"] = model
        return self.model_copy(update=update)


class OllamaConfig(_BaseConfig):
    """Local Ollama daemon."""

    backend: Literal[Backend.OLLAMA] = Backend.OLLAMA
    base_url: str = "http://127.0.0.1:11434"
    model: str | None = None
    embed_model: str | None = None
    # Route embeddings to an OpenAI-compatible embeddings URL instead of /api/embeddings
    embed_endpoint: str | None = None

    def with_overrides(self, opts: CallOptions, purpose: Purpose = "complete") -> "OllamaConfig":
        update: dict[str, Any] = {}
        if opts.endpoint:
            update["base_url"] = opts.endpoint
        if opts.model:
            update["embed_model" if purpose == "embed" else "model"] = opts.model
        return self.model_copy(update=update)


class LlamaCppConfig(_BaseConfig):
    """llama.cpp binary invoked once per request."""

    backend: Literal[Backend.LLAMA_CPP] = Backend.LLAMA_CPP
    llama_dir: str
    model_path: str
    executable: str = "./main"

    def with_overrides(self, opts: CallOptions, purpose: Purpose = "complete") -> "LlamaCppConfig":
        if opts.model:
            return self.model_copy(update={"model_path": opts.model})
        return self


class VertexConfig(_BaseConfig):
    """Google Vertex AI with OAuth2 user credentials."""

    backend: Literal[Backend.VERTEX] = Backend.VERTEX
    project_id: str
    region: str = "us-central1"
    model: str = "gemini-1.5-pro"
    embed_model: str = "text-embedding-005"
    client_id: str | None = None
    client_secret: str | None = None
    credential_key: str = "vertex_oauth"
    task_type: str = "RETRIEVAL_QUERY"
    temperature: float = 0.7

    @property
    def api_host(self) -> str:
        return f"https://{self.region}-aiplatform.googleapis.com"

    def model_url(self, model: str, method: str) -> str:
        return (
            f"{self.api_host}/v1/projects/{self.project_id}/locations/{self.region}"
            f"/publishers/google/models/{model}:{method}"
        )

    def with_overrides(self, opts: CallOptions, purpose: Purpose = "complete") -> "VertexConfig":
        if opts.model:
            key = "embed_model" if purpose == "embed" else "model"
            return self.model_copy(update={key: opts.model})
        return self


BackendConfig = Annotated[
    Union[OpenAIConfig, CompatibleConfig, OllamaConfig, LlamaCppConfig, VertexConfig],
    Field(discriminator="backend"),
]

_adapter: TypeAdapter[BackendConfig] = TypeAdapter(BackendConfig)


def normalize_backend(value: Any) -> Backend:
    """Map enum values and host display labels to Backend. Raises UnsupportedBackend."""
    if isinstance(value, Backend):
        return value
    if isinstance(value, str):
        if value in BACKEND_ALIASES:
            return BACKEND_ALIASES[value]
        try:
            return Backend(value)
        except ValueError:
            pass
    raise UnsupportedBackend(value, [b.value for b in Backend])


def parse_backend_config(data: Any) -> BackendConfig:
    """Validate a plain mapping into the matching config variant."""
    if isinstance(data, _BaseConfig):
        return data  # type: ignore[return-value]
    if not isinstance(data, dict):
        raise UnsupportedBackend(type(data).__name__, [b.value for b in Backend])
    payload = dict(data)
    payload["backend"] = normalize_backend(payload.get("backend"))
    try:
        return _adapter.validate_python(payload)
    except ValidationError as e:
        missing = [err["loc"][-1] for err in e.errors() if err["type"] == "missing"]
        if missing:
            raise MissingRequiredField(
                str(missing[0]), f"backend {payload['backend'].value!r}"
            ) from e
        raise
