"""Single entry point: pick the adapter for cfg.backend and forward the call."""

import logging
from pathlib import Path
from typing import Any, Callable, Mapping, TypeVar

from pydantic import BaseModel

from llm_dispatch.errors import MissingRequiredField, UnsupportedOperation
from llm_dispatch.events.journal import RefreshJournal
from llm_dispatch.llm.config import Backend, BackendConfig, parse_backend_config
from llm_dispatch.llm.credentials import (
    CredentialManager,
    KeyringCredentialStore,
    OAuthRefresher,
)
from llm_dispatch.llm.protocol import BackendAdapter, EmbeddingResult
from llm_dispatch.llm.providers import (
    CompatibleAdapter,
    ExecutionContext,
    HostedOpenAIAdapter,
    LlamaCppAdapter,
    OllamaAdapter,
    VertexAdapter,
)
from llm_dispatch.llm.registry import ModelRegistry, get_registry
from llm_dispatch.llm.transport import DEFAULT_TIMEOUT, ClientFactory, Transport
from llm_dispatch.llm.types import (
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    NormalizedResponse,
)
from llm_dispatch.secrets import get_secret
from llm_dispatch.settings import get_setting, llm_block

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)
ConfigInput = BackendConfig | Mapping[str, Any] | None


def _coerce(request: Any, model: type[R]) -> R:
    if isinstance(request, model):
        return request
    if isinstance(request, Mapping):
        return model.model_validate(dict(request))
    raise TypeError(f"expected {model.__name__} or mapping, got {type(request).__name__}")


class Dispatcher:
    """Routes completion, embedding and image requests to the configured backend.

    Call options on the request (model, api_key, bearer, endpoint,
    config_name) override the stored configuration for that call only.
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        credentials: CredentialManager | None = None,
        context: ExecutionContext | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        client_factory: ClientFactory | None = None,
        default_config: ConfigInput = None,
        journal: RefreshJournal | None = None,
    ) -> None:
        self._transport = Transport(client_factory, default_timeout)
        self._journal = journal
        self._registry = registry or get_registry()
        self.credentials = credentials or CredentialManager(
            KeyringCredentialStore(), OAuthRefresher(self._transport)
        )
        self._context = context or ExecutionContext()
        self.default_config = parse_backend_config(default_config) if default_config is not None else None
        self._adapters: dict[Backend, BackendAdapter] = {
            Backend.OPENAI: HostedOpenAIAdapter(self._registry, self._transport),
            Backend.OPENAI_COMPATIBLE: CompatibleAdapter(self._transport),
            Backend.OLLAMA: OllamaAdapter(self._transport),
            Backend.LLAMA_CPP: LlamaCppAdapter(self._context, default_timeout),
            Backend.VERTEX: VertexAdapter(self._transport, self.credentials),
        }

    @property
    def registry(self) -> ModelRegistry:
        return self._registry

    def _resolve(self, cfg: ConfigInput) -> tuple[BackendAdapter, BackendConfig]:
        if cfg is None:
            if self.default_config is None:
                raise MissingRequiredField("backend", "dispatch (no configuration given)")
            cfg = self.default_config
        config = parse_backend_config(cfg)
        return self._adapters[config.backend], config

    async def _sync_credentials(self, config: BackendConfig) -> None:
        # Pick up tokens refreshed by sibling worker processes
        if self._journal is not None and config.backend is Backend.VERTEX:
            await self.credentials.sync(self._journal)

    async def aclose(self) -> None:
        if self._journal is not None:
            await self._journal.close()

    async def get_completion(self, cfg: ConfigInput, request: CompletionRequest | Mapping[str, Any]) -> NormalizedResponse:
        req = _coerce(request, CompletionRequest)
        adapter, config = self._resolve(cfg)
        await self._sync_credentials(config)
        merged = config.with_overrides(req, "complete")
        logger.debug("complete via %s", config.backend.value)
        return await adapter.complete(merged, req)

    async def get_embedding(self, cfg: ConfigInput, request: EmbeddingRequest | Mapping[str, Any]) -> EmbeddingResult:
        req = _coerce(request, EmbeddingRequest)
        adapter, config = self._resolve(cfg)
        await self._sync_credentials(config)
        merged = config.with_overrides(req, "embed")
        logger.debug("embed via %s (%d inputs)", config.backend.value, len(req.inputs))
        return await adapter.embed(merged, req)

    async def generate_image(self, cfg: ConfigInput, request: ImageRequest | Mapping[str, Any]) -> dict[str, Any]:
        req = _coerce(request, ImageRequest)
        adapter, config = self._resolve(cfg)
        if not adapter.supports_images:
            raise UnsupportedOperation(
                f"Image generation is only available for backend {Backend.OPENAI.value!r} "
                f"(configured: {config.backend.value!r})"
            )
        merged = config.with_overrides(req, "image")
        return await adapter.generate_image(merged, req)

    @classmethod
    def from_settings(
        cls,
        settings: dict[str, Any],
        project_root: Path | None = None,
        secrets_getter: Callable[[str], str | None] = get_secret,
        client_factory: ClientFactory | None = None,
    ) -> "Dispatcher":
        """Dispatcher plus default backend config built from settings.yaml values."""
        root = project_root or Path.cwd()
        timeout = float(get_setting(settings, "llm.timeout", DEFAULT_TIMEOUT))
        journal_path = Path(get_setting(settings, "credentials.journal_path", "data/credential_journal.db"))
        if not journal_path.is_absolute():
            journal_path = root / journal_path
        journal = RefreshJournal(
            journal_path, busy_timeout=int(get_setting(settings, "credentials.busy_timeout", 5000))
        )
        transport = Transport(client_factory, timeout)
        credentials = CredentialManager(
            KeyringCredentialStore(journal),
            OAuthRefresher(transport),
            skew_sec=float(get_setting(settings, "credentials.refresh_skew_sec", 300)),
            journal=journal,
            lease_ttl=float(get_setting(settings, "credentials.lease_ttl_sec", 30)),
        )
        context = ExecutionContext(
            tenant=str(get_setting(settings, "host.tenant", "public")),
            root_tenant=str(get_setting(settings, "host.root_tenant", "public")),
        )
        return cls(
            credentials=credentials,
            context=context,
            default_timeout=timeout,
            client_factory=client_factory,
            default_config=llm_block(settings, secrets_getter),
            journal=journal,
        )
