"""Hosted OpenAI adapter driven by catalog metadata."""

import logging
from typing import Any

from llm_dispatch.errors import MissingRequiredField, UnknownModel, UnsupportedOperation
from llm_dispatch.llm.config import OpenAIConfig
from llm_dispatch.llm.normalize import (
    extract_embeddings,
    normalize_chat_completion,
    normalize_responses,
)
from llm_dispatch.llm.payloads import (
    build_chat_payload,
    build_image_payload,
    build_responses_payload,
    pick_params,
)
from llm_dispatch.llm.protocol import EmbeddingResult
from llm_dispatch.llm.registry import ModelRegistry
from llm_dispatch.llm.transport import Transport, bearer_headers
from llm_dispatch.llm.types import (
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    ModelCategory,
    ModelMetadata,
    NormalizedResponse,
)

logger = logging.getLogger(__name__)

BACKEND = "OpenAI"


class HostedOpenAIAdapter:
    """Chooses endpoint and request shape from each model's capability record."""

    backend = "openai"
    supports_images = True

    def __init__(self, registry: ModelRegistry, transport: Transport) -> None:
        self._registry = registry
        self._transport = transport

    def _url(self, cfg: OpenAIConfig, path: str) -> str:
        return f"{cfg.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _headers(self, cfg: OpenAIConfig) -> dict[str, str]:
        return bearer_headers(cfg.api_key, cfg.header_api_key)

    def _meta(self, model_id: str | None, purpose: str) -> ModelMetadata:
        if not model_id:
            raise MissingRequiredField("model", f"{BACKEND} {purpose}")
        meta = self._registry.resolve(model_id)
        if meta.heuristic and meta.category is ModelCategory.COMPLETION:
            raise UnknownModel(model_id, f"Unknown {BACKEND} model {model_id!r}")
        return meta

    async def complete(self, cfg: OpenAIConfig, request: CompletionRequest) -> NormalizedResponse:
        meta = self._meta(cfg.model, "completion")
        use_responses = bool(meta.endpoint("responses")) and meta.category is not ModelCategory.CHAT
        path = meta.endpoint("responses") if use_responses else meta.endpoint("chat")
        if not path:
            raise UnknownModel(meta.id, f"Model {meta.id!r} does not expose a usable endpoint")
        # Requests carry the id the caller asked for, not the catalog base id
        meta = meta.model_copy(update={"id": cfg.model})
        if use_responses:
            body = build_responses_payload(meta, request)
        else:
            body = build_chat_payload(meta, request)
        logger.debug("%s completion model=%s endpoint=%s", BACKEND, meta.id, path)
        payload = await self._transport.post_json(
            self._url(cfg, path),
            body,
            backend=BACKEND,
            headers=self._headers(cfg),
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        if use_responses:
            return normalize_responses(payload, BACKEND)
        return normalize_chat_completion(payload, BACKEND)

    async def embed(self, cfg: OpenAIConfig, request: EmbeddingRequest) -> EmbeddingResult:
        meta = self._meta(cfg.embed_model, "embedding")
        if meta.category is not ModelCategory.EMBEDDING:
            raise UnsupportedOperation(f"Model {meta.id!r} is not an embedding model")
        path = meta.endpoint("embeddings") or "v1/embeddings"
        body: dict[str, Any] = {"model": cfg.embed_model, "input": request.input}
        body.update(pick_params(("dimensions", "encoding_format", "user"), request.options))
        payload = await self._transport.post_json(
            self._url(cfg, path),
            body,
            backend=BACKEND,
            headers=self._headers(cfg),
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        vectors = extract_embeddings(payload, len(request.inputs), BACKEND)
        return vectors if request.is_batch else vectors[0]

    async def generate_image(self, cfg: OpenAIConfig, request: ImageRequest) -> dict[str, Any]:
        meta = self._meta(cfg.model, "image generation")
        if meta.category is not ModelCategory.IMAGE:
            raise UnsupportedOperation(f"Model {meta.id!r} is not an image model")
        path = meta.endpoint("image_generation") or "v1/images/generations"
        body = build_image_payload(meta.model_copy(update={"id": cfg.model}), request)
        return await self._transport.post_json(
            self._url(cfg, path),
            body,
            backend=BACKEND,
            headers=self._headers(cfg),
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
