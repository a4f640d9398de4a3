"""Any server that speaks the chat-completions protocol (Azure, vLLM, LM Studio, ...)."""

import logging
from typing import Any

from llm_dispatch.errors import MissingRequiredField, UnsupportedOperation
from llm_dispatch.llm.config import CompatibleConfig
from llm_dispatch.llm.normalize import extract_embeddings, normalize_chat_completion
from llm_dispatch.llm.payloads import build_openai_chat_body
from llm_dispatch.llm.protocol import EmbeddingResult
from llm_dispatch.llm.transport import Transport, bearer_headers
from llm_dispatch.llm.types import (
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    NormalizedResponse,
)

logger = logging.getLogger(__name__)

BACKEND = "OpenAI-compatible API"
DEFAULT_EMBED_MODEL = "text-embedding-3-small"


class CompatibleAdapter:
    """No catalog: the caller owns the endpoint URL and the parameter set."""

    backend = "openai_compatible"
    supports_images = False

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def complete(self, cfg: CompatibleConfig, request: CompletionRequest) -> NormalizedResponse:
        if not cfg.endpoint:
            raise MissingRequiredField("endpoint", f"{BACKEND} completion")
        body = build_openai_chat_body(request, cfg.model, cfg.temperature)
        payload = await self._transport.post_json(
            cfg.endpoint,
            body,
            backend=BACKEND,
            headers=bearer_headers(cfg.bearer, cfg.api_key),
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        return normalize_chat_completion(payload, BACKEND)

    async def embed(self, cfg: CompatibleConfig, request: EmbeddingRequest) -> EmbeddingResult:
        return await embed_via_compatible(
            self._transport,
            cfg.embed_endpoint,
            cfg.embed_model or cfg.model or DEFAULT_EMBED_MODEL,
            request,
            headers=bearer_headers(cfg.bearer, cfg.api_key),
        )

    async def generate_image(self, cfg: CompatibleConfig, request: ImageRequest) -> dict[str, Any]:
        raise UnsupportedOperation(f"Image generation is not available for backend {BACKEND!r}")


async def embed_via_compatible(
    transport: Transport,
    endpoint: str | None,
    model: str,
    request: EmbeddingRequest,
    *,
    headers: dict[str, str] | None = None,
    backend: str = BACKEND,
) -> EmbeddingResult:
    """POST {model, input} to an embeddings URL. Also used by the Ollama backend."""
    if not endpoint:
        raise MissingRequiredField("embed_endpoint", f"{backend} embedding")
    body: dict[str, Any] = {"model": model, "input": request.input}
    body.update({k: v for k, v in request.options.items() if v is not None and k not in body})
    payload = await transport.post_json(
        endpoint,
        body,
        backend=backend,
        headers=headers,
        timeout=request.timeout,
        cancel=request.cancel,
        debug=request.debug,
    )
    vectors = extract_embeddings(payload, len(request.inputs), backend)
    return vectors if request.is_batch else vectors[0]
