"""Local Ollama daemon over its native HTTP API."""

import asyncio
import json
import logging
from typing import Any

from llm_dispatch.errors import MalformedResponse, MissingRequiredField, UnsupportedOperation
from llm_dispatch.llm.config import OllamaConfig
from llm_dispatch.llm.normalize import normalize_parts
from llm_dispatch.llm.payloads import DEFAULT_SYSTEM_PROMPT, chat_tool
from llm_dispatch.llm.protocol import EmbeddingResult, Vector
from llm_dispatch.llm.providers.compatible import embed_via_compatible
from llm_dispatch.llm.transport import Transport
from llm_dispatch.llm.types import (
    ChatMessage,
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    NormalizedResponse,
)

logger = logging.getLogger(__name__)

BACKEND = "Local Ollama"

# CompletionRequest option -> Ollama "options" key
_OPTION_KEYS = {
    "temperature": "temperature",
    "top_p": "top_p",
    "max_output_tokens": "num_predict",
    "stop": "stop",
    "seed": "seed",
    "top_k": "top_k",
    "num_ctx": "num_ctx",
}


def _ollama_message(message: ChatMessage) -> dict[str, Any]:
    wire = message.to_wire()
    if message.tool_calls:
        calls = []
        for call in message.tool_calls:
            fn = dict(call.get("function") or {})
            if isinstance(fn.get("arguments"), str):
                try:
                    fn["arguments"] = json.loads(fn["arguments"] or "{}")
                except ValueError:
                    logger.warning("history tool call %s has non-JSON arguments; sending {}", fn.get("name"))
                    fn["arguments"] = {}
            calls.append({"function": fn})
        wire["tool_calls"] = calls
    return wire


class OllamaAdapter:
    backend = "ollama"
    supports_images = False

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def _url(self, cfg: OllamaConfig, path: str) -> str:
        return f"{cfg.base_url.rstrip('/')}{path}"

    async def complete(self, cfg: OllamaConfig, request: CompletionRequest) -> NormalizedResponse:
        if not cfg.model:
            raise MissingRequiredField("model", f"{BACKEND} completion")
        messages = [
            {"role": "system", "content": request.system_prompt or DEFAULT_SYSTEM_PROMPT},
            *(_ollama_message(m) for m in request.chat),
            {"role": "user", "content": request.prompt},
        ]
        sampling = request.sampling_options()
        options = {dst: sampling[src] for src, dst in _OPTION_KEYS.items() if src in sampling}
        body: dict[str, Any] = {"model": cfg.model, "messages": messages, "stream": False}
        if options:
            body["options"] = options
        if request.tools:
            body["tools"] = [chat_tool(t) for t in request.tools]
        if request.response_format is not None:
            fmt = request.response_format.get("format")
            if fmt is not None:
                body["format"] = fmt
        payload = await self._transport.post_json(
            self._url(cfg, "/api/chat"),
            body,
            backend=BACKEND,
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        message = payload.get("message") if isinstance(payload, dict) else None
        if not isinstance(message, dict):
            raise MalformedResponse(BACKEND, "missing 'message'")
        parts: list[dict[str, Any]] = [{"text": message.get("content") or ""}]
        for call in message.get("tool_calls") or []:
            fn = call.get("function") if isinstance(call, dict) else None
            if not isinstance(fn, dict):
                raise MalformedResponse(BACKEND, "tool call without function")
            parts.append({"functionCall": {"name": fn.get("name"), "args": fn.get("arguments")}})
        return normalize_parts(parts, BACKEND)

    async def embed(self, cfg: OllamaConfig, request: EmbeddingRequest) -> EmbeddingResult:
        model = cfg.embed_model or cfg.model
        if not model:
            raise MissingRequiredField("embed_model", f"{BACKEND} embedding")
        if cfg.embed_endpoint:
            return await embed_via_compatible(
                self._transport, cfg.embed_endpoint, model, request, backend=BACKEND
            )
        vectors = await asyncio.gather(
            *(self._embed_one(cfg, model, text, request) for text in request.inputs)
        )
        return list(vectors) if request.is_batch else vectors[0]

    async def _embed_one(
        self, cfg: OllamaConfig, model: str, text: str, request: EmbeddingRequest
    ) -> Vector:
        payload = await self._transport.post_json(
            self._url(cfg, "/api/embeddings"),
            {"model": model, "prompt": text},
            backend=BACKEND,
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        vec = payload.get("embedding") if isinstance(payload, dict) else None
        if not isinstance(vec, list) or not all(
            isinstance(x, (int, float)) and not isinstance(x, bool) for x in vec
        ):
            raise MalformedResponse(BACKEND, "missing or malformed 'embedding'")
        return vec

    async def generate_image(self, cfg: OllamaConfig, request: ImageRequest) -> dict[str, Any]:
        raise UnsupportedOperation(f"Image generation is not available for backend {BACKEND!r}")
