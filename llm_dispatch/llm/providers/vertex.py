"""Google Vertex AI over REST, authenticated with refreshed OAuth2 user tokens."""

import json
import logging
from typing import Any

from llm_dispatch.errors import MalformedResponse, UnsupportedOperation
from llm_dispatch.llm.config import VertexConfig
from llm_dispatch.llm.credentials import CredentialManager, OAuthClient
from llm_dispatch.llm.normalize import normalize_parts, raise_for_error
from llm_dispatch.llm.payloads import DEFAULT_SYSTEM_PROMPT
from llm_dispatch.llm.protocol import EmbeddingResult
from llm_dispatch.llm.transport import Transport, bearer_headers
from llm_dispatch.llm.types import (
    ChatMessage,
    CompletionRequest,
    EmbeddingRequest,
    ImageRequest,
    NormalizedResponse,
    ToolDeclaration,
)

logger = logging.getLogger(__name__)

BACKEND = "Google Vertex AI"


def _args(name: Any, raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        decoded = None
    if not isinstance(decoded, dict):
        logger.warning("history tool call %s has non-object arguments; sending {}", name)
        return {}
    return decoded


def to_vertex_contents(chat: tuple[ChatMessage, ...]) -> list[dict[str, Any]]:
    """OpenAI-shaped history -> Vertex ``contents``. Only user turns keep the user role."""
    names: dict[str, str] = {}
    contents: list[dict[str, Any]] = []
    for message in chat:
        if message.role == "tool":
            name = message.name or names.get(message.tool_call_id or "", "")
            contents.append({
                "role": "user",
                "parts": [{"functionResponse": {"name": name, "response": {"content": message.content or ""}}}],
            })
            continue
        role = "user" if message.role == "user" else "model"
        parts: list[dict[str, Any]] = []
        if message.content:
            parts.append({"text": message.content})
        for call in message.tool_calls or []:
            fn = call.get("function") or {}
            if call.get("id"):
                names[call["id"]] = fn.get("name", "")
            parts.append({"functionCall": {"name": fn.get("name"), "args": _args(fn.get("name"), fn.get("arguments"))}})
        if parts:
            contents.append({"role": role, "parts": parts})
    return contents


def to_function_declarations(tools: tuple[ToolDeclaration, ...]) -> list[dict[str, Any]]:
    return [{
        "functionDeclarations": [
            {"name": t.name, "description": t.description, "parameters": t.parameters} for t in tools
        ]
    }]


class VertexAdapter:
    backend = "vertex"
    supports_images = False

    def __init__(self, transport: Transport, credentials: CredentialManager) -> None:
        self._transport = transport
        self._credentials = credentials

    async def _headers(self, cfg: VertexConfig) -> dict[str, str]:
        client = OAuthClient(client_id=cfg.client_id, client_secret=cfg.client_secret)
        token = await self._credentials.access_token(cfg.credential_key, client)
        return bearer_headers(token)

    async def complete(self, cfg: VertexConfig, request: CompletionRequest) -> NormalizedResponse:
        headers = await self._headers(cfg)
        sampling = request.sampling_options()
        generation: dict[str, Any] = {"temperature": sampling.get("temperature", cfg.temperature)}
        if "top_p" in sampling:
            generation["topP"] = sampling["top_p"]
        if "max_output_tokens" in sampling:
            generation["maxOutputTokens"] = sampling["max_output_tokens"]
        if "stop" in sampling:
            stop = sampling["stop"]
            generation["stopSequences"] = [stop] if isinstance(stop, str) else list(stop)
        body: dict[str, Any] = {
            "contents": [
                *to_vertex_contents(request.chat),
                {"role": "user", "parts": [{"text": request.prompt}]},
            ],
            "systemInstruction": {"parts": [{"text": request.system_prompt or DEFAULT_SYSTEM_PROMPT}]},
            "generationConfig": generation,
        }
        if request.tools:
            body["tools"] = to_function_declarations(request.tools)
        payload = await self._transport.post_json(
            cfg.model_url(cfg.model, "generateContent"),
            body,
            backend=BACKEND,
            headers=headers,
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        candidates = payload.get("candidates") if isinstance(payload, dict) else None
        if not candidates or not isinstance(candidates[0], dict):
            raise MalformedResponse(BACKEND, "missing 'candidates'")
        content = candidates[0].get("content") or {}
        return normalize_parts(content.get("parts"), BACKEND)

    async def embed(self, cfg: VertexConfig, request: EmbeddingRequest) -> EmbeddingResult:
        headers = await self._headers(cfg)
        task_type = request.options.get("task_type") or cfg.task_type
        body = {"instances": [{"content": text, "task_type": task_type} for text in request.inputs]}
        payload = await self._transport.post_json(
            cfg.model_url(cfg.embed_model, "predict"),
            body,
            backend=BACKEND,
            headers=headers,
            timeout=request.timeout,
            cancel=request.cancel,
            debug=request.debug,
        )
        raise_for_error(payload, BACKEND)
        predictions = payload.get("predictions") if isinstance(payload, dict) else None
        if not isinstance(predictions, list) or len(predictions) != len(request.inputs):
            raise MalformedResponse(BACKEND, "missing or short 'predictions'")
        vectors = []
        for p in predictions:
            values = ((p or {}).get("embeddings") or {}).get("values")
            if not isinstance(values, list):
                raise MalformedResponse(BACKEND, "prediction without 'embeddings.values'")
            vectors.append(values)
        return vectors if request.is_batch else vectors[0]

    async def generate_image(self, cfg: VertexConfig, request: ImageRequest) -> dict[str, Any]:
        raise UnsupportedOperation(f"Image generation is not available for backend {BACKEND!r}")
