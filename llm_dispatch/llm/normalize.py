"""Collapse provider response envelopes into NormalizedResponse values."""

import json
import logging
import uuid
from typing import Any, Iterable, Mapping

from llm_dispatch.errors import MalformedResponse, ProviderError
from llm_dispatch.llm.types import (
    MixedContent,
    NormalizedResponse,
    TextResponse,
    ToolCall,
    ToolCallResponse,
)

logger = logging.getLogger(__name__)


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


def raise_for_error(body: Any, backend: str, status: int | None = None) -> None:
    """Raise ProviderError for an error envelope or an error HTTP status."""
    err = body.get("error") if isinstance(body, Mapping) else None
    if err:
        if isinstance(err, Mapping):
            message = err.get("message") or err.get("code") or json.dumps(err)
        else:
            message = str(err)
        raise ProviderError(backend, str(message), status)
    if status is not None and status >= 400:
        text = body if isinstance(body, str) else json.dumps(body)[:500]
        raise ProviderError(backend, text or "request failed", status)


def collapse(text: str, calls: Iterable[ToolCall]) -> NormalizedResponse:
    """No calls -> Text; one call and no text -> ToolCall; otherwise Mixed."""
    calls = tuple(calls)
    if not calls:
        return TextResponse(text)
    if len(calls) == 1 and not text:
        return ToolCallResponse(calls[0])
    return MixedContent(text, calls)


def decode_arguments(raw: Any, backend: str, name: str) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedResponse(backend, f"tool call {name!r} has non-JSON arguments: {e}") from e
    if not isinstance(value, dict):
        raise MalformedResponse(backend, f"tool call {name!r} arguments are not an object")
    return value


def _wire_tool_call(raw: Any, backend: str) -> ToolCall:
    fn = raw.get("function") if isinstance(raw, Mapping) else None
    if not isinstance(fn, Mapping) or not fn.get("name"):
        raise MalformedResponse(backend, "tool call without function name")
    name = str(fn["name"])
    return ToolCall(
        id=str(raw.get("id") or new_call_id()),
        name=name,
        arguments=decode_arguments(fn.get("arguments"), backend, name),
    )


def normalize_chat_completion(body: Any, backend: str) -> NormalizedResponse:
    """Chat-completions envelope: ``choices[0].message``."""
    raise_for_error(body, backend)
    choices = body.get("choices") if isinstance(body, Mapping) else None
    if not choices or not isinstance(choices[0], Mapping):
        raise MalformedResponse(backend, "missing 'choices'")
    message = choices[0].get("message")
    if not isinstance(message, Mapping):
        raise MalformedResponse(backend, "missing 'choices[0].message'")
    text = message.get("content") or ""
    calls = [_wire_tool_call(c, backend) for c in message.get("tool_calls") or []]
    return collapse(text, calls)


def normalize_responses(body: Any, backend: str) -> NormalizedResponse:
    """Responses envelope: ``output[]`` of message items and function_call items."""
    raise_for_error(body, backend)
    output = body.get("output") if isinstance(body, Mapping) else None
    if not isinstance(output, list):
        raise MalformedResponse(backend, "missing 'output'")
    texts: list[str] = []
    calls: list[ToolCall] = []
    for item in output:
        if not isinstance(item, Mapping):
            continue
        kind = item.get("type")
        if kind == "message":
            for part in item.get("content") or []:
                if isinstance(part, Mapping) and part.get("type") == "output_text":
                    texts.append(part.get("text") or "")
        elif kind == "function_call":
            name = item.get("name")
            if not name:
                raise MalformedResponse(backend, "function_call item without name")
            calls.append(ToolCall(
                id=str(item.get("call_id") or item.get("id") or new_call_id()),
                name=str(name),
                arguments=decode_arguments(item.get("arguments"), backend, str(name)),
            ))
        # reasoning items and other kinds carry no user-visible output
    return collapse("".join(texts), calls)


def normalize_parts(parts: Any, backend: str) -> NormalizedResponse:
    """Provider parts of the form ``{"text": ...}`` / ``{"functionCall": {name, args}}``.

    The provider supplies no call ids, so one is synthesized per call.
    """
    if not isinstance(parts, list):
        raise MalformedResponse(backend, "missing content parts")
    texts: list[str] = []
    calls: list[ToolCall] = []
    for part in parts:
        if not isinstance(part, Mapping):
            continue
        if "functionCall" in part:
            fc = part["functionCall"] or {}
            name = fc.get("name")
            if not name:
                raise MalformedResponse(backend, "functionCall part without name")
            calls.append(ToolCall(
                id=new_call_id(),
                name=str(name),
                arguments=decode_arguments(fc.get("args"), backend, str(name)),
            ))
        elif part.get("text"):
            texts.append(part["text"])
    return collapse("".join(texts), calls)


def extract_embeddings(body: Any, count: int, backend: str) -> list[list[float]]:
    """``data[].embedding`` in input order (by ``index`` when present)."""
    raise_for_error(body, backend)
    data = body.get("data") if isinstance(body, Mapping) else None
    if not isinstance(data, list):
        raise MalformedResponse(backend, "missing 'data'")
    if all(isinstance(d, Mapping) and isinstance(d.get("index"), int) for d in data):
        data = sorted(data, key=lambda d: d["index"])
    vectors = []
    for d in data:
        vec = d.get("embedding") if isinstance(d, Mapping) else None
        if not isinstance(vec, list):
            raise MalformedResponse(backend, "embedding entry without vector")
        vectors.append(vec)
    if len(vectors) != count:
        raise MalformedResponse(backend, f"expected {count} embeddings, got {len(vectors)}")
    return vectors
