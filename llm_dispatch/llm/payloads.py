"""Pure request-body builders.

Nothing here performs I/O. Every validation failure is raised before a
request leaves the process.
"""

import json
from typing import Any, Iterable, Mapping

from llm_dispatch.errors import (
    MissingRequiredField,
    ParameterNotAllowed,
    ParameterOutOfRange,
)
from llm_dispatch.llm.types import (
    ChatMessage,
    CompletionRequest,
    ImageRequest,
    ModelMetadata,
    ToolDeclaration,
)

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

# Options that never reach the wire body of the compatible backend
RESERVED_KEYS = frozenset({
    "model",
    "messages",
    "prompt",
    "system_prompt",
    "chat",
    "tools",
    "tool_choice",
    "response_format",
    "api_key",
    "bearer",
    "endpoint",
    "config_name",
    "timeout",
    "cancel",
    "debug",
})


def pick_params(whitelist: Iterable[str], options: Mapping[str, Any]) -> dict[str, Any]:
    """Copy only whitelisted keys with non-None values, in whitelist order."""
    return {k: options[k] for k in whitelist if options.get(k) is not None}


def clamp(n: Any, minimum: float | None = 1, maximum: float | None = None) -> Any:
    """Clamp a number into [minimum, maximum]. Non-numbers pass through as None."""
    if isinstance(n, bool) or not isinstance(n, (int, float)):
        return None
    if minimum is not None and n < minimum:
        return minimum
    if maximum is not None and n > maximum:
        return maximum
    return n


def validate_response_format(value: Any) -> dict[str, Any]:
    """A response-format override must be a mapping carrying a ``format`` key."""
    if not isinstance(value, Mapping) or "format" not in value:
        raise MissingRequiredField("format", "response_format override (expected {'format': ...})")
    return dict(value)


def chat_tool(tool: ToolDeclaration) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": tool.parameters,
        },
    }


def responses_tool(tool: ToolDeclaration) -> dict[str, Any]:
    return {
        "type": "function",
        "name": tool.name,
        "description": tool.description,
        "parameters": tool.parameters,
    }


def _ordered_params(meta: ModelMetadata) -> list[str]:
    # Flat (non-dotted) params only; tools are serialized separately.
    return sorted(p for p in meta.supported_params if "." not in p and p != "tools")


def _reasoning_block(meta: ModelMetadata, options: Mapping[str, Any]) -> dict[str, Any] | None:
    effort = options.get("reasoning.effort")
    summary = options.get("reasoning.summary")
    if not (meta.reasoning_required or effort or summary):
        return None
    return {"effort": effort or "auto", "summary": summary or "auto"}


def _clamp_output_tokens(body: dict[str, Any], meta: ModelMetadata) -> None:
    if "max_output_tokens" not in body:
        return
    value = clamp(body["max_output_tokens"], 1, meta.max_output_tokens)
    if value is None:
        raise ParameterOutOfRange("max_output_tokens", body["max_output_tokens"], "numeric")
    body["max_output_tokens"] = int(value)


def _system_role(meta: ModelMetadata) -> str:
    return "developer" if meta.reasoning_required else "system"


def build_chat_payload(meta: ModelMetadata, request: CompletionRequest) -> dict[str, Any]:
    """Body for a chat-completions endpoint: ``{model, messages, ...whitelisted}``."""
    messages: list[dict[str, Any]] = [
        {"role": _system_role(meta), "content": request.system_prompt or DEFAULT_SYSTEM_PROMPT},
        *(m.to_wire() for m in request.chat),
        {"role": "user", "content": request.prompt},
    ]
    options = request.sampling_options()
    body: dict[str, Any] = {
        "model": meta.id,
        "messages": messages,
        **pick_params(_ordered_params(meta), options),
    }
    if request.tools and "tools" in meta.supported_params:
        body["tools"] = [chat_tool(t) for t in request.tools]
        if request.tool_choice is not None:
            body["tool_choice"] = request.tool_choice
    reasoning = _reasoning_block(meta, options)
    if reasoning is not None:
        body["reasoning"] = reasoning
    if request.response_format is not None:
        fmt = validate_response_format(request.response_format)["format"]
        if "response_format" in meta.supported_params:
            body["response_format"] = fmt
    _clamp_output_tokens(body, meta)
    return body


def _input_text(text: str) -> list[dict[str, Any]]:
    return [{"type": "input_text", "text": text}]


def _responses_item(message: ChatMessage) -> list[dict[str, Any]]:
    if message.role == "tool":
        return [{
            "type": "function_call_output",
            "call_id": message.tool_call_id,
            "output": message.content or "",
        }]
    items: list[dict[str, Any]] = []
    if message.content:
        part = "output_text" if message.role == "assistant" else "input_text"
        items.append({"role": message.role, "content": [{"type": part, "text": message.content}]})
    for call in message.tool_calls or []:
        fn = call.get("function") or {}
        args = fn.get("arguments", "{}")
        items.append({
            "type": "function_call",
            "call_id": call.get("id"),
            "name": fn.get("name"),
            "arguments": args if isinstance(args, str) else json.dumps(args),
        })
    return items


def build_responses_payload(meta: ModelMetadata, request: CompletionRequest) -> dict[str, Any]:
    """Body for a responses endpoint: structured input parts plus text/tools/store."""
    items: list[dict[str, Any]] = [
        {"role": _system_role(meta), "content": _input_text(request.system_prompt or DEFAULT_SYSTEM_PROMPT)},
    ]
    for message in request.chat:
        items.extend(_responses_item(message))
    items.append({"role": "user", "content": _input_text(request.prompt)})

    options = request.sampling_options()
    body: dict[str, Any] = {
        "model": meta.id,
        "input": items,
        "text": {"format": {"type": "text"}},
        "tools": [responses_tool(t) for t in request.tools],
        "store": request.store if request.store is not None else True,
        **pick_params(_ordered_params(meta), options),
    }
    if request.tools and request.tool_choice is not None:
        body["tool_choice"] = request.tool_choice
    reasoning = _reasoning_block(meta, options)
    if reasoning is not None:
        body["reasoning"] = reasoning
    if request.response_format is not None:
        body["text"] = validate_response_format(request.response_format)
    elif options.get("output_format"):
        body["text"] = {"format": options["output_format"]}
    _clamp_output_tokens(body, meta)
    return body


def _is_enumeration(schema: Any) -> bool:
    return isinstance(schema, list) or (isinstance(schema, dict) and isinstance(schema.get("oneOf"), list))


def _is_range(schema: Any) -> bool:
    return isinstance(schema, dict) and ("min" in schema or "max" in schema)


def _as_number(name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ParameterOutOfRange(name, value, "numeric")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ParameterOutOfRange(name, value, "numeric") from None


def validate_post_value(name: str, schema: Any, value: Any) -> None:
    """Check one image parameter against its declared constraint.

    A list or ``{"oneOf": [...]}`` is an enumeration; ``{"min", "max"}`` is an
    inclusive numeric range; anything else (e.g. ``"string"``) is unchecked.
    """
    if _is_enumeration(schema):
        allowed = schema if isinstance(schema, list) else schema["oneOf"]
        if value not in allowed:
            raise ParameterNotAllowed(name, value, allowed)
        return
    if _is_range(schema):
        n = _as_number(name, value)
        if schema.get("min") is not None and n < schema["min"]:
            raise ParameterOutOfRange(name, value, f">= {schema['min']}")
        if schema.get("max") is not None and n > schema["max"]:
            raise ParameterOutOfRange(name, value, f"<= {schema['max']}")


def build_image_payload(meta: ModelMetadata, request: ImageRequest) -> dict[str, Any]:
    """Body for an image-generation endpoint. Requires a prompt.

    The image count ``n`` is clamped into its declared range instead of being
    rejected; every other constraint violation raises.
    """
    if not request.prompt:
        raise MissingRequiredField("prompt", "image generation")
    body: dict[str, Any] = {
        "model": meta.id,
        "prompt": request.prompt,
        **pick_params(sorted(meta.supported_params), request.params),
    }
    schema = meta.post_parameters or {}
    for key, value in body.items():
        if key in ("model", "prompt") or key not in schema:
            continue
        if key == "n" and _is_range(schema["n"]):
            n = clamp(_as_number("n", value), schema["n"].get("min", 1), schema["n"].get("max"))
            body["n"] = int(n)
            continue
        validate_post_value(key, schema[key], value)
    return body


def build_openai_chat_body(
    request: CompletionRequest,
    model: str | None,
    temperature: float | None = 0.7,
) -> dict[str, Any]:
    """Best-effort chat-completions body for servers without catalog metadata.

    Every caller option except the reserved keys is forwarded.
    """
    if not model:
        raise MissingRequiredField("model", "chat completion")
    options = request.sampling_options()
    body: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": request.system_prompt or DEFAULT_SYSTEM_PROMPT},
            *(m.to_wire() for m in request.chat),
            {"role": "user", "content": request.prompt},
        ],
    }
    if temperature is not None:
        body["temperature"] = temperature
    body.update({k: v for k, v in options.items() if k not in RESERVED_KEYS and "." not in k})
    if request.tools:
        body["tools"] = [chat_tool(t) for t in request.tools]
        if request.tool_choice is not None:
            body["tool_choice"] = request.tool_choice
    if request.response_format is not None:
        body["response_format"] = validate_response_format(request.response_format)["format"]
    return body
