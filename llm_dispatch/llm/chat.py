"""Helpers for callers that keep their own chat history."""

from typing import Any, Sequence

from llm_dispatch.llm.types import ChatMessage, NormalizedResponse, ToolCall


def _as_dict(message: ChatMessage | dict[str, Any]) -> dict[str, Any]:
    return message.to_wire() if isinstance(message, ChatMessage) else dict(message)


def append_exchange(
    history: Sequence[ChatMessage | dict[str, Any]],
    prompt: str,
    response: NormalizedResponse,
) -> list[dict[str, Any]]:
    """Return a new history with the user prompt and the assistant reply appended."""
    return [
        *(_as_dict(m) for m in history),
        {"role": "user", "content": prompt},
        response.to_message(),
    ]


def tool_result_message(call: ToolCall, content: str) -> dict[str, Any]:
    """Message answering a tool call, to be appended after the assistant turn."""
    return {"role": "tool", "tool_call_id": call.id, "name": call.name, "content": content}
