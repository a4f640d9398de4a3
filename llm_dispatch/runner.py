"""Command-line entry: list catalog models, run a completion or an embedding."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from llm_dispatch.dispatcher import Dispatcher
from llm_dispatch.errors import DispatchError, SettingsError
from llm_dispatch.llm.registry import get_registry
from llm_dispatch.llm.types import ModelCategory, NormalizedResponse
from llm_dispatch.logging_config import setup_logging
from llm_dispatch.settings import load_settings

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="llm_dispatch", description="Multi-backend LLM dispatcher")
    p.add_argument("--debug", action="store_true", help="log request and response bodies")
    sub = p.add_subparsers(dest="command", required=True)

    models = sub.add_parser("models", help="list catalog models")
    models.add_argument("--category", choices=[c.value for c in ModelCategory])

    complete = sub.add_parser("complete", help="run one completion")
    complete.add_argument("prompt")
    complete.add_argument("--system", dest="system_prompt")
    complete.add_argument("--model")
    complete.add_argument("--max-output-tokens", type=int, dest="max_output_tokens")
    complete.add_argument("--temperature", type=float)

    embed = sub.add_parser("embed", help="embed one or more texts")
    embed.add_argument("texts", nargs="+")
    embed.add_argument("--model")
    return p


def _render(response: NormalizedResponse) -> str:
    if response.tool_calls:
        return json.dumps(response.to_message(), ensure_ascii=False, indent=2)
    return response.text


def _list_models(category: str | None) -> list[str]:
    registry = get_registry()
    if category:
        return sorted(m.id for m in registry.list_by_category(category))
    return registry.list_models()


async def run(args: argparse.Namespace, settings: dict[str, Any]) -> str:
    if args.command == "models":
        return "\n".join(_list_models(args.category))
    dispatcher = Dispatcher.from_settings(settings, project_root=_PROJECT_ROOT)
    try:
        return await _dispatch(dispatcher, args)
    finally:
        await dispatcher.aclose()


async def _dispatch(dispatcher: Dispatcher, args: argparse.Namespace) -> str:
    if args.command == "complete":
        request = {
            "prompt": args.prompt,
            "system_prompt": args.system_prompt,
            "model": args.model,
            "max_output_tokens": args.max_output_tokens,
            "temperature": args.temperature,
            "debug": args.debug,
        }
        response = await dispatcher.get_completion(None, request)
        return _render(response)
    texts = args.texts if len(args.texts) > 1 else args.texts[0]
    vectors = await dispatcher.get_embedding(
        None, {"input": texts, "model": args.model, "debug": args.debug}
    )
    return json.dumps(vectors)


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry. Returns the process exit code."""
    load_dotenv(_PROJECT_ROOT / ".env")
    args = _build_parser().parse_args(argv)
    try:
        settings = load_settings()
    except SettingsError as e:
        # Logging is configured from settings, so stderr is the only channel here
        print(f"error: {e}", file=sys.stderr)
        return 2
    setup_logging(_PROJECT_ROOT, settings)
    try:
        print(asyncio.run(run(args, settings)))
    except DispatchError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


__all__ = ["main", "run"]
