"""Secret storage via OS keyring with environment fallback.

Holds API keys referenced by backend configs (``api_key_secret``) and the
JSON-serialized OAuth credentials of the cloud backend.
"""

import asyncio
import json
import logging
import os
from typing import Any

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)
SERVICE_NAME = "llm-dispatch"


def get_secret(name: str) -> str | None:
    """Value stored under name in the keyring, else the environment variable of that name."""
    try:
        value = keyring.get_password(SERVICE_NAME, name)
    except KeyringError as e:
        logger.debug("keyring unavailable for %s (%s); using environment", name, e)
        value = None
    return value or os.environ.get(name)


async def get_secret_async(name: str) -> str | None:
    """get_secret on a worker thread; keyring backends may block on D-Bus or a prompt."""
    return await asyncio.to_thread(get_secret, name)


async def set_secret_async(name: str, value: str) -> None:
    """Store secret in OS keyring. Raises KeyringError if backend unavailable."""
    await asyncio.to_thread(keyring.set_password, SERVICE_NAME, name, value)


async def load_json_secret(name: str) -> dict[str, Any] | None:
    """Read a JSON object stored under name. None when absent or not an object."""
    raw = await get_secret_async(name)
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("secret %s is not valid JSON; ignoring", name)
        return None
    return data if isinstance(data, dict) else None


async def store_json_secret(name: str, data: dict[str, Any]) -> None:
    """Serialize data and store it under name."""
    await set_secret_async(name, json.dumps(data, ensure_ascii=False, default=str))

