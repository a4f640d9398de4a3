"""Tests for llm_dispatch.secrets module."""

import json
from unittest.mock import patch

import pytest

from llm_dispatch import secrets


def test_get_secret_fallback_to_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """When keyring returns None, fall back to os.environ."""
    monkeypatch.setenv("TEST_SECRET_ENV", "from-env")
    with patch("llm_dispatch.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = None
        assert secrets.get_secret("TEST_SECRET_ENV") == "from-env"


def test_get_secret_prefers_keyring(monkeypatch: pytest.MonkeyPatch) -> None:
    """When keyring has value, it takes precedence over env."""
    monkeypatch.setenv("TEST_SECRET_BOTH", "from-env")
    with patch("llm_dispatch.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = "from-keyring"
        assert secrets.get_secret("TEST_SECRET_BOTH") == "from-keyring"
        mock_kr.get_password.assert_called_once_with("llm-dispatch", "TEST_SECRET_BOTH")


def test_get_secret_keyring_error_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    """When keyring raises KeyringError, fall back to env."""
    from keyring.errors import KeyringError

    monkeypatch.setenv("TEST_SECRET_ERR", "from-env")
    with patch("llm_dispatch.secrets.keyring") as mock_kr:
        mock_kr.get_password.side_effect = KeyringError("fail")
        assert secrets.get_secret("TEST_SECRET_ERR") == "from-env"


@pytest.mark.asyncio
async def test_get_secret_async_prefers_keyring(monkeypatch: pytest.MonkeyPatch) -> None:
    """Async variant prefers keyring over env."""
    monkeypatch.setenv("TEST_ASYNC", "from-env")
    with patch("llm_dispatch.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = "from-keyring"
        assert await secrets.get_secret_async("TEST_ASYNC") == "from-keyring"


@pytest.mark.asyncio
async def test_json_secret_round_trip() -> None:
    """OAuth credentials are stored as a JSON document under one keyring entry."""
    stored: dict[str, str] = {}
    with patch("llm_dispatch.secrets.keyring") as mock_kr:
        mock_kr.set_password.side_effect = lambda _svc, name, value: stored.__setitem__(name, value)
        mock_kr.get_password.side_effect = lambda _svc, name: stored.get(name)
        await secrets.store_json_secret("vertex_oauth", {"access_token": "a", "refresh_token": "r"})
        assert json.loads(stored["vertex_oauth"])["refresh_token"] == "r"
        assert await secrets.load_json_secret("vertex_oauth") == {"access_token": "a", "refresh_token": "r"}


@pytest.mark.asyncio
async def test_json_secret_invalid(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-JSON or non-object values read as absent."""
    monkeypatch.delenv("broken", raising=False)
    with patch("llm_dispatch.secrets.keyring") as mock_kr:
        mock_kr.get_password.return_value = "not json"
        assert await secrets.load_json_secret("broken") is None
        mock_kr.get_password.return_value = "[1, 2]"
        assert await secrets.load_json_secret("broken") is None
        mock_kr.get_password.return_value = None
        assert await secrets.load_json_secret("broken") is None
