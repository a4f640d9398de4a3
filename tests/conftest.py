"""Shared fixtures: in-memory credential store and a transport with a short timeout."""

from datetime import datetime, timedelta, timezone

import pytest

from llm_dispatch.llm.credentials import OAuthCredential
from llm_dispatch.llm.transport import Transport

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class MemoryCredentialStore:
    """CredentialStore kept in a dict; counts saves and refresh notifications."""

    def __init__(self, credentials: dict[str, OAuthCredential] | None = None) -> None:
        self.credentials = dict(credentials or {})
        self.saves = 0
        self.notified: list[str] = []

    async def load(self, key: str) -> OAuthCredential | None:
        return self.credentials.get(key)

    async def save(self, key: str, credential: OAuthCredential) -> None:
        self.saves += 1
        self.credentials[key] = credential

    async def notify_refreshed(self, key: str) -> None:
        self.notified.append(key)


def fresh_credential(token: str = "ya29.fresh") -> OAuthCredential:
    return OAuthCredential(access_token=token, refresh_token="1//rt", expiry=NOW + timedelta(hours=1))


def expired_credential(refresh_token: str | None = "1//rt") -> OAuthCredential:
    return OAuthCredential(access_token="ya29.old", refresh_token=refresh_token, expiry=NOW - timedelta(minutes=1))


@pytest.fixture
def transport() -> Transport:
    return Transport(default_timeout=5.0)
