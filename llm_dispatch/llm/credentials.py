"""OAuth2 credential lifecycle for the cloud backend.

State machine per credential key::

    VALID -> EXPIRING -> REFRESHING -> VALID
                                    -> FAILED  (re-authorize out of band)

Refreshes are serialized per key with an asyncio.Lock, and across worker
processes with a RefreshJournal lease. After each is acquired the credential
is re-read, so callers that queued behind a refresh reuse its result instead
of refreshing again.
"""

import asyncio
import logging
import os
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, model_validator

from llm_dispatch.errors import AuthorizationDenied, CredentialRefreshFailed, ProviderError
from llm_dispatch.events.journal import RefreshJournal
from llm_dispatch.llm.transport import Transport
from llm_dispatch.secrets import load_json_secret, store_json_secret

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_SKEW_SEC = 300
DEFAULT_LEASE_TTL = 30.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialState(str, Enum):
    VALID = "valid"
    EXPIRING = "expiring"
    REFRESHING = "refreshing"
    FAILED = "failed"


class OAuthCredential(BaseModel):
    """Access/refresh token pair. Instances are replaced on refresh, never edited."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str | None = None
    refresh_token: str | None = None
    expiry: datetime | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _expiry_date_ms(cls, data: Any) -> Any:
        # google-auth-library persists "expiry_date" as epoch milliseconds
        if isinstance(data, dict) and data.get("expiry") is None and data.get("expiry_date"):
            data = dict(data)
            data["expiry"] = datetime.fromtimestamp(int(data["expiry_date"]) / 1000, tz=timezone.utc)
        return data

    def state(self, now: datetime | None = None, skew_sec: float = DEFAULT_SKEW_SEC) -> CredentialState:
        if not self.access_token:
            return CredentialState.EXPIRING
        if self.expiry is None:
            return CredentialState.VALID
        now = now or utcnow()
        expiry = self.expiry if self.expiry.tzinfo else self.expiry.replace(tzinfo=timezone.utc)
        if expiry - timedelta(seconds=skew_sec) <= now:
            return CredentialState.EXPIRING
        return CredentialState.VALID

    def refreshed(self, token_response: dict[str, Any], now: datetime | None = None) -> "OAuthCredential":
        """New credential from a token endpoint response. Keeps the refresh token unless rotated."""
        now = now or utcnow()
        expires_in = token_response.get("expires_in")
        expiry = now + timedelta(seconds=int(expires_in)) if expires_in else None
        return OAuthCredential(
            access_token=token_response["access_token"],
            refresh_token=token_response.get("refresh_token") or self.refresh_token,
            expiry=expiry,
            token_type=token_response.get("token_type") or self.token_type,
            scope=token_response.get("scope") or self.scope,
        )


class OAuthClient(BaseModel):
    """Registered OAuth application used to refresh tokens."""

    model_config = ConfigDict(frozen=True)

    client_id: str | None = None
    client_secret: str | None = None
    token_url: str = GOOGLE_TOKEN_URL


@runtime_checkable
class CredentialStore(Protocol):
    """Durable home of OAuth credentials."""

    async def load(self, key: str) -> OAuthCredential | None: ...
    async def save(self, key: str, credential: OAuthCredential) -> None: ...
    async def notify_refreshed(self, key: str) -> None: ...


class KeyringCredentialStore:
    """Credentials as JSON secrets in the OS keyring; refreshes published to a RefreshJournal."""

    def __init__(self, journal: RefreshJournal | None = None) -> None:
        self._journal = journal

    async def load(self, key: str) -> OAuthCredential | None:
        data = await load_json_secret(key)
        return OAuthCredential.model_validate(data) if data else None

    async def save(self, key: str, credential: OAuthCredential) -> None:
        await store_json_secret(key, credential.model_dump(mode="json"))

    async def notify_refreshed(self, key: str) -> None:
        if self._journal is not None:
            await self._journal.publish(key)


class OAuthRefresher:
    """Exchanges a refresh token at the token endpoint."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def refresh(self, key: str, credential: OAuthCredential, client: OAuthClient) -> OAuthCredential:
        if not credential.refresh_token:
            raise AuthorizationDenied(
                f"Credential {key!r} has no refresh token; re-authorize the application"
            )
        form = {"grant_type": "refresh_token", "refresh_token": credential.refresh_token}
        if client.client_id:
            form["client_id"] = client.client_id
        if client.client_secret:
            form["client_secret"] = client.client_secret
        try:
            payload = await self._transport.post_json(client.token_url, form=form, backend="OAuth token endpoint")
        except ProviderError as e:
            raise CredentialRefreshFailed(key, e.provider_message, e.status) from e
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise CredentialRefreshFailed(key, "token response has no access_token")
        return credential.refreshed(payload)


class CredentialManager:
    """Hands out valid access tokens, refreshing at most once per expiry per key.

    With a journal, the refresh itself also runs under the journal's per-key
    lease, so worker processes sharing the keyring refresh one at a time and
    the ones that waited pick up the stored result.
    """

    def __init__(
        self,
        store: CredentialStore,
        refresher: OAuthRefresher,
        skew_sec: float = DEFAULT_SKEW_SEC,
        clock: Callable[[], datetime] = utcnow,
        journal: RefreshJournal | None = None,
        lease_ttl: float = DEFAULT_LEASE_TTL,
        lease_poll: float = 0.05,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._skew = skew_sec
        self._clock = clock
        self._journal = journal
        self._lease_ttl = lease_ttl
        self._lease_poll = lease_poll
        self._holder = f"{os.getpid()}-{uuid.uuid4().hex[:12]}"
        self._locks: dict[str, asyncio.Lock] = {}
        self._cache: dict[str, OAuthCredential] = {}
        self._states: dict[str, CredentialState] = {}
        self._journal_cursor = 0

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _fresh(self, credential: OAuthCredential | None) -> bool:
        return credential is not None and credential.state(self._clock(), self._skew) is CredentialState.VALID

    def _use(self, key: str, credential: OAuthCredential) -> str:
        self._cache[key] = credential
        self._states[key] = CredentialState.VALID
        return credential.access_token  # type: ignore[return-value]

    def state(self, key: str) -> CredentialState:
        if key in self._states:
            return self._states[key]
        cached = self._cache.get(key)
        return cached.state(self._clock(), self._skew) if cached else CredentialState.EXPIRING

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)
        self._states.pop(key, None)

    async def _load(self, key: str) -> OAuthCredential:
        credential = await self._store.load(key)
        if credential is None:
            self._states[key] = CredentialState.FAILED
            raise AuthorizationDenied(f"No stored credential {key!r}; authorize the application first")
        return credential

    async def _refresh(self, key: str, credential: OAuthCredential, client: OAuthClient) -> str:
        self._states[key] = CredentialState.REFRESHING
        logger.info("Refreshing OAuth credential %s", key)
        try:
            refreshed = await self._refresher.refresh(key, credential, client)
        except (AuthorizationDenied, CredentialRefreshFailed):
            self._states[key] = CredentialState.FAILED
            self._cache.pop(key, None)
            raise
        await self._store.save(key, refreshed)
        await self._store.notify_refreshed(key)
        return self._use(key, refreshed)

    async def _wait_for_lease(self, journal: RefreshJournal, key: str) -> None:
        if await journal.acquire_lease(key, self._holder, self._lease_ttl):
            return
        logger.debug("Waiting for another worker to refresh %s", key)
        while not await journal.acquire_lease(key, self._holder, self._lease_ttl):
            await asyncio.sleep(self._lease_poll)

    async def access_token(self, key: str, client: OAuthClient) -> str:
        cached = self._cache.get(key)
        if self._fresh(cached):
            return cached.access_token  # type: ignore[union-attr,return-value]
        async with self._lock(key):
            cached = self._cache.get(key)
            if self._fresh(cached):
                return cached.access_token  # type: ignore[union-attr,return-value]
            credential = await self._load(key)
            if self._fresh(credential):
                return self._use(key, credential)
            if self._journal is None:
                return await self._refresh(key, credential, client)
            await self._wait_for_lease(self._journal, key)
            try:
                # The previous lease holder may already have stored a new token
                credential = await self._load(key)
                if self._fresh(credential):
                    return self._use(key, credential)
                return await self._refresh(key, credential, client)
            finally:
                await self._journal.release_lease(key, self._holder)

    async def sync(self, journal: RefreshJournal | None = None) -> int:
        """Drop cached credentials refreshed by other processes. Returns the number dropped."""
        journal = journal or self._journal
        if journal is None:
            return 0
        rows = await journal.fetch_since(self._journal_cursor)
        dropped = 0
        pid = os.getpid()
        for row_id, key, row_pid, _created in rows:
            self._journal_cursor = max(self._journal_cursor, row_id)
            if row_pid != pid and key in self._cache:
                self.invalidate(key)
                dropped += 1
        if dropped:
            logger.info("Dropped %d credentials refreshed by other workers", dropped)
        return dropped
