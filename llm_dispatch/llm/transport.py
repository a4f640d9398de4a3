"""Outbound HTTP for every backend: timeout, cancellation, error envelopes, debug logs."""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx

from llm_dispatch.errors import CallCancelled, MalformedResponse, ProviderError
from llm_dispatch.llm.normalize import raise_for_error
from llm_dispatch.logging_config import redact_headers

logger = logging.getLogger(__name__)

T = TypeVar("T")
ClientFactory = Callable[[float], httpx.AsyncClient]

DEFAULT_TIMEOUT = 120.0
_DEBUG_BODY_LIMIT = 4000


def default_client_factory(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


async def cancellable(
    aw: Awaitable[T],
    *,
    backend: str,
    timeout: float | None,
    cancel: asyncio.Event | None = None,
) -> T:
    """Await aw, aborting it when timeout elapses or cancel is set.

    Raises CallCancelled in both cases; the in-flight task is cancelled and
    awaited before returning so no work outlives the call.
    """
    if cancel is not None and cancel.is_set():
        if asyncio.iscoroutine(aw):
            aw.close()
        raise CallCancelled(backend, "cancelled by caller")
    task = asyncio.ensure_future(aw)
    waiters: set[asyncio.Future[Any]] = {task}
    cancel_waiter: asyncio.Future[Any] | None = None
    if cancel is not None:
        cancel_waiter = asyncio.ensure_future(cancel.wait())
        waiters.add(cancel_waiter)
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if cancel_waiter is not None:
            cancel_waiter.cancel()
    if task in done:
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    if cancel is not None and cancel.is_set():
        raise CallCancelled(backend, "cancelled by caller")
    raise CallCancelled(backend, f"timed out after {timeout}s")


def _dump(payload: Any) -> str:
    text = json.dumps(payload, ensure_ascii=False, default=str)
    if len(text) > _DEBUG_BODY_LIMIT:
        return text[:_DEBUG_BODY_LIMIT] + "...(truncated)"
    return text


class Transport:
    """Posts JSON (or form) bodies and returns decoded JSON.

    One short-lived httpx.AsyncClient per call, built by client_factory so
    tests can substitute an httpx.MockTransport.
    """

    def __init__(
        self,
        client_factory: ClientFactory | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._client_factory = client_factory or default_client_factory
        self.default_timeout = default_timeout

    async def post_json(
        self,
        url: str,
        body: Any = None,
        *,
        backend: str,
        headers: dict[str, str] | None = None,
        form: dict[str, str] | None = None,
        timeout: float | None = None,
        cancel: asyncio.Event | None = None,
        debug: bool = False,
    ) -> Any:
        effective = timeout or self.default_timeout
        hdrs = {"Accept": "application/json", **(headers or {})}
        if debug:
            logger.info(
                "-> %s POST %s headers=%s body=%s",
                backend, url, redact_headers(hdrs), _dump(form if form is not None else body),
            )

        async def send() -> httpx.Response:
            async with self._client_factory(effective) as client:
                if form is not None:
                    return await client.post(url, data=form, headers=hdrs)
                return await client.post(url, json=body, headers=hdrs)

        try:
            resp = await cancellable(send(), backend=backend, timeout=effective, cancel=cancel)
        except httpx.TimeoutException as e:
            raise CallCancelled(backend, f"timed out after {effective}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(backend, f"transport failure: {e}") from e

        payload = self._decode(resp, backend)
        if debug:
            logger.info("<- %s HTTP %d %s", backend, resp.status_code, _dump(payload))
        raise_for_error(payload, backend, resp.status_code)
        return payload

    @staticmethod
    def _decode(resp: httpx.Response, backend: str) -> Any:
        try:
            return resp.json()
        except ValueError:
            if resp.status_code >= 400:
                raise ProviderError(backend, resp.text[:500] or resp.reason_phrase, resp.status_code) from None
            raise MalformedResponse(backend, f"response is not JSON (HTTP {resp.status_code})") from None


def bearer_headers(bearer: str | None = None, api_key: str | None = None) -> dict[str, str]:
    """Authorization bearer plus the Azure-style api-key header, each only when set."""
    headers: dict[str, str] = {}
    if bearer:
        headers["Authorization"] = f"Bearer {bearer}"
    if api_key:
        headers["api-key"] = api_key
    return headers
