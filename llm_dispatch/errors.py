"""Error taxonomy for dispatch, validation, provider and credential failures.

Every error is a synchronous failure of the call that produced it. Nothing in
this package retries or swallows them.
"""

from typing import Any, Iterable


class DispatchError(Exception):
    """Base class for all errors raised by llm_dispatch."""


class UnsupportedBackend(DispatchError, ValueError):
    """cfg.backend is not one of the recognized backends."""

    def __init__(self, backend: Any, supported: Iterable[str] = ()) -> None:
        self.backend = backend
        self.supported = tuple(supported)
        msg = f"Unsupported backend {backend!r}"
        if self.supported:
            msg += f". Supported: {', '.join(self.supported)}"
        super().__init__(msg)


class UnknownModel(DispatchError, LookupError):
    """Model id absent from the catalog and not classifiable, or without a usable endpoint."""

    def __init__(self, model_id: str, reason: str = "") -> None:
        self.model_id = model_id
        super().__init__(reason or f"Unknown model {model_id!r}")


class UnsupportedOperation(DispatchError):
    """Backend or model cannot perform the requested operation."""


class MissingRequiredField(DispatchError, ValueError):
    """A required request or config field is absent or empty."""

    def __init__(self, field: str, context: str = "") -> None:
        self.field = field
        msg = f"{field!r} is required"
        if context:
            msg += f" for {context}"
        super().__init__(msg)


class ParameterNotAllowed(DispatchError, ValueError):
    """Value outside a declared enumeration."""

    def __init__(self, field: str, value: Any, allowed: Iterable[Any]) -> None:
        self.field = field
        self.value = value
        self.allowed = tuple(allowed)
        super().__init__(
            f"Invalid value {value!r} for {field!r}. "
            f"Allowed: {', '.join(str(a) for a in self.allowed)}"
        )


class ParameterOutOfRange(DispatchError, ValueError):
    """Numeric value outside a declared range (or not numeric at all)."""

    def __init__(self, field: str, value: Any, bound: str) -> None:
        self.field = field
        self.value = value
        self.bound = bound
        super().__init__(f"{field!r} must be {bound} (got {value!r})")


class ProviderError(DispatchError):
    """Remote call returned an error envelope or an error status."""

    def __init__(self, backend: str, message: str, status: int | None = None) -> None:
        self.backend = backend
        self.provider_message = message
        self.status = status
        prefix = f"{backend} error"
        if status is not None:
            prefix += f" (HTTP {status})"
        super().__init__(f"{prefix}: {message}")


class MalformedResponse(DispatchError):
    """Successful-looking response lacks an expected field."""

    def __init__(self, backend: str, detail: str) -> None:
        self.backend = backend
        self.detail = detail
        super().__init__(f"Malformed {backend} response: {detail}")


class AuthorizationDenied(DispatchError, PermissionError):
    """Caller is not permitted to use the backend in the current context."""


class CredentialRefreshFailed(DispatchError):
    """Token endpoint refused to refresh the credential."""

    def __init__(self, key: str, message: str, status: int | None = None) -> None:
        self.key = key
        self.status = status
        super().__init__(f"Refreshing credential {key!r} failed: {message}")


class CallCancelled(DispatchError):
    """The in-flight call was aborted by timeout or by the caller's cancel token."""

    def __init__(self, backend: str, reason: str) -> None:
        self.backend = backend
        self.reason = reason
        super().__init__(f"{backend} call cancelled: {reason}")


class SettingsError(DispatchError, ValueError):
    """settings.yaml exists but cannot be read or is not a YAML mapping."""

    def __init__(self, path: Any, detail: str) -> None:
        self.path = path
        super().__init__(f"Cannot load settings from {path}: {detail}")
