from typing import Any


class ReconcilerError(Exception):
    """Base class for everything raised by the reconciliation layer."""


class CommunicationError(ReconcilerError):
    """The control plane could not be reached, or its reply could not be parsed."""


class ControlPlaneError(CommunicationError):
    """The control plane answered with an HTTP error status."""

    def __init__(self, status_code: int, message: str = "", payload: Any = None) -> None:
        self.status_code = status_code
        self.payload     = payload
        self.message     = message or _provider_message(payload) or f"HTTP {status_code}"
        super().__init__(f"HTTP {status_code}: {self.message}")

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class MalformedResponse(ReconcilerError):
    """A payload was present but did not have the expected structure."""


class ResourceNotFound(ReconcilerError):

    def __init__(self, kind: str, resource_id: str, message: str = "") -> None:
        self.kind        = kind
        self.resource_id = resource_id
        super().__init__(message or f"No such {kind}: {resource_id}")


class UnsupportedOperation(ReconcilerError):
    """The operation is not offered by this provider."""


class InvalidState(ReconcilerError):
    """The resource is in a state that forbids the requested operation."""


def is_conflict(exc: BaseException) -> bool:
    """True for a provider-reported "resource busy, retry later" error."""
    return isinstance(exc, ControlPlaneError) and exc.is_conflict


def _provider_message(payload: Any) -> str:
    # Provider errors come wrapped: {"conflictingRequest": {"code": 409, "message": "..."}}
    if not isinstance(payload, dict):
        return ""
    if isinstance(payload.get("message"), str):
        return payload["message"]
    for value in payload.values():
        if isinstance(value, dict) and isinstance(value.get("message"), str):
            return value["message"]
    return ""
