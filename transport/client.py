from typing import Any, Protocol

import httpx

from core import config
from core.errors import CommunicationError, ControlPlaneError, MalformedResponse
from core.logger import logger


class Transport(Protocol):
    """Minimal control-plane API consumed by the adapters."""

    def has_service(self, service: str) -> bool:
        ...

    def get_resource(
        self,
        service: str,
        base_path: str,
        resource_id: str | None = None,
    ) -> dict[str, Any] | None:
        ...

    def post_resource(
        self,
        service: str,
        base_path: str,
        resource_id: str | None = None,
        body: dict[str, Any] | None = None,
        sub_path: str | None = None,
    ) -> dict[str, Any] | None:
        ...

    def delete_resource(
        self,
        service: str,
        base_path: str,
        resource_id: str,
        sub_path: str | None = None,
    ) -> None:
        ...


class HttpTransport:
    """Synchronous httpx transport against per-service endpoints.

    ``endpoints`` maps a service name ("compute", "volume") to its base URL.
    GET on a missing resource returns ``None``; every other HTTP error raises
    ``ControlPlaneError`` carrying the status code and the provider's payload.
    """

    def __init__(
        self,
        endpoints: dict[str, str],
        *,
        token: str | None = None,
        timeout: float = config.REQUEST_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoints = {name: url.rstrip("/") for name, url in endpoints.items()}
        self._headers: dict[str, str] = {
            "Accept":       "application/json",
            "Content-Type": "application/json",
            "User-Agent":   "ResourceReconciler/1.0",
        }
        if token:
            self._headers["X-Auth-Token"] = token
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)

    def has_service(self, service: str) -> bool:
        return service in self.endpoints

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def get_resource(self, service, base_path, resource_id=None):
        response = self._send("GET", self._url(service, base_path, resource_id))
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return self._json_body(response)

    def post_resource(self, service, base_path, resource_id=None, body=None, sub_path=None):
        response = self._send("POST", self._url(service, base_path, resource_id, sub_path), json=body or {})
        self._raise_for_status(response)

        if response.content:
            return self._json_body(response)
        # Asynchronous actions answer 202 with only a Location header.
        location = response.headers.get("location")
        if location:
            return {"location": location}
        return None

    def delete_resource(self, service, base_path, resource_id, sub_path=None):
        response = self._send("DELETE", self._url(service, base_path, resource_id, sub_path))
        self._raise_for_status(response)

    def _url(self, service: str, base_path: str, resource_id: str | None = None, sub_path: str | None = None) -> str:
        try:
            root = self.endpoints[service]
        except KeyError:
            raise CommunicationError(f"No endpoint configured for service '{service}'") from None

        url = f"{root}/{base_path.strip('/')}"
        if resource_id:
            url += f"/{resource_id}"
        if sub_path:
            url += f"/{sub_path.strip('/')}"
        return url

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        logger.debug(f"[transport] {method} {url}")
        try:
            return self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise CommunicationError(f"{method} {url} timed out") from exc
        except httpx.ConnectError as exc:
            raise CommunicationError(f"Could not connect for {method} {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise CommunicationError(f"{method} {url} failed: {exc}") from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            payload = response.json()
        except ValueError:
            payload = response.text
        logger.debug(f"[transport] HTTP {response.status_code} from {response.request.method} {response.request.url}")
        raise ControlPlaneError(response.status_code, payload=payload)

    @staticmethod
    def _json_body(response: httpx.Response) -> dict[str, Any] | None:
        if not response.content:
            return None
        try:
            data = response.json()
        except ValueError as exc:
            raise CommunicationError(f"Response body is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedResponse(f"Expected a JSON object, got {type(data).__name__}")
        return data
