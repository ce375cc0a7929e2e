from __future__ import annotations

import time
from concurrent.futures import Future
from typing import Any, Callable

from adapters.base import FloatingAddress, IPVersion, OperatingContext, ResourceStatus
from adapters.fields import first_of, nested_list, unwrap
from core import config
from core.convergence import Budget, retry_on_conflict, wait_until
from core.errors import (
    ControlPlaneError,
    InvalidState,
    MalformedResponse,
    ResourceNotFound,
    UnsupportedOperation,
)
from core.lifecycle import LifecycleState
from core.logger import logger
from transport.client import Transport
from worker.listing import ConcurrentLister

SERVICE  = "compute"
RESOURCE = "/os-floating-ips"
POOLS    = "/os-floating-ip-pools"
SERVERS  = "/servers"

DEFAULT_POOL = "default"

ADDRESS_FIELDS: dict[str, tuple[str, ...]] = {
    "id":     ("id",),
    "ip":     ("ip", "floating_ip_address"),
    "server": ("instance_id", "instanceId"),
    "pool":   ("pool",),
}

SUPPORTED_VERSIONS = (IPVersion.IPV4,)


def to_address(raw: dict | None, context: OperatingContext) -> FloatingAddress | None:
    """Normalize one floating IP payload.

    Both the id and the address itself are required; without either the
    entry is skipped. Addresses carry no provider status, so an attached
    address is ACTIVE and a free one AVAILABLE.
    """
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedResponse(f"Floating IP payload should be an object, got {type(raw).__name__}")

    address_id = first_of(raw, ADDRESS_FIELDS["id"])
    ip         = first_of(raw, ADDRESS_FIELDS["ip"])
    if address_id is None or ip is None:
        return None

    server_id = first_of(raw, ADDRESS_FIELDS["server"]) or None
    return FloatingAddress(
        id=address_id,
        name=ip,
        description=ip,
        state=LifecycleState.ACTIVE if server_id else LifecycleState.AVAILABLE,
        region_id=context.region_id,
        data_center_id=context.data_center_id,
        address=ip,
        attached_server_id=server_id,
        pool=first_of(raw, ADDRESS_FIELDS["pool"]),
        version=IPVersion.IPV4,
    )


def to_status(raw: dict | None) -> ResourceStatus | None:
    if raw is None:
        return None
    address_id = first_of(raw, ADDRESS_FIELDS["id"])
    if address_id is None:
        return None
    attached = bool(first_of(raw, ADDRESS_FIELDS["server"]))
    return ResourceStatus(id=address_id, state=LifecycleState.ACTIVE if attached else LifecycleState.AVAILABLE)


class FloatingIPAdapter:
    """Floating IPv4 addresses: request from a pool, attach to servers, release."""

    conflict_budget = Budget(interval=config.CONFLICT_RETRY_SECS, deadline=config.CONFLICT_TIMEOUT_SECS)
    delete_budget   = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.DELETE_TIMEOUT_SECS)

    def __init__(
        self,
        transport: Transport,
        context: OperatingContext,
        *,
        lister: ConcurrentLister | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport   = transport
        self.context      = context
        self._owns_lister = lister is None
        self._lister      = lister or ConcurrentLister()
        self._sleep = sleep
        self._clock = clock

    def supported_versions(self) -> tuple[IPVersion, ...]:
        return SUPPORTED_VERSIONS

    def is_subscribed(self) -> bool:
        """True when the compute service is configured and exposes floating IPs."""
        if not self._transport.has_service(SERVICE):
            return False
        return self._transport.get_resource(SERVICE, RESOURCE) is not None

    # Reads

    def get(self, address_id: str) -> FloatingAddress | None:
        body = unwrap(self._transport.get_resource(SERVICE, RESOURCE, address_id), "floating_ip")
        return to_address(body, self.context)

    def list(self, version: IPVersion = IPVersion.IPV4, unassigned_only: bool = False) -> list[FloatingAddress]:
        if version not in SUPPORTED_VERSIONS:
            return []

        addresses = []
        for raw in self._raw_addresses():
            address = to_address(raw, self.context)
            if address is None:
                continue
            if unassigned_only and address.attached_server_id is not None:
                continue
            addresses.append(address)
        return addresses

    def list_status(self, version: IPVersion = IPVersion.IPV4) -> list[ResourceStatus]:
        if version not in SUPPORTED_VERSIONS:
            return []
        statuses = (to_status(raw) for raw in self._raw_addresses())
        return [status for status in statuses if status is not None]

    def list_concurrently(self, version: IPVersion = IPVersion.IPV4, unassigned_only: bool = False) -> Future:
        return self._lister.submit(self.list, version, unassigned_only)

    def list_pools(self) -> list[str]:
        """Pool names, with the ``default`` pool (if any) first."""
        payload = self._transport.get_resource(SERVICE, POOLS) or {}
        names = [first_of(pool, ("name",)) for pool in nested_list(payload, "floating_ip_pools")]
        names = [name for name in names if name]
        return sorted(names, key=lambda name: name != DEFAULT_POOL)

    # Writes

    def create(self, version: IPVersion = IPVersion.IPV4) -> str:
        """Request a new address and return its id.

        If the provider has no implicit pool (404), each named pool is tried
        in turn; when none yields an address the original error is raised.
        """
        if version not in SUPPORTED_VERSIONS:
            raise UnsupportedOperation(f"Cannot request an {version.value} address")

        try:
            return self._request()
        except ControlPlaneError as first_error:
            if not first_error.is_not_found:
                raise
            for pool in self.list_pools():
                try:
                    return self._request(pool)
                except ControlPlaneError as exc:
                    logger.debug(f"[floating_ip] Pool '{pool}' could not supply an address: {exc}")
            raise first_error

    def delete(self, address_id: str) -> None:
        """Release an address back to its pool and wait until it is gone."""
        try:
            retry_on_conflict(
                lambda: self._transport.delete_resource(SERVICE, RESOURCE, address_id),
                self.conflict_budget,
                label=f"release address {address_id}",
                sleep=self._sleep,
                clock=self._clock,
            )
        except ControlPlaneError as exc:
            if exc.is_not_found:
                return
            raise

        final = wait_until(
            lambda: self.get(address_id),
            lambda address: address is None,
            self.delete_budget,
            label=f"address {address_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if final is not None:
            logger.warning(f"[floating_ip] Release of {address_id} accepted but address still listed.")

    def attach(self, address_id: str, server_id: str) -> None:
        address = self.get(address_id)
        if address is None:
            raise ResourceNotFound("floating IP", address_id)

        body = {"addFloatingIp": {"address": address.address}}
        try:
            self._transport.post_resource(SERVICE, SERVERS, server_id, body, sub_path="action")
        except ControlPlaneError as exc:
            if exc.is_not_found:
                raise ResourceNotFound("server", server_id) from exc
            raise
        logger.info({"resource": f"address {address.address}", "state": LifecycleState.ACTIVE.value, "detail": f"attached to {server_id}"})

    def detach(self, address_id: str, force: bool = False) -> None:
        """Detach an address from its server. ``force`` is accepted and ignored."""
        address = self.get(address_id)
        if address is None:
            raise ResourceNotFound("floating IP", address_id)
        if address.attached_server_id is None:
            raise InvalidState(f"Address {address_id} is not attached to a server")

        body = {"removeFloatingIp": {"address": address.address}}
        self._transport.post_resource(SERVICE, SERVERS, address.attached_server_id, body, sub_path="action")
        logger.info({"resource": f"address {address.address}", "state": LifecycleState.AVAILABLE.value, "detail": f"detached from {address.attached_server_id}"})

    def attach_to_network_interface(self, address_id: str, nic_id: str) -> None:
        raise UnsupportedOperation("Network interfaces are not supported")

    def forward(self, address_id: str, public_port: int, protocol: str, private_port: int, server_id: str) -> str:
        raise UnsupportedOperation("IP forwarding is not supported")

    def stop_forward(self, rule_id: str) -> None:
        raise UnsupportedOperation("IP forwarding is not supported")

    def create_for_vlan(self, version: IPVersion = IPVersion.IPV4, vlan_id: str | None = None) -> str:
        raise UnsupportedOperation("Static addresses for VLANs are not supported")

    def close(self) -> None:
        if self._owns_lister:
            self._lister.close()

    def __enter__(self) -> "FloatingIPAdapter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Internals

    def _raw_addresses(self) -> list[dict]:
        return nested_list(self._transport.get_resource(SERVICE, RESOURCE) or {}, "floating_ips")

    def _request(self, pool: str | None = None) -> str:
        body = {"pool": pool} if pool else {}
        result = self._transport.post_resource(SERVICE, RESOURCE, body=body)

        address = to_address(unwrap(result, "floating_ip"), self.context)
        if address is None:
            logger.error("[floating_ip] No address was created by the request, and no error was returned.")
            raise MalformedResponse(f"Unable to understand address response: {result!r}")

        logger.info({"resource": f"address {address.address}", "state": address.state.value, "detail": f"pool {pool or 'implicit'}"})
        return address.id
