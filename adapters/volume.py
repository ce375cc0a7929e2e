from __future__ import annotations

import time
from concurrent.futures import Future
from typing import Any, Callable

from adapters.base import (
    OperatingContext,
    ProductRef,
    ResourceStatus,
    Volume,
    VolumeCapabilities,
    VolumeCreateOptions,
    VolumeFilter,
)
from adapters.fields import first_of, first_timestamp, nested_list, unwrap
from adapters.products import ProductCache, ProductCatalog
from core import config
from core.convergence import Budget, retry_on_conflict, wait_until
from core.errors import (
    CommunicationError,
    ControlPlaneError,
    InvalidState,
    MalformedResponse,
    ResourceNotFound,
    UnsupportedOperation,
)
from core.lifecycle import LifecycleState, classify
from core.logger import logger
from transport.client import Transport
from worker.listing import ConcurrentLister

SERVICE             = "volume"
RESOURCE            = "/volumes"
TYPES_RESOURCE      = "/types"
ATTACHMENTS         = "os-volume_attachments"
COMPUTE_SERVICE     = "compute"
SERVERS             = "/servers"

# Legacy camelCase keys are listed first, except "product", where volume_type wins.
VOLUME_FIELDS: dict[str, tuple[str, ...]] = {
    "id":          ("id",),
    "name":        ("displayName", "display_name", "name"),
    "description": ("displayDescription", "display_description", "description"),
    "created_at":  ("createdAt", "created_at"),
    "size":        ("size",),
    "product":     ("volume_type", "volumeType"),
    "snapshot":    ("snapshotId", "snapshot_id"),
    "status":      ("status",),
}

ATTACHMENT_FIELDS: dict[str, tuple[str, ...]] = {
    "server": ("serverId", "server_id"),
    "device": ("device",),
}


def to_volume(raw: dict | None, context: OperatingContext, catalog: ProductCatalog) -> Volume | None:
    """Normalize one volume payload. Returns None when the payload has no id."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedResponse(f"Volume payload should be an object, got {type(raw).__name__}")

    volume_id = first_of(raw, VOLUME_FIELDS["id"])
    if volume_id is None:
        return None

    name        = first_of(raw, VOLUME_FIELDS["name"])
    description = first_of(raw, VOLUME_FIELDS["description"])
    name        = volume_id if name is None else name
    description = name if description is None else description

    server_id = device = None
    for attachment in nested_list(raw, "attachments"):
        server_id = first_of(attachment, ATTACHMENT_FIELDS["server"])
        device    = first_of(attachment, ATTACHMENT_FIELDS["device"])
        if server_id is not None:
            break
    if server_id is None:
        device = None

    requested_product = first_of(raw, VOLUME_FIELDS["product"])
    product           = catalog.resolve(requested_product)

    return Volume(
        id=volume_id,
        name=name,
        description=description,
        created_at=first_timestamp(raw, VOLUME_FIELDS["created_at"]),
        state=classify(first_of(raw, VOLUME_FIELDS["status"])),
        region_id=context.region_id,
        data_center_id=context.data_center_id,
        size_gib=first_of(raw, VOLUME_FIELDS["size"], int, default=0),
        product_id=product.product_id if product else requested_product,
        classification=product.classification if product else None,
        snapshot_id=first_of(raw, VOLUME_FIELDS["snapshot"]),
        attached_server_id=server_id,
        attached_device_id=device,
    )


def to_status(raw: dict | None) -> ResourceStatus | None:
    if raw is None:
        return None
    volume_id = first_of(raw, VOLUME_FIELDS["id"])
    if volume_id is None:
        return None
    return ResourceStatus(id=volume_id, state=classify(first_of(raw, VOLUME_FIELDS["status"])))


def _gone(volume: Volume | None) -> bool:
    return volume is None or volume.state == LifecycleState.DELETED


def _settled(volume: Volume | None) -> bool:
    return volume is not None and volume.state != LifecycleState.PENDING


class VolumeAdapter:
    """Block-storage volumes: create, inspect, attach and delete."""

    pending_budget  = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.DELETE_TIMEOUT_SECS)
    delete_budget   = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.DELETE_TIMEOUT_SECS)
    conflict_budget = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.DELETE_TIMEOUT_SECS)
    create_budget   = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.CREATE_TIMEOUT_SECS)

    def __init__(
        self,
        transport: Transport,
        context: OperatingContext,
        *,
        capabilities: VolumeCapabilities | None = None,
        products: ProductCache | None = None,
        lister: ConcurrentLister | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self.context    = context
        self.capabilities = capabilities or VolumeCapabilities(
            minimum_size_gib=config.VOLUME_MIN_SIZE_GIB,
            maximum_size_gib=config.VOLUME_MAX_SIZE_GIB,
        )
        self._products    = products if products is not None else ProductCache()
        self._owns_lister = lister is None
        self._lister      = lister or ConcurrentLister()
        self._sleep = sleep
        self._clock = clock

    # Products

    def list_products(self) -> list[ProductRef]:
        return list(self._catalog())

    def _catalog(self) -> ProductCatalog:
        return self._products.get(self.context, self._fetch_catalog)

    def _fetch_catalog(self) -> ProductCatalog:
        return ProductCatalog.from_response(self._transport.get_resource(SERVICE, TYPES_RESOURCE))

    # Reads

    def is_subscribed(self) -> bool:
        return self._transport.has_service(SERVICE)

    def get(self, volume_id: str) -> Volume | None:
        body = unwrap(self._transport.get_resource(SERVICE, RESOURCE, volume_id), "volume")
        if body is None:
            return None
        return to_volume(body, self.context, self._catalog())

    def list(self, filter: VolumeFilter | None = None) -> list[Volume]:
        catalog = self._catalog()
        payload = self._transport.get_resource(SERVICE, RESOURCE) or {}

        volumes = []
        for raw in nested_list(payload, "volumes"):
            volume = to_volume(raw, self.context, catalog)
            if volume is not None and (filter is None or filter.matches(volume)):
                volumes.append(volume)
        return volumes

    def list_status(self) -> list[ResourceStatus]:
        payload = self._transport.get_resource(SERVICE, RESOURCE) or {}
        statuses = (to_status(raw) for raw in nested_list(payload, "volumes"))
        return [status for status in statuses if status is not None]

    def list_concurrently(self, filter: VolumeFilter | None = None) -> Future:
        return self._lister.submit(self.list, filter)

    # Writes

    def create(self, options: VolumeCreateOptions) -> str:
        """Submit a volume creation and return the new volume's id.

        The requested size is raised to the provider minimum (or capped at its
        maximum) before submission.
        """
        if options.vlan_id is not None:
            raise UnsupportedOperation("Creating NFS volumes is not supported")

        size = self.capabilities.clamp(options.size_gib)
        if options.size_gib is None:
            logger.info(f"[volume] No size requested; using the default of {size} GiB.")
        elif size != options.size_gib:
            logger.info(f"[volume] Requested size {options.size_gib} GiB adjusted to {size} GiB.")

        body: dict[str, Any] = {
            "name":        options.name,
            "description": options.description,
            "size":        size,
        }
        if options.snapshot_id is not None:
            body["snapshot_id"] = options.snapshot_id
        if options.metadata:
            body["metadata"] = dict(options.metadata)
        if options.product_id is not None:
            body["volume_type"] = options.product_id

        result = self._transport.post_resource(SERVICE, RESOURCE, body={"volume": body})
        if result is None:
            raise CommunicationError("No response from the control plane to the volume create request")

        volume = to_volume(unwrap(result, "volume"), self.context, self._catalog())
        if volume is None:
            logger.error("[volume] Create response did not describe a volume.")
            raise MalformedResponse(f"Unable to understand create response: {result!r}")

        logger.info({"resource": f"volume {volume.id}", "state": volume.state.value, "detail": f"{volume.size_gib} GiB requested"})
        return volume.id

    def create_and_wait(self, options: VolumeCreateOptions) -> Volume | None:
        """Create a volume and block until it leaves PENDING or the budget runs out."""
        volume_id = self.create(options)
        volume = wait_until(
            lambda: self.get(volume_id),
            _settled,
            self.create_budget,
            label=f"volume {volume_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if volume is not None and volume.state == LifecycleState.ERROR:
            logger.error({"resource": f"volume {volume_id}", "state": volume.state.value, "detail": "creation failed"})
        return volume

    def delete(self, volume_id: str) -> None:
        """Delete a volume and block until it is gone.

        Waits for a PENDING volume to settle first. Running out of time after
        the delete was accepted is logged, not raised.
        """
        volume = self.get(volume_id)
        if volume is None:
            return

        if volume.state == LifecycleState.PENDING:
            volume = wait_until(
                lambda: self.get(volume_id),
                lambda v: v is None or v.state != LifecycleState.PENDING,
                self.pending_budget,
                initial=volume,
                label=f"volume {volume_id}",
                sleep=self._sleep,
                clock=self._clock,
            )
            if volume is None:
                return

        try:
            retry_on_conflict(
                lambda: self._transport.delete_resource(SERVICE, RESOURCE, volume_id),
                self.conflict_budget,
                label=f"delete volume {volume_id}",
                sleep=self._sleep,
                clock=self._clock,
            )
        except ControlPlaneError as exc:
            if exc.is_not_found:
                return
            raise

        final = wait_until(
            lambda: self.get(volume_id),
            _gone,
            self.delete_budget,
            initial=volume,
            label=f"volume {volume_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if final is not None and final.state != LifecycleState.DELETED:
            logger.warning(f"[volume] Delete of {volume_id} accepted but volume still present: {final.state.value}")

    def attach(self, volume_id: str, server_id: str, device: str) -> None:
        """Attach a volume to a server. Does not wait for the attachment to show up."""
        volume = self.get(volume_id)
        if volume is None:
            raise ResourceNotFound("volume", volume_id)
        if volume.attached_server_id is not None and volume.attached_server_id != server_id:
            raise InvalidState(f"Volume {volume_id} is already attached to {volume.attached_server_id}")

        body = {"volumeAttachment": {"volumeId": volume_id, "device": device}}
        try:
            result = self._transport.post_resource(COMPUTE_SERVICE, SERVERS, server_id, body, sub_path=ATTACHMENTS)
        except ControlPlaneError as exc:
            if exc.is_not_found:
                raise ResourceNotFound("server", server_id) from exc
            raise
        if result is None:
            raise CommunicationError("No response from the control plane to the attach request")

        logger.info({"resource": f"volume {volume_id}", "state": "ATTACHING", "detail": f"{server_id} as {device}"})

    def detach(self, volume_id: str, force: bool = False) -> None:
        """Detach a volume from its server.

        ``force`` is accepted for interface parity; the attachments endpoint
        has no forced variant.
        """
        volume = self.get(volume_id)
        if volume is None:
            raise ResourceNotFound("volume", volume_id)
        if volume.attached_server_id is None:
            raise InvalidState(f"Volume {volume_id} is not attached")

        self._transport.delete_resource(
            COMPUTE_SERVICE, SERVERS, volume.attached_server_id, f"{ATTACHMENTS}/{volume_id}"
        )
        logger.info({"resource": f"volume {volume_id}", "state": "DETACHING", "detail": f"from {volume.attached_server_id}"})

    def close(self) -> None:
        if self._owns_lister:
            self._lister.close()

    def __enter__(self) -> "VolumeAdapter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
