from __future__ import annotations

import time
from concurrent.futures import Future
from typing import Any, Callable

from adapters.base import (
    PUBLIC_OWNER,
    ImageCaptureOptions,
    ImageFilter,
    MachineImage,
    OperatingContext,
    Platform,
    ResourceStatus,
)
from adapters.fields import (
    first_of,
    first_timestamp,
    guess_architecture,
    guess_platform,
    nested_list,
    string_map,
    unwrap,
)
from core import config
from core.convergence import Budget, retry_on_conflict, wait_until
from core.errors import ControlPlaneError, MalformedResponse, ResourceNotFound
from core.lifecycle import LifecycleState, classify
from core.logger import logger
from transport.client import Transport
from worker.listing import ConcurrentLister

SERVICE  = "compute"
RESOURCE = "/images"
SERVERS  = "/servers"

# Metadata keys written on capture and read back on normalization.
DESCRIPTION_TAG = "reconciler.description"
PLATFORM_TAG    = "reconciler.platform"

IMAGE_FIELDS: dict[str, tuple[str, ...]] = {
    "id":          ("id",),
    "name":        ("name",),
    "description": ("description",),
    "created_at":  ("created", "created_at"),
    "status":      ("status",),
    "min_disk":    ("minDisk", "min_disk"),
}

ARCHITECTURE_KEYS = ("arch", "architecture", "org.openstack__1__architecture", "com.hp__1__architecture")

# A server still building, or mid-snapshot, cannot be captured yet.
_SERVER_PENDING_STATUSES = {"build", "rebuild"}
_SNAPSHOT_TASK_STATE     = "image_snapshot"
_TASK_STATE_KEYS         = ("OS-EXT-STS:task_state", "task_state")


def _owner_of(raw: dict, metadata: dict[str, str], context: OperatingContext) -> str:
    owner = metadata.get("owner") or first_of(raw, ("owner",))
    if owner:
        return owner
    image_type = metadata.get("image_type")
    if image_type == "base":
        return PUBLIC_OWNER
    return context.tenant_id


def to_image(raw: dict | None, context: OperatingContext) -> MachineImage | None:
    """Normalize one image payload. Returns None when the payload has no id."""
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise MalformedResponse(f"Image payload should be an object, got {type(raw).__name__}")

    image_id = first_of(raw, IMAGE_FIELDS["id"])
    if image_id is None:
        return None

    metadata    = string_map(raw, "metadata")
    name        = first_of(raw, IMAGE_FIELDS["name"])
    description = first_of(raw, IMAGE_FIELDS["description"])
    if description is None:
        description = metadata.get(DESCRIPTION_TAG)

    platform = Platform.UNKNOWN
    hint = metadata.get(PLATFORM_TAG)
    if hint in Platform.__members__:
        platform = Platform[hint]

    os_type = guess_platform(metadata.get("os_type"))
    if os_type != Platform.UNKNOWN:
        if platform == Platform.UNKNOWN or (platform == Platform.UNIX and os_type != Platform.UNIX):
            platform = os_type

    name        = image_id if name is None else name
    description = name if description is None else description

    # Name and description can sharpen a vague (or missing) platform.
    guessed = guess_platform(f"{name} {description}")
    if platform == Platform.UNKNOWN or (platform == Platform.UNIX and guessed != Platform.UNKNOWN):
        platform = guessed

    return MachineImage(
        id=image_id,
        name=name,
        description=description,
        created_at=first_timestamp(raw, IMAGE_FIELDS["created_at"]),
        state=classify(first_of(raw, IMAGE_FIELDS["status"])),
        region_id=context.region_id,
        data_center_id=context.data_center_id,
        owner_id=_owner_of(raw, metadata, context),
        architecture=guess_architecture(first_of(metadata, ARCHITECTURE_KEYS)),
        platform=platform,
        minimum_disk_size_gib=first_of(raw, IMAGE_FIELDS["min_disk"], int),
        tags=metadata,
    )


def to_status(raw: dict | None, context: OperatingContext) -> ResourceStatus | None:
    """Status of an image owned by the current tenant; None for anything else."""
    if raw is None:
        return None
    image_id = first_of(raw, IMAGE_FIELDS["id"])
    if image_id is None:
        return None
    if _owner_of(raw, string_map(raw, "metadata"), context) != context.tenant_id:
        return None
    return ResourceStatus(id=image_id, state=classify(first_of(raw, IMAGE_FIELDS["status"])))


def _capture_ready(server: dict | None) -> bool:
    if server is None:
        return True
    status = (first_of(server, ("status",)) or "").lower()
    task   = (first_of(server, _TASK_STATE_KEYS) or "").lower()
    return status not in _SERVER_PENDING_STATUSES and task != _SNAPSHOT_TASK_STATE


def _server_platform(server: dict) -> Platform:
    platform = guess_platform(string_map(server, "metadata").get("os_type"))
    if platform == Platform.UNKNOWN:
        platform = guess_platform(first_of(server, ("name",)))
    return platform


def _created_image_id(result: dict | None) -> str | None:
    if not result:
        return None
    image_id = first_of(result, ("image_id",))
    if image_id:
        return image_id
    location = first_of(result, ("location",))
    if location:
        return location.rstrip("/").rsplit("/", 1)[-1]
    return None


class ImageAdapter:
    """Machine images: capture from a server, inspect, search and delete."""

    precondition_budget = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.CAPTURE_PRECONDITION_SECS)
    appear_budget       = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.CAPTURE_TIMEOUT_SECS)
    conflict_budget     = Budget(interval=config.CONFLICT_RETRY_SECS, deadline=config.CONFLICT_TIMEOUT_SECS)
    delete_budget       = Budget(interval=config.POLL_INTERVAL_SECS, deadline=config.DELETE_TIMEOUT_SECS)

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

    # Reads

    def get(self, image_id: str) -> MachineImage | None:
        return to_image(self._get_raw(image_id), self.context)

    def get_image_ref(self, image_id: str) -> str | None:
        """The image's ``self`` link, or its first link when none is marked self."""
        raw = self._get_raw(image_id)
        if raw is None:
            return None

        fallback = None
        for link in nested_list(raw, "links"):
            href = first_of(link, ("href",))
            if first_of(link, ("rel",)) == "self":
                return href
            if fallback is None:
                fallback = href
        return fallback

    def list(self, filter: ImageFilter | None = None) -> list[MachineImage]:
        """Images matching ``filter``; without an owner the tenant's own images."""
        filter = filter or ImageFilter()
        if filter.owner_id is None:
            filter = filter.model_copy(update={"owner_id": self.context.tenant_id})
        return [image for image in self._all() if filter.matches(image)]

    def search_public(self, filter: ImageFilter | None = None) -> list[MachineImage]:
        """Images visible to the tenant but owned by someone else."""
        return [
            image for image in self._all()
            if image.owner_id != self.context.tenant_id and (filter is None or filter.matches(image))
        ]

    def list_status(self) -> list[ResourceStatus]:
        statuses = (to_status(raw, self.context) for raw in self._raw_images())
        return [status for status in statuses if status is not None]

    def list_concurrently(self, filter: ImageFilter | None = None) -> Future:
        return self._lister.submit(self.list, filter)

    def is_shared_with_public(self, image_id: str) -> bool:
        image = self.get(image_id)
        return image is not None and image.owner_id != self.context.tenant_id

    # Writes

    def capture(self, options: ImageCaptureOptions) -> MachineImage | None:
        """Image a running server and wait for the image to appear.

        Returns None if the image has not shown up within the budget; use
        ``create`` when only the new id is needed.
        """
        _, image = self._capture(options)
        return image

    def create(self, options: ImageCaptureOptions) -> str:
        image_id, _ = self._capture(options)
        return image_id

    def delete(self, image_id: str) -> None:
        """Delete an image, retrying while the provider reports it busy, then wait until it is gone."""
        try:
            retry_on_conflict(
                lambda: self._transport.delete_resource(SERVICE, RESOURCE, image_id),
                self.conflict_budget,
                label=f"delete image {image_id}",
                sleep=self._sleep,
                clock=self._clock,
            )
        except ControlPlaneError as exc:
            if exc.is_not_found:
                return
            raise

        final = wait_until(
            lambda: self.get(image_id),
            lambda image: image is None or image.state == LifecycleState.DELETED,
            self.delete_budget,
            label=f"image {image_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if final is not None and final.state != LifecycleState.DELETED:
            logger.warning(f"[image] Delete of {image_id} accepted but image still present: {final.state.value}")

    def close(self) -> None:
        if self._owns_lister:
            self._lister.close()

    def __enter__(self) -> "ImageAdapter":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Internals

    def _get_raw(self, image_id: str) -> dict | None:
        return unwrap(self._transport.get_resource(SERVICE, RESOURCE, image_id), "image")

    def _raw_images(self) -> list[dict]:
        return nested_list(self._transport.get_resource(SERVICE, RESOURCE) or {}, "images")

    def _all(self) -> list[MachineImage]:
        images = (to_image(raw, self.context) for raw in self._raw_images())
        return [image for image in images if image is not None]

    def _await_capturable(self, server_id: str) -> dict:
        server = wait_until(
            lambda: unwrap(self._transport.get_resource(SERVICE, SERVERS, server_id), "server"),
            _capture_ready,
            self.precondition_budget,
            label=f"server {server_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        if server is None:
            raise ResourceNotFound("server", server_id)
        if not _capture_ready(server):
            logger.warning(f"[image] Server {server_id} still busy; capturing anyway.")
        return server

    def _capture(self, options: ImageCaptureOptions) -> tuple[str, MachineImage | None]:
        server   = self._await_capturable(options.server_id)
        platform = _server_platform(server)

        metadata = {DESCRIPTION_TAG: options.description or options.name}
        if platform != Platform.UNKNOWN:
            metadata[PLATFORM_TAG] = platform.value
        body = {"createImage": {"name": options.name, "metadata": metadata}}

        try:
            result = self._transport.post_resource(SERVICE, SERVERS, options.server_id, body, sub_path="action")
        except ControlPlaneError as exc:
            if exc.is_not_found:
                raise ResourceNotFound("server", options.server_id) from exc
            raise

        image = to_image(unwrap(result, "image"), self.context)
        if image is not None:
            return image.id, image

        image_id = _created_image_id(result)
        if image_id is None:
            logger.error("[image] No image was created by the capture request, and no error was returned.")
            raise MalformedResponse(f"Capture response identified no image: {result!r}")

        logger.info({"resource": f"image {image_id}", "state": LifecycleState.PENDING.value, "detail": f"captured from {options.server_id}"})
        image = wait_until(
            lambda: self.get(image_id),
            lambda found: found is not None,
            self.appear_budget,
            label=f"image {image_id}",
            sleep=self._sleep,
            clock=self._clock,
        )
        return image_id, image
