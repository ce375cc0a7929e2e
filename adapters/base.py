import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from core.lifecycle import LifecycleState

# Owner id reported for provider-supplied base images.
PUBLIC_OWNER = "--public--"


class StorageClass(str, Enum):
    SSD = "SSD"
    HDD = "HDD"


class Architecture(str, Enum):
    I32   = "I32"
    I64   = "I64"
    SPARC = "SPARC"
    POWER = "POWER"


class Platform(str, Enum):
    UNKNOWN     = "UNKNOWN"
    UNIX        = "UNIX"
    WINDOWS     = "WINDOWS"
    UBUNTU      = "UBUNTU"
    DEBIAN      = "DEBIAN"
    CENT_OS     = "CENT_OS"
    RHEL        = "RHEL"
    FEDORA_CORE = "FEDORA_CORE"
    SUSE        = "SUSE"
    COREOS      = "COREOS"
    FREE_BSD    = "FREE_BSD"
    SOLARIS     = "SOLARIS"


class IPVersion(str, Enum):
    IPV4 = "IPV4"
    IPV6 = "IPV6"


class OperatingContext(BaseModel):
    """Region and tenant the adapters act on behalf of."""

    model_config = ConfigDict(frozen=True)

    region_id: str
    tenant_id: str

    @property
    def data_center_id(self) -> str:
        # Single-zone assumption: the payload's availability zone is never consulted.
        return f"{self.region_id}-a"


class _Resource(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    created_at: datetime | None = None
    state: LifecycleState = LifecycleState.PENDING
    region_id: str
    data_center_id: str


class Volume(_Resource):
    size_gib: int = 0
    product_id: str | None = None
    classification: StorageClass | None = None
    snapshot_id: str | None = None
    attached_server_id: str | None = None
    attached_device_id: str | None = None


class MachineImage(_Resource):
    owner_id: str
    architecture: Architecture = Architecture.I64
    platform: Platform = Platform.UNKNOWN
    minimum_disk_size_gib: int | None = None
    tags: dict[str, str] = Field(default_factory=dict)


class FloatingAddress(_Resource):
    address: str
    attached_server_id: str | None = None
    pool: str | None = None
    version: IPVersion = IPVersion.IPV4


class ResourceStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    state: LifecycleState


class ProductRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    display_name: str
    classification: StorageClass = StorageClass.HDD
    extra_specs: dict[str, str] = Field(default_factory=dict)


class VolumeCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    minimum_size_gib: int = 1
    maximum_size_gib: int | None = None

    def clamp(self, requested: int | None) -> int:
        """Raise undersized (or missing) requests to the minimum, cap oversized ones."""
        if requested is None or requested < self.minimum_size_gib:
            return self.minimum_size_gib
        if self.maximum_size_gib is not None and requested > self.maximum_size_gib:
            return self.maximum_size_gib
        return requested


class VolumeCreateOptions(BaseModel):
    name: str
    description: str = ""
    size_gib: int | None = None
    product_id: str | None = None
    snapshot_id: str | None = None
    vlan_id: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class ImageCaptureOptions(BaseModel):
    name: str
    server_id: str
    description: str = ""


class VolumeFilter(BaseModel):
    name_pattern: str | None = None
    attached_server_id: str | None = None
    state: LifecycleState | None = None

    def matches(self, volume: Volume) -> bool:
        if self.name_pattern and not re.search(self.name_pattern, volume.name):
            return False
        if self.attached_server_id and volume.attached_server_id != self.attached_server_id:
            return False
        if self.state and volume.state != self.state:
            return False
        return True


class ImageFilter(BaseModel):
    owner_id: str | None = None
    platform: Platform | None = None
    architecture: Architecture | None = None
    name_pattern: str | None = None

    def matches(self, image: MachineImage) -> bool:
        if self.owner_id and image.owner_id != self.owner_id:
            return False
        if self.platform and image.platform != self.platform:
            return False
        if self.architecture and image.architecture != self.architecture:
            return False
        if self.name_pattern and not re.search(self.name_pattern, image.name):
            return False
        return True
