from enum import Enum

from core.logger import logger


class LifecycleState(str, Enum):
    PENDING   = "PENDING"
    AVAILABLE = "AVAILABLE"
    ACTIVE    = "ACTIVE"
    ERROR     = "ERROR"
    DELETED   = "DELETED"


# Provider status -> lifecycle state. Volume and image vocabularies do not
# overlap in meaning, so a single table serves every adapter.
_STATUS_MAP: dict[str, LifecycleState] = {
    "available":         LifecycleState.AVAILABLE,
    "in-use":            LifecycleState.AVAILABLE,
    "active":            LifecycleState.ACTIVE,

    "creating":          LifecycleState.PENDING,
    "attaching":         LifecycleState.PENDING,
    "detaching":         LifecycleState.PENDING,
    "saving":            LifecycleState.PENDING,
    "queued":            LifecycleState.PENDING,
    "preparing":         LifecycleState.PENDING,
    "deleting":          LifecycleState.PENDING,
    "pending_delete":    LifecycleState.PENDING,
    "uploading":         LifecycleState.PENDING,
    "downloading":       LifecycleState.PENDING,
    "importing":         LifecycleState.PENDING,
    "extending":         LifecycleState.PENDING,
    "backing-up":        LifecycleState.PENDING,
    "restoring-backup":  LifecycleState.PENDING,
    "retyping":          LifecycleState.PENDING,
    "reserved":          LifecycleState.PENDING,
    "maintenance":       LifecycleState.PENDING,
    "awaiting-transfer": LifecycleState.PENDING,

    "error":             LifecycleState.ERROR,
    "error_deleting":    LifecycleState.ERROR,
    "error_restoring":   LifecycleState.ERROR,
    "error_extending":   LifecycleState.ERROR,
    "failed":            LifecycleState.ERROR,

    "deleted":           LifecycleState.DELETED,
    "killed":            LifecycleState.DELETED,
}


def classify(raw_status: str | None) -> LifecycleState:
    """Map a provider status string onto the lifecycle state machine.

    Matching is case-insensitive. A missing status is treated as still
    converging; an unknown one is logged and treated the same way.
    """
    if raw_status is None:
        return LifecycleState.PENDING

    state = _STATUS_MAP.get(raw_status.strip().lower())
    if state is None:
        logger.warning(f"[lifecycle] Unknown provider status '{raw_status}', assuming PENDING.")
        return LifecycleState.PENDING
    return state
