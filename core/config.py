import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path)

# Control plane
COMPUTE_ENDPOINT: str = os.getenv("RECONCILER_COMPUTE_ENDPOINT", "http://localhost:8774/v2.1")
VOLUME_ENDPOINT: str  = os.getenv("RECONCILER_VOLUME_ENDPOINT", "http://localhost:8776/v3")
AUTH_TOKEN: str       = os.getenv("RECONCILER_AUTH_TOKEN", "")
REQUEST_TIMEOUT: float = float(os.getenv("RECONCILER_REQUEST_TIMEOUT", "30"))

# Operating context
REGION_ID: str = os.getenv("RECONCILER_REGION_ID", "RegionOne")
TENANT_ID: str = os.getenv("RECONCILER_TENANT_ID", "")

# Concurrent listing
LISTING_WORKERS: int = int(os.getenv("RECONCILER_LISTING_WORKERS", "10"))

# Volume capabilities
VOLUME_MIN_SIZE_GIB: int = int(os.getenv("RECONCILER_VOLUME_MIN_SIZE_GIB", "1"))
VOLUME_MAX_SIZE_GIB: int = int(os.getenv("RECONCILER_VOLUME_MAX_SIZE_GIB", "1024"))

# Convergence budgets, in seconds
POLL_INTERVAL_SECS: float         = float(os.getenv("RECONCILER_POLL_INTERVAL_SECS", "15"))
DELETE_TIMEOUT_SECS: float        = float(os.getenv("RECONCILER_DELETE_TIMEOUT_SECS", "600"))
CREATE_TIMEOUT_SECS: float        = float(os.getenv("RECONCILER_CREATE_TIMEOUT_SECS", "600"))
CONFLICT_RETRY_SECS: float        = float(os.getenv("RECONCILER_CONFLICT_RETRY_SECS", "60"))
CONFLICT_TIMEOUT_SECS: float      = float(os.getenv("RECONCILER_CONFLICT_TIMEOUT_SECS", "3600"))
CAPTURE_PRECONDITION_SECS: float  = float(os.getenv("RECONCILER_CAPTURE_PRECONDITION_SECS", "600"))
CAPTURE_TIMEOUT_SECS: float       = float(os.getenv("RECONCILER_CAPTURE_TIMEOUT_SECS", "1200"))

# Logging
LOG_LEVEL: str = os.getenv("RECONCILER_LOG_LEVEL", "INFO").upper()
