from __future__ import annotations

import time
from typing import Any, Callable

from adapters.base import OperatingContext
from adapters.floating_ip import FloatingIPAdapter
from adapters.image import ImageAdapter
from adapters.products import ProductCache
from adapters.volume import VolumeAdapter
from core import config
from core.logger import logger
from transport.client import HttpTransport, Transport
from worker.listing import ConcurrentLister


class ReconcilerSession:
    """Entry point wiring one transport and one operating context into the adapters.

    The adapters share the session's listing pool and product cache; both are
    released by ``close()``.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        context: OperatingContext,
        lister: ConcurrentLister | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.context   = context
        self.products  = ProductCache()
        self.lister    = lister or ConcurrentLister()

        shared = {"lister": self.lister, "sleep": sleep, "clock": clock}
        self.volumes      = VolumeAdapter(transport, context, products=self.products, **shared)
        self.images       = ImageAdapter(transport, context, **shared)
        self.floating_ips = FloatingIPAdapter(transport, context, **shared)

    @classmethod
    def from_config(
        cls,
        *,
        region_id: str | None = None,
        tenant_id: str | None = None,
        token: str | None = None,
    ) -> "ReconcilerSession":
        """Build a session against the endpoints configured in the environment."""
        transport = HttpTransport(
            {"compute": config.COMPUTE_ENDPOINT, "volume": config.VOLUME_ENDPOINT},
            token=token if token is not None else config.AUTH_TOKEN,
        )
        context = OperatingContext(
            region_id=region_id or config.REGION_ID,
            tenant_id=tenant_id if tenant_id is not None else config.TENANT_ID,
        )
        logger.info(f"[session] Operating in {context.region_id} for tenant {context.tenant_id or '-'}.")
        return cls(transport=transport, context=context)

    def close(self) -> None:
        self.lister.close()
        close_transport = getattr(self.transport, "close", None)
        if close_transport is not None:
            close_transport()

    def __enter__(self) -> "ReconcilerSession":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
