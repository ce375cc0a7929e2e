import asyncio
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, TypeVar

from core import config

T = TypeVar("T")


class ConcurrentLister:
    """Runs blocking listing calls on a fixed-size pool of worker threads.

    The pool belongs to whoever constructs the lister and lives until
    ``close()``. Cancelling a returned future does not interrupt a provider
    call that is already in flight.
    """

    def __init__(self, max_workers: int = config.LISTING_WORKERS) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="listing")
        self._closed = False

    def submit(self, listing: Callable[..., T], *args: Any, **kwargs: Any) -> Future:
        """Schedule ``listing`` and return a future for its result."""
        if self._closed:
            raise RuntimeError("ConcurrentLister is closed")
        return self._pool.submit(listing, *args, **kwargs)

    async def run(self, listing: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Awaitable variant of ``submit`` for asyncio callers."""
        return await asyncio.wrap_future(self.submit(listing, *args, **kwargs))

    def close(self, wait: bool = True) -> None:
        """Shut the pool down. Already-submitted listings still complete."""
        self._closed = True
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "ConcurrentLister":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
