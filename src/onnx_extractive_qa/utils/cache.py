"""Process-wide cache for tokenizer and model session handles."""

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Callable, Dict, Hashable, Optional


class ResourceCache:
    """Load each resource at most once per key and keep it for the process lifetime.

    The first caller for a key starts the load in the default executor; every
    concurrent caller, on any event loop, awaits the same in-flight future.
    Successful loads are never evicted. A failed load is dropped from the cache
    so that the next caller retries, but the failure itself reaches every
    caller that was waiting on it.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, concurrent.futures.Future] = {}

    async def get_or_load(
        self,
        key: Hashable,
        loader: Callable[[], Any],
        timeout: Optional[float] = None
    ) -> Any:
        """Return the resource for ``key``, loading it with ``loader`` if needed.

        Args:
            key: Resource identifier.
            loader: Blocking zero-argument callable that builds the resource.
            timeout: Seconds to wait for the resource, or None to wait forever.
                A timed out wait does not cancel the load itself.

        Returns:
            The cached resource.

        Raises:
            asyncio.TimeoutError: If the resource is not ready within ``timeout``.
            Exception: Whatever ``loader`` raised.
        """
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = concurrent.futures.Future()
                self._entries[key] = future

        if owner:
            self.logger.debug(f"Loading resource {key!r}")
            loop = asyncio.get_running_loop()
            loop.run_in_executor(None, self._populate, key, future, loader)

        return await asyncio.wait_for(
            asyncio.shield(asyncio.wrap_future(future)),
            timeout
        )

    def _populate(
        self,
        key: Hashable,
        future: concurrent.futures.Future,
        loader: Callable[[], Any]
    ) -> None:
        try:
            resource = loader()
        except Exception as e:
            with self._lock:
                if self._entries.get(key) is future:
                    del self._entries[key]
            self.logger.warning(f"Loading resource {key!r} failed: {e}")
            future.set_exception(e)
            return

        future.set_result(resource)
        self.logger.info(f"Cached resource {key!r}")

    def is_loaded(self, key: Hashable) -> bool:
        """Whether ``key`` has a completed, successful load."""
        with self._lock:
            future = self._entries.get(key)
        return future is not None and future.done() and future.exception() is None

    def keys(self):
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        """Forget every entry. Intended for tests."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Shared by every pipeline that is not given its own cache.
DEFAULT_CACHE = ResourceCache()
