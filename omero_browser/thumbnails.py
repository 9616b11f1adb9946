from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Optional

from omero_browser.base import RemoteRepository
from omero_browser.errors import BrowserError
from omero_browser.events import THUMBNAIL_READY, EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThumbnailReady:
    image_id: int
    data: bytes


class ThumbnailService:
    """Fetches thumbnails on a bounded pool, keeping every result in memory.

    Thumbnails are keyed by image id; fetching one twice is harmless, so
    there is no per-id de-duplication beyond the cache.
    """

    def __init__(
        self,
        repository: RemoteRepository,
        workers: int = 4,
        size: int = 256,
        bus: Optional[EventBus] = None,
    ) -> None:
        self.repository = repository
        self.size = size
        self.bus = bus
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="thumbnail-loader")
        self._cache: Dict[int, bytes] = {}
        self._lock = threading.Lock()
        self._closed = False

    def cached(self, image_id: int) -> Optional[bytes]:
        with self._lock:
            return self._cache.get(image_id)

    def request(self, image_id: int) -> Optional["Future[Optional[bytes]]"]:
        """Fetch ``image_id`` in the background; a cached thumbnail is published at once."""
        data = self.cached(image_id)
        if data is not None:
            future: "Future[Optional[bytes]]" = Future()
            future.set_result(data)
            self._publish(image_id, data)
            return future
        if self._closed:
            return None
        try:
            return self._executor.submit(self._load, image_id)
        except RuntimeError:
            logger.debug("Thumbnail pool is shut down, dropping image %s", image_id)
            return None

    def _load(self, image_id: int) -> Optional[bytes]:
        try:
            data = self.repository.fetch_thumbnail(image_id, self.size)
        except BrowserError as e:
            logger.warning("Thumbnail for image %s not available: %s", image_id, e)
            return None
        with self._lock:
            self._cache[image_id] = data
        self._publish(image_id, data)
        return data

    def _publish(self, image_id: int, data: bytes) -> None:
        if self.bus is not None:
            self.bus.publish(THUMBNAIL_READY, ThumbnailReady(image_id, data))

    def shutdown(self, wait: bool = False) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)
