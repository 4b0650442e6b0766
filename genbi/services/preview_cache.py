"""
Preview Cache
=============

Short-lived storage for preview samples and upload recovery hints.

Neither cache is a source of truth: entries expire, and a miss only means
the caller has to re-read from the object store or fall back to a
synthetic sample.
"""

import logging
import re
import threading
import uuid
from dataclasses import dataclass
from typing import List, Optional

from cachetools import TTLCache

from genbi.config import settings
from genbi.core.clock import Clock, system_clock
from genbi.models.upload import PreviewSample, Row

logger = logging.getLogger(__name__)

_HANDLE_UNSAFE = re.compile(r"[^a-zA-Z0-9]+")


class PreviewCache:
    """TTL-bounded preview samples keyed by handle."""

    def __init__(
        self,
        clock: Clock = system_clock,
        ttl_s: Optional[float] = None,
        maxsize: Optional[int] = None,
        max_rows: Optional[int] = None,
    ):
        self.max_rows = max_rows or settings.preview_rows
        self._cache: TTLCache = TTLCache(
            maxsize=maxsize or settings.preview_cache_maxsize,
            ttl=ttl_s or settings.preview_cache_ttl_s,
            timer=clock.monotonic,
        )
        # dataset id -> preview handle, same lifetime as the samples
        self._by_dataset: TTLCache = TTLCache(
            maxsize=maxsize or settings.preview_cache_maxsize,
            ttl=ttl_s or settings.preview_cache_ttl_s,
            timer=clock.monotonic,
        )
        self._lock = threading.Lock()

    @staticmethod
    def new_handle(file_name: str) -> str:
        stem = _HANDLE_UNSAFE.sub("_", file_name or "").strip("_").lower()[:40] or "file"
        return f"preview_{stem}_{uuid.uuid4().hex[:8]}"

    def put(
        self,
        handle: str,
        rows: List[Row],
        synthetic: bool = False,
        source: str = "upload",
    ) -> PreviewSample:
        sample = PreviewSample(
            handle=handle,
            rows=list(rows[: self.max_rows]),
            synthetic=synthetic,
            source=source,
        )
        with self._lock:
            self._cache[handle] = sample
        logger.debug(
            "preview_cached",
            extra={"preview.handle": handle, "preview.rows": len(sample.rows), "preview.source": source},
        )
        return sample

    def get(self, handle: str) -> Optional[PreviewSample]:
        with self._lock:
            return self._cache.get(handle)

    def link_dataset(self, dataset_id: str, handle: str) -> None:
        with self._lock:
            self._by_dataset[dataset_id] = handle

    def get_for_dataset(self, dataset_id: str) -> Optional[PreviewSample]:
        with self._lock:
            handle = self._by_dataset.get(dataset_id)
            return self._cache.get(handle) if handle else None

    def discard(self, handle: str) -> None:
        with self._lock:
            self._cache.pop(handle, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


@dataclass
class RecoveryEntry:
    dataset_id: str
    preview_handle: Optional[str]
    dataset_name: str


class RecoveryCache:
    """Last successful upload per owner, for resuming after a page reload."""

    def __init__(self, clock: Clock = system_clock, ttl_s: Optional[float] = None, maxsize: Optional[int] = None):
        self._cache: TTLCache = TTLCache(
            maxsize=maxsize or settings.recovery_cache_maxsize,
            ttl=ttl_s or settings.recovery_cache_ttl_s,
            timer=clock.monotonic,
        )
        self._lock = threading.Lock()

    def remember(self, owner_id: str, entry: RecoveryEntry) -> None:
        with self._lock:
            self._cache[owner_id] = entry

    def recall(self, owner_id: str) -> Optional[RecoveryEntry]:
        with self._lock:
            return self._cache.get(owner_id)

    def forget(self, owner_id: str) -> None:
        with self._lock:
            self._cache.pop(owner_id, None)
