"""
Upload Orchestrator
===================

Moves a validated file into the hot bucket.

Strategy:
    1. Primary: direct single-object upload, or for files above the chunk
       threshold sequential `{path}_chunk_{i}` parts merged server-side.
       Files above the retry threshold get several attempts with a fixed
       delay between them; smaller files get one.
    2. Fallback: force bucket provisioning, then one direct upload with
       upsert enabled.
    3. Otherwise fail with the first primary error, classified as an
       access-policy denial or a plain transfer failure. If provisioning
       is known to have failed for the bucket, that is reported instead.

Progress is clamped to a high-water mark. While bytes are in flight a
ticker nudges it toward 90 so the caller sees movement on transports that
report no progress of their own; 100 is only ever reported on success.
"""

import asyncio
import contextlib
import logging
import math
from typing import Callable, List, Optional

from genbi.config import settings
from genbi.core.clock import Clock, system_clock
from genbi.core.errors import ProvisioningError, TransferError, UploadCancelled
from genbi.models.upload import FileDescriptor, UploadResult
from genbi.services.object_store import ObjectStore, StorageError
from genbi.services.storage_provisioner import StorageProvisioner
from genbi.utils.sanitization import sanitize_path_component

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
CancelCheck = Callable[[], bool]

SIMULATED_CEILING = 90
_LARGE_FILE_BYTES = 5 * 1024 * 1024


def build_destination_path(name: str, owner_id: str, ext: str, timestamp_ms: int) -> str:
    """uploads/{owner}/{sanitized name}_{ms}.{ext}"""
    stem = f"{sanitize_path_component(name)}_{timestamp_ms}"
    return f"uploads/{owner_id}/{stem}.{ext}" if ext else f"uploads/{owner_id}/{stem}"


class ProgressTracker:
    """Forwards progress values, never letting them go backwards."""

    def __init__(self, on_progress: Optional[ProgressCallback] = None, cancelled: Optional[CancelCheck] = None):
        self._on_progress = on_progress
        self._cancelled = cancelled or (lambda: False)
        self.value = 0

    def report(self, value: int) -> int:
        clamped = max(self.value, min(100, int(value)))
        changed = clamped != self.value
        self.value = clamped
        if changed and self._on_progress is not None and not self._cancelled():
            self._on_progress(clamped)
        return clamped

    def reset(self) -> None:
        self.value = 0


class UploadOrchestrator:
    def __init__(
        self,
        store: ObjectStore,
        provisioner: StorageProvisioner,
        clock: Clock = system_clock,
        *,
        bucket: Optional[str] = None,
        retry_threshold_bytes: Optional[int] = None,
        chunk_threshold_bytes: Optional[int] = None,
        chunk_size_bytes: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay_s: Optional[float] = None,
        deadline_s: Optional[float] = None,
        tick_s: Optional[float] = None,
        tick_cutoff_s: Optional[float] = None,
    ):
        self.store = store
        self.provisioner = provisioner
        self.clock = clock
        self.bucket = bucket or settings.hot_bucket
        self.retry_threshold_bytes = retry_threshold_bytes if retry_threshold_bytes is not None else settings.direct_upload_max_bytes
        self.chunk_threshold_bytes = chunk_threshold_bytes if chunk_threshold_bytes is not None else settings.direct_upload_max_bytes
        self.chunk_size_bytes = chunk_size_bytes or settings.chunk_size_bytes
        self.max_attempts = max_attempts or settings.upload_max_attempts
        self.retry_delay_s = retry_delay_s if retry_delay_s is not None else settings.upload_retry_delay_s
        self.deadline_s = deadline_s if deadline_s is not None else settings.upload_deadline_s
        self.tick_s = tick_s or settings.progress_tick_s
        self.tick_cutoff_s = tick_cutoff_s if tick_cutoff_s is not None else settings.progress_cutoff_s

    def attempts_for(self, size: int) -> int:
        return 1 if size <= self.retry_threshold_bytes else self.max_attempts

    async def upload(
        self,
        file: FileDescriptor,
        destination_path: str,
        on_progress: Optional[ProgressCallback] = None,
        cancelled: Optional[CancelCheck] = None,
    ) -> UploadResult:
        cancelled = cancelled or (lambda: False)
        tracker = ProgressTracker(on_progress, cancelled)
        deadline = self.clock.monotonic() + self.deadline_s
        log_ctx = {"upload.path": destination_path, "upload.bucket": self.bucket, "upload.size": file.size}

        first_error: Optional[StorageError] = None
        attempts = self.attempts_for(file.size)
        attempt = 0

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await self.clock.sleep(self.retry_delay_s)
            self._check_cancelled(cancelled, destination_path)
            if self.clock.monotonic() >= deadline:
                logger.warning("upload_deadline_reached", extra={**log_ctx, "upload.attempt": attempt})
                break
            try:
                url = await self._with_ticker(tracker, file.size, self._primary(file, destination_path, tracker, cancelled))
            except StorageError as e:
                first_error = first_error or e
                logger.warning(
                    "upload_attempt_failed",
                    extra={**log_ctx, "upload.attempt": attempt, "error.status": e.status_code, "error.message": e.message},
                )
                continue
            tracker.report(100)
            logger.info("upload_completed", extra={**log_ctx, "upload.attempt": attempt})
            return UploadResult(destination_path, url, self.bucket, attempts=attempt)

        self._check_cancelled(cancelled, destination_path)
        if self.clock.monotonic() < deadline:
            url = await self._fallback(file, destination_path, tracker, log_ctx)
            if url is not None:
                tracker.report(100)
                return UploadResult(destination_path, url, self.bucket, attempts=attempt + 1, used_fallback=True)
        else:
            first_error = first_error or StorageError(f"upload deadline of {self.deadline_s}s exceeded")

        raise self._final_error(first_error, destination_path, attempt)

    # ------------------------------------------------------------------
    # Transfer methods
    # ------------------------------------------------------------------

    async def _primary(self, file: FileDescriptor, path: str, tracker: ProgressTracker, cancelled: CancelCheck) -> str:
        if file.size > self.chunk_threshold_bytes:
            return await self._chunked_upload(file, path, tracker, cancelled)
        return await self.store.upload(
            self.bucket, path, file.data, content_type=file.content_type, upsert=False
        )

    async def _chunked_upload(
        self, file: FileDescriptor, path: str, tracker: ProgressTracker, cancelled: CancelCheck
    ) -> str:
        data = file.data
        total = max(1, math.ceil(len(data) / self.chunk_size_bytes))
        parts: List[str] = []
        try:
            for index in range(total):
                self._check_cancelled(cancelled, path)
                part_path = f"{path}_chunk_{index}"
                chunk = data[index * self.chunk_size_bytes:(index + 1) * self.chunk_size_bytes]
                await self.store.upload(
                    self.bucket, part_path, chunk, content_type="application/octet-stream", upsert=True
                )
                parts.append(part_path)
                tracker.report(round((index + 1) / total * SIMULATED_CEILING))
            return await self.store.merge_chunks(self.bucket, path, parts, content_type=file.content_type)
        finally:
            if parts:
                await self._remove_parts(parts)

    async def _remove_parts(self, parts: List[str]) -> None:
        try:
            await self.store.remove(self.bucket, parts)
        except StorageError as e:
            logger.warning(
                "chunk_cleanup_failed",
                extra={"upload.bucket": self.bucket, "upload.parts": len(parts), "error.message": e.message},
            )

    async def _fallback(self, file: FileDescriptor, path: str, tracker: ProgressTracker, log_ctx: dict) -> Optional[str]:
        logger.info("upload_fallback_started", extra=log_ctx)
        await self.provisioner.ensure_buckets(force=True)
        try:
            return await self._with_ticker(
                tracker,
                file.size,
                self.store.upload(self.bucket, path, file.data, content_type=file.content_type, upsert=True),
            )
        except StorageError as e:
            logger.warning(
                "upload_fallback_failed",
                extra={**log_ctx, "error.status": e.status_code, "error.message": e.message},
            )
            return None

    # ------------------------------------------------------------------
    # Progress simulation
    # ------------------------------------------------------------------

    async def _with_ticker(self, tracker: ProgressTracker, size: int, transfer):
        step = 1 if size > _LARGE_FILE_BYTES else 3
        ticker = asyncio.create_task(self._tick(tracker, step))
        try:
            return await transfer
        finally:
            ticker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await ticker

    async def _tick(self, tracker: ProgressTracker, step: int) -> None:
        started = self.clock.monotonic()
        while True:
            await self.clock.sleep(self.tick_s)
            if self.clock.monotonic() - started >= self.tick_cutoff_s:
                return
            if tracker.value < SIMULATED_CEILING:
                tracker.report(min(SIMULATED_CEILING, tracker.value + step))

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    @staticmethod
    def _check_cancelled(cancelled: CancelCheck, path: str) -> None:
        if cancelled():
            raise UploadCancelled(f"upload of {path} cancelled", context={"storage_path": path})

    def _final_error(self, error: Optional[StorageError], path: str, attempts: int):
        context = {
            "storage_path": path,
            "bucket": self.bucket,
            "attempts": attempts,
            "status": error.status_code if error else None,
        }
        detail = error.message if error else "upload failed"

        if self.provisioner.has_failed(self.bucket):
            return ProvisioningError(f"bucket {self.bucket} unavailable: {detail}", context=context)
        if error is not None and error.is_access_denied:
            return TransferError(detail, code="GBI-UPL-002", context=context)
        return TransferError(detail, context=context)
