"""
Ingestion Pipeline
==================

Runs one upload session end to end:

    validate -> infer schema (best effort) -> ensure buckets
      -> upload -> create record -> populate preview

Validation and owner errors stop the run before any storage call. Schema
inference and bucket provisioning only degrade the result (a notice is
added). Transfer and record failures are fatal; they reset the session's
progress to 0 and leave it ready to retry with the same file.
The progress callback sees 0 after any terminal failure and 100 only
once the record exists.

A dataset becomes visible only when its record is written, which happens
after the object is stored. On overwrite the previous object and record are
removed after the new record is written.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from genbi.config import settings
from genbi.core.async_utils import run_sync
from genbi.core.clock import Clock, system_clock
from genbi.core.errors import (
    DuplicateDatasetError,
    InferenceError,
    UploadCancelled,
    ValidationError,
)
from genbi.core.structured_logging import bind_upload_session
from genbi.models.dataset import ColumnSchema, DatasetRecord
from genbi.models.upload import (
    FileDescriptor,
    PreviewSample,
    Row,
    SchemaInference,
    UploadSession,
)
from genbi.services.dataset_records import DatasetRecordCreator, MetadataStore
from genbi.services.file_validator import FileValidator
from genbi.services.object_store import ObjectStore, StorageError
from genbi.services.preview_cache import PreviewCache, RecoveryCache, RecoveryEntry
from genbi.services.schema_inference import SchemaInferencer
from genbi.services.storage_provisioner import StorageProvisioner
from genbi.services.synthetic_preview import rows_from_filename, rows_from_schema
from genbi.services.upload_orchestrator import UploadOrchestrator, build_destination_path
from genbi.utils.sanitization import dataset_name_from_filename, file_extension

logger = logging.getLogger(__name__)

NOTICE_SCHEMA_DEFERRED = "Column types could not be detected from the file; they will be inferred when the data is used."
NOTICE_STORAGE_UNVERIFIED = "Storage buckets could not be verified; the upload was attempted anyway."
NOTICE_SYNTHETIC_PREVIEW = "The preview shows generated sample rows because the stored file could not be read."
NOTICE_OVERWRITE_CLEANUP = "The previous version of this dataset could not be fully removed."


@dataclass
class IngestionResult:
    dataset: DatasetRecord
    preview: PreviewSample
    notices: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "dataset": self.dataset.to_dict(),
            "preview_handle": self.preview.handle,
            "preview": self.preview.to_dict(),
            "notices": list(self.notices),
        }


def _report(on_progress: Optional[Callable[[int], None]], value: int) -> None:
    if on_progress is not None:
        on_progress(value)


def synthetic_sample(
    previews: PreviewCache, handle: str, schema: ColumnSchema, file_name: str
) -> PreviewSample:
    """Cache generated rows, always flagged synthetic."""
    if schema:
        return previews.put(handle, rows_from_schema(schema), synthetic=True, source="schema")
    return previews.put(handle, rows_from_filename(file_name), synthetic=True, source="filename")


async def read_stored_rows(
    store: ObjectStore,
    inferencer: SchemaInferencer,
    validator: FileValidator,
    bucket: str,
    storage_path: str,
    file_name: str,
) -> List[Row]:
    """Download a stored object and decode its leading rows.

    Raises StorageError when the object cannot be read and InferenceError
    when its content cannot be decoded.
    """
    kind = validator.classify(FileDescriptor(name=file_name, content_type=None, size=0))
    if kind is None:
        raise InferenceError(f"cannot decode {file_name!r}", code="GBI-INF-002")
    data = await store.download(bucket, storage_path)
    inference = await run_sync(inferencer.infer, data, kind)
    return inference.sample_rows


class IngestionPipeline:
    def __init__(
        self,
        validator: FileValidator,
        inferencer: SchemaInferencer,
        provisioner: StorageProvisioner,
        orchestrator: UploadOrchestrator,
        records: DatasetRecordCreator,
        metadata: MetadataStore,
        previews: PreviewCache,
        recovery: RecoveryCache,
        store: ObjectStore,
        clock: Clock = system_clock,
        system_user_id: Optional[str] = None,
        allow_system_user: Optional[bool] = None,
    ):
        self.validator = validator
        self.inferencer = inferencer
        self.provisioner = provisioner
        self.orchestrator = orchestrator
        self.records = records
        self.metadata = metadata
        self.previews = previews
        self.recovery = recovery
        self.store = store
        self.clock = clock
        self.system_user_id = system_user_id or settings.system_user_id
        self.allow_system_user = settings.allow_system_user if allow_system_user is None else allow_system_user

    def resolve_owner(self, owner_id: Optional[str]) -> str:
        """Normalised owner UUID; the system user stands in for a missing id when allowed."""
        if not owner_id or not owner_id.strip():
            if self.allow_system_user:
                return self.system_user_id
            raise ValidationError("invalid-owner", detail="no user id supplied")
        try:
            return str(uuid.UUID(owner_id.strip()))
        except ValueError:
            raise ValidationError("invalid-owner", detail=f"malformed user id {owner_id!r}")

    async def run(
        self,
        session: UploadSession,
        owner_id: Optional[str],
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> IngestionResult:
        session.restart()
        with bind_upload_session(session.session_id):
            try:
                return await self._run(session, owner_id, on_progress)
            except UploadCancelled:
                session.cancel()
                _report(on_progress, session.progress)
                logger.info("ingestion_cancelled", extra={"file.name": session.file.name})
                raise
            except Exception as e:
                session.fail(getattr(e, "code", type(e).__name__))
                _report(on_progress, session.progress)
                logger.warning(
                    "ingestion_failed",
                    extra={
                        "file.name": session.file.name,
                        "session.retry_count": session.retry_count,
                        "error.code": session.last_error,
                    },
                )
                raise

    async def _run(
        self,
        session: UploadSession,
        owner_id: Optional[str],
        on_progress: Optional[Callable[[int], None]],
    ) -> IngestionResult:
        file = session.file
        owner = self.resolve_owner(owner_id)
        kind = self.validator.validate(file)

        session.name = (session.name or "").strip() or dataset_name_from_filename(file.name) or file.name
        existing = await self.metadata.find_by_name(owner, session.name)
        if existing is not None and not session.overwrite:
            raise DuplicateDatasetError(
                f"dataset {session.name!r} already exists",
                context={"existing_dataset_id": existing.id, "name": session.name},
            )

        logger.info(
            "ingestion_started",
            extra={"file.name": file.name, "file.size": file.size, "file.kind": kind.value, "dataset.overwrite": existing is not None},
        )

        inference = await self._infer(session, kind)
        session.preview_handle = self.previews.new_handle(file.name)
        if inference.sample_rows:
            self.previews.put(session.preview_handle, inference.sample_rows, source="upload")

        if not await self.provisioner.ensure_buckets():
            session.add_notice(NOTICE_STORAGE_UNVERIFIED)

        destination = build_destination_path(
            session.name, owner, file_extension(file.name), int(self.clock.time() * 1000)
        )

        def _progress(value: int) -> None:
            # 100 is held back until the record exists
            _report(on_progress, session.report_progress(min(value, 99)))

        upload = await self.orchestrator.upload(
            file, destination, on_progress=_progress, cancelled=lambda: session.cancelled
        )

        record = await self.records.create_record(
            name=session.name,
            description=session.description,
            file=file,
            storage_path=upload.storage_path,
            storage_url=upload.storage_url,
            owner_id=owner,
            schema=inference.schema,
            row_count=inference.row_count,
            bucket=upload.bucket,
        )

        if existing is not None:
            # Previous object is removed only once its replacement is recorded
            if existing.storage_path != record.storage_path:
                await self._remove_previous_object(session, existing)
            await self._remove_previous_record(session, existing)

        preview = await self._authoritative_preview(session, record, inference)
        self.previews.link_dataset(record.id, preview.handle)

        session.complete(record.id)
        _report(on_progress, session.progress)
        self.recovery.remember(
            owner, RecoveryEntry(dataset_id=record.id, preview_handle=preview.handle, dataset_name=record.name)
        )

        logger.info(
            "ingestion_completed",
            extra={
                "dataset.id": record.id,
                "dataset.rows": record.row_count,
                "upload.attempts": upload.attempts,
                "upload.used_fallback": upload.used_fallback,
                "preview.synthetic": preview.synthetic,
            },
        )
        return IngestionResult(dataset=record, preview=preview, notices=list(session.notices))

    async def _infer(self, session: UploadSession, kind) -> SchemaInference:
        try:
            return await run_sync(self.inferencer.infer, session.file.data, kind)
        except (InferenceError, TimeoutError) as e:
            code = getattr(e, "code", "GBI-INF-001")
            logger.info(
                "schema_inference_skipped",
                extra={"file.name": session.file.name, "error.code": code, "error.message": str(e)},
            )
            if code != "GBI-INF-002":
                session.add_notice(NOTICE_SCHEMA_DEFERRED)
            return SchemaInference(schema={}, row_count=0, sample_rows=[])

    async def _authoritative_preview(
        self, session: UploadSession, record: DatasetRecord, inference: SchemaInference
    ) -> PreviewSample:
        handle = session.preview_handle
        if inference.sample_rows:
            # The stored object is byte-identical to what was sampled
            return self.previews.put(handle, inference.sample_rows, source="storage")

        try:
            rows = await read_stored_rows(
                self.store,
                self.inferencer,
                self.validator,
                record.storage_bucket,
                record.storage_path,
                record.file_name,
            )
        except (StorageError, InferenceError, TimeoutError) as e:
            logger.warning(
                "authoritative_preview_failed",
                extra={"dataset.id": record.id, "error.message": str(e)},
            )
            session.add_notice(NOTICE_SYNTHETIC_PREVIEW)
            return synthetic_sample(self.previews, handle, record.column_schema, record.file_name)
        return self.previews.put(handle, rows, source="storage")

    async def _remove_previous_object(self, session: UploadSession, existing: DatasetRecord) -> None:
        try:
            await self.store.remove(existing.storage_bucket, [existing.storage_path])
        except StorageError as e:
            logger.warning(
                "overwrite_object_cleanup_failed",
                extra={"dataset.id": existing.id, "storage.path": existing.storage_path, "error.message": e.message},
            )
            session.add_notice(NOTICE_OVERWRITE_CLEANUP)

    async def _remove_previous_record(self, session: UploadSession, existing: DatasetRecord) -> None:
        try:
            await self.metadata.delete(existing.id)
        except Exception as e:
            logger.warning(
                "overwrite_record_cleanup_failed",
                extra={"dataset.id": existing.id, "error.message": str(e)},
            )
            session.add_notice(NOTICE_OVERWRITE_CLEANUP)
