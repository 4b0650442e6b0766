"""
Dataset Service
===============

Read and delete operations over a user's dataset library, plus storage
statistics. Uploads go through the ingestion pipeline instead.
"""

import logging
from typing import Any, Dict, List, Optional

from genbi.config import settings
from genbi.core.errors import DatasetNotFound, InferenceError, StorageOperationError
from genbi.models.dataset import DatasetRecord
from genbi.models.upload import PreviewSample
from genbi.services.dataset_records import MetadataStore
from genbi.services.file_validator import FileValidator
from genbi.services.ingestion_pipeline import read_stored_rows, synthetic_sample
from genbi.services.object_store import ObjectStore, StorageError
from genbi.services.preview_cache import PreviewCache
from genbi.services.schema_inference import SchemaInferencer
from genbi.utils.sanitization import format_byte_size

logger = logging.getLogger(__name__)


def _truncated(sample: PreviewSample, limit: int) -> PreviewSample:
    """Copy of a cached sample; the cached rows stay whole."""
    return PreviewSample(
        handle=sample.handle,
        rows=sample.rows[:limit],
        synthetic=sample.synthetic,
        source=sample.source,
        created_at=sample.created_at,
    )


class DatasetService:
    def __init__(
        self,
        metadata: MetadataStore,
        store: ObjectStore,
        previews: PreviewCache,
        inferencer: SchemaInferencer,
        validator: FileValidator,
        cold_bucket: Optional[str] = None,
    ):
        self.metadata = metadata
        self.store = store
        self.previews = previews
        self.inferencer = inferencer
        self.validator = validator
        self.cold_bucket = cold_bucket or settings.cold_bucket

    async def list_datasets(self, owner_id: str) -> List[DatasetRecord]:
        """Owner's datasets, newest first."""
        return await self.metadata.list_for_user(owner_id)

    async def get_dataset(self, owner_id: str, dataset_id: str) -> DatasetRecord:
        record = await self.metadata.get(dataset_id)
        # Other users' datasets are reported as missing
        if record is None or record.user_id != owner_id:
            raise DatasetNotFound(f"dataset {dataset_id} not found", context={"dataset_id": dataset_id})
        return record

    async def preview(self, owner_id: str, dataset_id: str, limit: Optional[int] = None) -> PreviewSample:
        """Rows re-read from storage, else the cached sample, else generated rows."""
        record = await self.get_dataset(owner_id, dataset_id)
        limit = max(1, min(limit or settings.preview_rows, settings.preview_rows))
        handle = f"dataset_{record.id}"

        try:
            rows = await read_stored_rows(
                self.store, self.inferencer, self.validator,
                record.storage_bucket, record.storage_path, record.file_name,
            )
        except (StorageError, InferenceError, TimeoutError) as e:
            logger.warning("dataset_preview_read_failed", extra={"dataset.id": record.id, "error.message": str(e)})
        else:
            sample = self.previews.put(handle, rows, source="storage")
            self.previews.link_dataset(record.id, handle)
            return _truncated(sample, limit)

        cached = self.previews.get_for_dataset(record.id)
        if cached is None:
            cached = synthetic_sample(self.previews, handle, record.column_schema, record.file_name)
        return _truncated(cached, limit)

    async def delete_dataset(self, owner_id: str, dataset_id: str) -> None:
        """Remove the stored object, then the record."""
        record = await self.get_dataset(owner_id, dataset_id)
        try:
            await self.store.remove(record.storage_bucket, [record.storage_path])
        except StorageError as e:
            if not e.is_not_found:
                raise StorageOperationError(
                    f"could not remove {record.storage_path}: {e.message}",
                    context={"dataset_id": record.id, "storage_path": record.storage_path},
                ) from e
            logger.info("dataset_object_already_gone", extra={"dataset.id": record.id})

        await self.metadata.delete(record.id)
        logger.info("dataset_deleted", extra={"dataset.id": record.id})

    async def storage_stats(self, owner_id: str) -> Dict[str, Any]:
        records = await self.metadata.list_for_user(owner_id)
        cold = [r for r in records if r.storage_bucket == self.cold_bucket]
        total_size = sum(r.file_size for r in records)
        return {
            "total_files": len(records),
            "total_size": total_size,
            "total_size_formatted": format_byte_size(total_size),
            "cold_storage_files": len(cold),
            "cold_storage_size": sum(r.file_size for r in cold),
            "storage_types": sorted({r.storage_type for r in records}),
            "total_fields": sum(len(r.column_schema) for r in records),
        }
