"""
Service wiring.

Each getter lazily builds one process-wide instance from settings. Routers
receive them through FastAPI Depends, so tests swap any of them with
app.dependency_overrides.
"""

from typing import Optional

from fastapi import Depends, Header

from genbi.config import settings
from genbi.core.clock import system_clock
from genbi.services.dataset_records import DatasetRecordCreator, SQLDatasetStore
from genbi.services.dataset_service import DatasetService
from genbi.services.file_validator import FileValidator
from genbi.services.ingestion_pipeline import IngestionPipeline
from genbi.services.object_store import build_object_store
from genbi.services.preview_cache import PreviewCache, RecoveryCache
from genbi.services.schema_inference import SchemaInferencer
from genbi.services.storage_provisioner import StorageProvisioner, default_strategies
from genbi.services.upload_orchestrator import UploadOrchestrator

_object_store = None
_provisioner: Optional[StorageProvisioner] = None
_metadata_store: Optional[SQLDatasetStore] = None
_preview_cache: Optional[PreviewCache] = None
_recovery_cache: Optional[RecoveryCache] = None
_pipeline: Optional[IngestionPipeline] = None
_dataset_service: Optional[DatasetService] = None


def get_object_store():
    global _object_store
    if _object_store is None:
        _object_store = build_object_store(settings)
    return _object_store


def get_provisioner() -> StorageProvisioner:
    global _provisioner
    if _provisioner is None:
        store = get_object_store()
        _provisioner = StorageProvisioner(default_strategies(store), admin=store)
    return _provisioner


def get_metadata_store() -> SQLDatasetStore:
    global _metadata_store
    if _metadata_store is None:
        _metadata_store = SQLDatasetStore()
    return _metadata_store


def get_preview_cache() -> PreviewCache:
    global _preview_cache
    if _preview_cache is None:
        _preview_cache = PreviewCache(system_clock)
    return _preview_cache


def get_recovery_cache() -> RecoveryCache:
    global _recovery_cache
    if _recovery_cache is None:
        _recovery_cache = RecoveryCache(system_clock)
    return _recovery_cache


def get_pipeline() -> IngestionPipeline:
    global _pipeline
    if _pipeline is None:
        store = get_object_store()
        provisioner = get_provisioner()
        metadata = get_metadata_store()
        _pipeline = IngestionPipeline(
            validator=FileValidator(),
            inferencer=SchemaInferencer(),
            provisioner=provisioner,
            orchestrator=UploadOrchestrator(store, provisioner, system_clock),
            records=DatasetRecordCreator(metadata, storage_type=store.backend_name),
            metadata=metadata,
            previews=get_preview_cache(),
            recovery=get_recovery_cache(),
            store=store,
            clock=system_clock,
        )
    return _pipeline


def get_dataset_service() -> DatasetService:
    global _dataset_service
    if _dataset_service is None:
        _dataset_service = DatasetService(
            metadata=get_metadata_store(),
            store=get_object_store(),
            previews=get_preview_cache(),
            inferencer=SchemaInferencer(),
            validator=FileValidator(),
        )
    return _dataset_service


def get_owner_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> str:
    """Validated caller id from the X-User-Id header."""
    return pipeline.resolve_owner(x_user_id)
