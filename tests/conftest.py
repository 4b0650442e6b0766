"""
Pytest configuration for GenBI ingest tests.
Points every directory and the database at a temp location before any
genbi module reads settings.
"""

import asyncio
import os
import tempfile

_test_data_dir = tempfile.mkdtemp(prefix="genbi_test_")
os.environ.setdefault("GENBI_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("GENBI_STORAGE_DIRECTORY", os.path.join(_test_data_dir, "storage"))
os.environ.setdefault("GENBI_LOG_DIRECTORY", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("GENBI_STORAGE_BACKEND", "local")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")

import pytest

from genbi.core.database import build_engine, init_db
from genbi.core.errors.registry import error_registry
from genbi.services.dataset_records import DatasetRecordCreator, SQLDatasetStore
from genbi.services.file_validator import FileValidator
from genbi.services.ingestion_pipeline import IngestionPipeline
from genbi.services.object_store import LocalObjectStore
from genbi.services.preview_cache import PreviewCache, RecoveryCache
from genbi.services.schema_inference import SchemaInferencer
from genbi.services.storage_provisioner import StorageProvisioner, default_strategies
from genbi.services.upload_orchestrator import UploadOrchestrator

# Error handler needs the registry to map codes to HTTP statuses
error_registry.load()

OWNER_ID = "6f1c2a9e-3b7d-4e2f-9a51-0c8d7e6b5a43"


class FakeClock:
    """Deterministic clock; sleep advances time and yields once to the loop."""

    def __init__(self, start: float = 1_700_000_000.0):
        self._wall_start = start
        self._mono = 0.0
        self.sleeps = []

    def time(self) -> float:
        return self._wall_start + self._mono

    def monotonic(self) -> float:
        return self._mono

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self._mono += seconds
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self._mono += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def local_store(tmp_path):
    return LocalObjectStore(str(tmp_path / "storage"), "http://testserver/storage")


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path}/metadata.db")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def metadata_store(engine):
    return SQLDatasetStore(engine)


@pytest.fixture
def make_pipeline(clock, metadata_store):
    """Build a pipeline around the given store with test-sized limits."""

    def _make(store, **orchestrator_kwargs):
        provisioner = StorageProvisioner(default_strategies(store), admin=store)
        orchestrator = UploadOrchestrator(store, provisioner, clock, **orchestrator_kwargs)
        return IngestionPipeline(
            validator=FileValidator(),
            inferencer=SchemaInferencer(),
            provisioner=provisioner,
            orchestrator=orchestrator,
            records=DatasetRecordCreator(metadata_store, storage_type=getattr(store, "backend_name", "local")),
            metadata=metadata_store,
            previews=PreviewCache(clock),
            recovery=RecoveryCache(clock),
            store=store,
            clock=clock,
        )

    return _make
