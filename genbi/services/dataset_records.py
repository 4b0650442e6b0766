"""
Dataset Records
===============

Metadata store for dataset records and the creator that writes a record
once its file is safely in object storage.

A record write that fails after a successful upload leaves an orphan
object. The raised RecordCreationError carries its location so it can be
reconciled; the object is not deleted automatically.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from sqlalchemy.engine import Engine
from sqlmodel import select

from genbi.core.async_utils import run_sync
from genbi.core.database import get_engine, get_session_context, sqlite_retry
from genbi.core.errors import RecordCreationError
from genbi.models.dataset import ColumnSchema, DatasetRecord
from genbi.models.upload import FileDescriptor

logger = logging.getLogger(__name__)


class MetadataStore(Protocol):
    async def insert(self, record: DatasetRecord) -> DatasetRecord: ...

    async def get(self, dataset_id: str) -> Optional[DatasetRecord]: ...

    async def list_for_user(self, user_id: str) -> List[DatasetRecord]: ...

    async def find_by_name(self, user_id: str, name: str) -> Optional[DatasetRecord]: ...

    async def delete(self, dataset_id: str) -> bool: ...


class SQLDatasetStore:
    """MetadataStore over SQLModel sessions, run in worker threads."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        return self._engine or get_engine()

    def _insert(self, record: DatasetRecord) -> DatasetRecord:
        def _write():
            with get_session_context(self.engine) as session:
                session.add(record)
                session.commit()
                session.refresh(record)
                return record
        return sqlite_retry(_write)

    def _get(self, dataset_id: str) -> Optional[DatasetRecord]:
        with get_session_context(self.engine) as session:
            return session.get(DatasetRecord, dataset_id)

    def _list_for_user(self, user_id: str) -> List[DatasetRecord]:
        with get_session_context(self.engine) as session:
            stmt = (
                select(DatasetRecord)
                .where(DatasetRecord.user_id == user_id)
                .order_by(DatasetRecord.created_at.desc())
            )
            return list(session.exec(stmt).all())

    def _find_by_name(self, user_id: str, name: str) -> Optional[DatasetRecord]:
        with get_session_context(self.engine) as session:
            stmt = select(DatasetRecord).where(
                DatasetRecord.user_id == user_id, DatasetRecord.name == name
            )
            return session.exec(stmt).first()

    def _delete(self, dataset_id: str) -> bool:
        def _remove():
            with get_session_context(self.engine) as session:
                record = session.get(DatasetRecord, dataset_id)
                if record is None:
                    return False
                session.delete(record)
                session.commit()
                return True
        return sqlite_retry(_remove)

    async def insert(self, record: DatasetRecord) -> DatasetRecord:
        return await run_sync(self._insert, record)

    async def get(self, dataset_id: str) -> Optional[DatasetRecord]:
        return await run_sync(self._get, dataset_id)

    async def list_for_user(self, user_id: str) -> List[DatasetRecord]:
        return await run_sync(self._list_for_user, user_id)

    async def find_by_name(self, user_id: str, name: str) -> Optional[DatasetRecord]:
        return await run_sync(self._find_by_name, user_id, name)

    async def delete(self, dataset_id: str) -> bool:
        return await run_sync(self._delete, dataset_id)


class DatasetRecordCreator:
    def __init__(self, store: MetadataStore, storage_type: str = "local"):
        self.store = store
        self.storage_type = storage_type

    async def create_record(
        self,
        name: str,
        description: Optional[str],
        file: FileDescriptor,
        storage_path: str,
        storage_url: str,
        owner_id: str,
        schema: ColumnSchema,
        row_count: int,
        bucket: str,
    ) -> DatasetRecord:
        now = datetime.now(timezone.utc)
        record = DatasetRecord(
            user_id=owner_id,
            name=(name or "").strip() or file.name,
            description=(description or "").strip() or None,
            file_name=file.name,
            file_size=file.size,
            row_count=row_count,
            storage_path=storage_path,
            storage_url=storage_url,
            storage_type=self.storage_type,
            storage_bucket=bucket,
            created_at=now,
            updated_at=now,
        )
        record.set_column_schema(schema)

        try:
            saved = await self.store.insert(record)
        except Exception as e:
            logger.critical(
                "dataset_record_failed_orphan_object",
                extra={"storage.path": storage_path, "storage.bucket": bucket, "error.message": str(e)},
            )
            raise RecordCreationError(
                f"metadata insert failed: {e}",
                context={
                    "requires_reconciliation": True,
                    "storage_path": storage_path,
                    "bucket": bucket,
                    "owner_id": owner_id,
                },
            ) from e

        logger.info(
            "dataset_record_created",
            extra={"dataset.id": saved.id, "dataset.rows": row_count, "storage.path": storage_path},
        )
        return saved
