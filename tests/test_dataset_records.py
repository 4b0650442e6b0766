"""Tests for SQLDatasetStore and DatasetRecordCreator."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from genbi.core.errors import RecordCreationError
from genbi.models.dataset import ColumnType, DatasetRecord
from genbi.models.upload import FileDescriptor
from genbi.services.dataset_records import DatasetRecordCreator

OWNER = "6f1c2a9e-3b7d-4e2f-9a51-0c8d7e6b5a43"


def _file():
    return FileDescriptor.from_bytes("sales_2024.csv", b"a,b\n1,2\n", "text/csv")


async def _create(creator, name="Sales", schema=None, path="uploads/o/sales_1.csv"):
    return await creator.create_record(
        name=name,
        description="Quarterly numbers",
        file=_file(),
        storage_path=path,
        storage_url="http://store/" + path,
        owner_id=OWNER,
        schema=schema or {"b": ColumnType.NUMBER, "a": ColumnType.STRING},
        row_count=1,
        bucket="datasets",
    )


class TestDatasetRecordCreator:
    @pytest.mark.asyncio
    async def test_creates_and_reads_back(self, metadata_store):
        creator = DatasetRecordCreator(metadata_store, storage_type="local")
        record = await _create(creator)

        stored = await metadata_store.get(record.id)
        assert stored.name == "Sales"
        assert stored.file_size == len(b"a,b\n1,2\n")
        assert stored.storage_type == "local"
        assert stored.storage_bucket == "datasets"
        # Column order survives the JSON round trip
        assert list(stored.column_schema) == ["b", "a"]
        assert stored.column_schema["b"] == ColumnType.NUMBER

    @pytest.mark.asyncio
    async def test_blank_name_falls_back_to_file_name(self, metadata_store):
        record = await _create(DatasetRecordCreator(metadata_store), name="   ")
        assert record.name == "sales_2024.csv"

    @pytest.mark.asyncio
    async def test_store_failure_flags_reconciliation(self):
        failing = AsyncMock()
        failing.insert.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        creator = DatasetRecordCreator(failing)

        with pytest.raises(RecordCreationError) as exc_info:
            await _create(creator, path="uploads/o/orphan.csv")

        err = exc_info.value
        assert err.code == "GBI-REC-001"
        assert err.requires_reconciliation
        assert err.context["storage_path"] == "uploads/o/orphan.csv"
        assert err.context["bucket"] == "datasets"


class TestSQLDatasetStore:
    @pytest.mark.asyncio
    async def test_list_newest_first_and_scoped_to_owner(self, metadata_store):
        creator = DatasetRecordCreator(metadata_store)
        first = await _create(creator, name="First", path="p/1.csv")
        second = await _create(creator, name="Second", path="p/2.csv")
        await metadata_store.insert(
            DatasetRecord(user_id="someone-else", name="Other", file_name="x.csv", storage_path="p/3", storage_url="u")
        )

        records = await metadata_store.list_for_user(OWNER)
        assert [r.id for r in records] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_find_by_name(self, metadata_store):
        record = await _create(DatasetRecordCreator(metadata_store), name="Unique")
        assert (await metadata_store.find_by_name(OWNER, "Unique")).id == record.id
        assert await metadata_store.find_by_name(OWNER, "Missing") is None
        assert await metadata_store.find_by_name("another-owner", "Unique") is None

    @pytest.mark.asyncio
    async def test_delete(self, metadata_store):
        record = await _create(DatasetRecordCreator(metadata_store))
        assert await metadata_store.delete(record.id) is True
        assert await metadata_store.get(record.id) is None
        assert await metadata_store.delete(record.id) is False


def test_to_dict_serialises_schema_values():
    record = DatasetRecord(user_id="u", name="n", file_name="f.csv", storage_path="p", storage_url="u")
    record.set_column_schema({"a": ColumnType.DATE})
    body = record.to_dict()
    assert body["column_schema"] == {"a": "date"}
    assert body["id"]
