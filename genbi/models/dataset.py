"""
Dataset Models
==============

SQLModel table for dataset metadata records plus the closed set of
column types produced by schema inference.

A record is only ever written after its raw file is in the object store,
so every row points at a stored object.
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


class ColumnType(str, Enum):
    """Inferred type of a dataset column."""
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    STRING = "string"
    OBJECT = "object"
    UNKNOWN = "unknown"


# Ordered column name -> type; empty means "infer from raw rows at use time"
ColumnSchema = Dict[str, ColumnType]


class StorageType(str, Enum):
    LOCAL = "local"
    SUPABASE = "supabase"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DatasetRecord(SQLModel, table=True):
    """A stored tabular file and what was learned about it at upload time."""

    __tablename__ = "datasets"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    user_id: str = Field(index=True)
    name: str = Field(index=True)
    description: Optional[str] = Field(default=None)

    file_name: str
    file_size: int = Field(default=0)
    row_count: int = Field(default=0)

    # Ordered {column: type} as JSON; key order is header order
    column_schema_json: str = Field(
        default="{}",
        sa_column=Column(Text, nullable=False, default="{}"),
    )

    storage_path: str
    storage_url: str
    storage_type: str = Field(default=StorageType.LOCAL.value)
    storage_bucket: str = Field(default="datasets")

    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def column_schema(self) -> ColumnSchema:
        raw = json.loads(self.column_schema_json or "{}")
        return {name: ColumnType(value) for name, value in raw.items()}

    def set_column_schema(self, schema: ColumnSchema) -> None:
        self.column_schema_json = json.dumps(
            {name: ColumnType(value).value for name, value in schema.items()}
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response dict."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "description": self.description,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "row_count": self.row_count,
            "column_schema": {k: v.value for k, v in self.column_schema.items()},
            "storage_path": self.storage_path,
            "storage_url": self.storage_url,
            "storage_type": self.storage_type,
            "storage_bucket": self.storage_bucket,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
