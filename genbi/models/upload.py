"""
Upload Models
=============

In-process state for a single upload: the selected file, the session that
tracks it through the pipeline, and the intermediate results handed from
one stage to the next. None of this is persisted.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from genbi.models.dataset import ColumnSchema

Row = Dict[str, Any]


class ContentKind(str, Enum):
    CSV = "csv"
    JSON = "json"
    SPREADSHEET = "spreadsheet"


@dataclass
class FileDescriptor:
    """A user-selected file. `size` is the declared byte size."""
    name: str
    content_type: Optional[str]
    size: int
    data: bytes = b""

    @classmethod
    def from_bytes(cls, name: str, data: bytes, content_type: Optional[str] = None) -> "FileDescriptor":
        return cls(name=name, content_type=content_type, size=len(data), data=data)


@dataclass
class SchemaInference:
    schema: ColumnSchema
    row_count: int
    sample_rows: List[Row] = field(default_factory=list)


@dataclass
class UploadResult:
    storage_path: str
    storage_url: str
    bucket: str
    attempts: int = 1
    used_fallback: bool = False


@dataclass
class PreviewSample:
    handle: str
    rows: List[Row]
    synthetic: bool = False
    source: str = "upload"  # upload | storage | schema | filename
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle": self.handle,
            "rows": self.rows,
            "row_count": len(self.rows),
            "synthetic": self.synthetic,
            "source": self.source,
            "created_at": self.created_at,
        }


@dataclass
class UploadSession:
    """Tracks one file from selection until success or cancel.

    Progress never moves backwards while the session is live. A failure
    resets it to 0 and keeps the file so the upload can be retried without
    selecting it again.
    """
    file: FileDescriptor
    name: str = ""
    description: Optional[str] = None
    overwrite: bool = False
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    progress: int = 0
    retry_count: int = 0
    last_error: Optional[str] = None
    preview_handle: Optional[str] = None
    notices: List[str] = field(default_factory=list)
    dataset_id: Optional[str] = None
    cancelled: bool = False

    def report_progress(self, value: int) -> int:
        self.progress = max(self.progress, min(100, int(value)))
        return self.progress

    def add_notice(self, message: str) -> None:
        if message not in self.notices:
            self.notices.append(message)

    def fail(self, error: str) -> None:
        self.progress = 0
        self.retry_count += 1
        self.last_error = error

    def cancel(self) -> None:
        self.cancelled = True
        self.progress = 0

    def complete(self, dataset_id: str) -> None:
        self.dataset_id = dataset_id
        self.progress = 100
        self.last_error = None

    def restart(self) -> None:
        """Prepare a retry of the same file."""
        self.cancelled = False
        self.progress = 0
        self.dataset_id = None
        self.notices = []
