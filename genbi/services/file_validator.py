"""
File Validator
==============

Accept/reject decision for a selected file, made before any I/O.

Declared MIME types are trusted when they are one of the supported tabular
types. Browsers commonly report CSV files as application/octet-stream,
text/plain or application/vnd.ms-excel, so the extension is consulted for
those and for a missing type.
"""

import logging
from typing import Optional

from genbi.config import settings
from genbi.core.errors import ValidationError
from genbi.models.upload import ContentKind, FileDescriptor
from genbi.utils.sanitization import file_extension

logger = logging.getLogger(__name__)

MIME_CSV = "text/csv"
MIME_JSON = "application/json"
MIME_XLS = "application/vnd.ms-excel"
MIME_XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

ACCEPTED_TYPES = {
    MIME_CSV: ContentKind.CSV,
    MIME_JSON: ContentKind.JSON,
    MIME_XLS: ContentKind.SPREADSHEET,
    MIME_XLSX: ContentKind.SPREADSHEET,
}

ACCEPTED_EXTENSIONS = {
    "csv": ContentKind.CSV,
    "json": ContentKind.JSON,
    "xls": ContentKind.SPREADSHEET,
    "xlsx": ContentKind.SPREADSHEET,
}

# Declared types that say nothing reliable about the content
_GENERIC_TYPES = {"", "application/octet-stream", "text/plain", MIME_XLS}


class FileValidator:
    """Pure checks on a FileDescriptor."""

    def __init__(self, max_size_bytes: Optional[int] = None):
        self.max_size_bytes = max_size_bytes or settings.max_upload_size_bytes

    def classify(self, descriptor: FileDescriptor) -> Optional[ContentKind]:
        """Content kind from extension and declared type, or None if unsupported."""
        declared = (descriptor.content_type or "").split(";")[0].strip().lower()
        by_extension = ACCEPTED_EXTENSIONS.get(file_extension(descriptor.name))

        # Extension wins for generic or mis-reported types (a .csv sent as vnd.ms-excel)
        if declared in _GENERIC_TYPES and by_extension is not None:
            return by_extension
        if declared in ACCEPTED_TYPES:
            return ACCEPTED_TYPES[declared]
        return by_extension

    def validate(self, descriptor: FileDescriptor) -> ContentKind:
        kind = self.classify(descriptor)
        if kind is None:
            raise ValidationError(
                "invalid-type",
                detail=f"Unsupported file {descriptor.name!r} ({descriptor.content_type or 'no type'})",
                context={"file_name": descriptor.name, "content_type": descriptor.content_type},
            )
        if descriptor.size <= 0:
            raise ValidationError("empty-file", detail=f"{descriptor.name!r} is empty")
        if descriptor.size > self.max_size_bytes:
            raise ValidationError(
                "too-large",
                detail=f"{descriptor.size} bytes exceeds limit of {self.max_size_bytes}",
                context={"file_size": descriptor.size, "limit": self.max_size_bytes},
            )

        logger.debug(
            "file_validated",
            extra={"file.name": descriptor.name, "file.kind": kind.value, "file.size": descriptor.size},
        )
        return kind
