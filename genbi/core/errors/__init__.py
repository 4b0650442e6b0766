"""
Error code system.

GenBIError is the base exception for all structured errors.
Raise it (or one of the pipeline subclasses) with an error code from the
registry, and the error middleware will produce a structured JSON response.

Usage:
    from genbi.core.errors import TransferError
    raise TransferError("connection reset by peer", context={"attempts": 3})
"""

from __future__ import annotations

import re
from typing import ClassVar, Dict, Optional, Tuple

CODE_PATTERN = re.compile(r"^GBI-[A-Z]{2,6}-\d{3}$")


class GenBIError(Exception):
    """Structured application error tied to the error registry.

    Args:
        code: Registry error code, e.g. "GBI-UPL-001".
        detail: Internal-only detail message (never exposed to users).
        context: Arbitrary key-value context for structured logging.
    """

    def __init__(
        self,
        code: str,
        detail: str | None = None,
        context: dict | None = None,
    ) -> None:
        if not CODE_PATTERN.match(code):
            raise ValueError(f"Invalid error code format: {code!r}")
        self.code = code
        self.detail = detail
        self.context = context or {}
        super().__init__(f"{code}: {detail}" if detail else code)


class _PipelineError(GenBIError):
    """GenBIError with a per-class default code."""

    default_code: ClassVar[str] = "GBI-SYS-001"
    # Codes a raise site may pass instead of the default
    alternate_codes: ClassVar[Tuple[str, ...]] = ()

    def __init__(
        self,
        detail: str | None = None,
        *,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(code or self.default_code, detail, context)


class ValidationError(_PipelineError):
    """File or caller input rejected before any I/O."""

    REASON_CODES: ClassVar[dict] = {
        "invalid-type": "GBI-VAL-001",
        "too-large": "GBI-VAL-002",
        "invalid-owner": "GBI-VAL-003",
        "empty-file": "GBI-VAL-004",
    }

    def __init__(self, reason: str, detail: str | None = None, context: dict | None = None) -> None:
        if reason not in self.REASON_CODES:
            raise ValueError(f"Unknown validation reason: {reason!r}")
        self.reason = reason
        super().__init__(detail, code=self.REASON_CODES[reason], context=context)


class InferenceError(_PipelineError):
    """Schema sampling failed or was skipped. Never fatal."""

    default_code = "GBI-INF-001"
    alternate_codes = ("GBI-INF-002",)


class ProvisioningError(_PipelineError):
    """A required bucket could not be created by any strategy."""

    default_code = "GBI-STO-001"


class TransferError(_PipelineError):
    """Upload failed after retries and the fallback attempt."""

    default_code = "GBI-UPL-001"
    alternate_codes = ("GBI-UPL-002",)

    @property
    def access_denied(self) -> bool:
        return self.code == "GBI-UPL-002"


class UploadCancelled(_PipelineError):
    default_code = "GBI-UPL-003"


class RecordCreationError(_PipelineError):
    """Metadata write failed after a successful upload.

    The stored object exists without a record; context carries the orphan
    location for manual reconciliation.
    """

    default_code = "GBI-REC-001"

    @property
    def requires_reconciliation(self) -> bool:
        return bool(self.context.get("requires_reconciliation"))


class DuplicateDatasetError(_PipelineError):
    default_code = "GBI-REC-002"


class DatasetNotFound(_PipelineError):
    default_code = "GBI-API-001"


class StorageOperationError(_PipelineError):
    """A read or delete against the object store failed."""

    default_code = "GBI-STO-002"


class ConfigurationError(_PipelineError):
    """Settings select a backend without the credentials it needs."""

    default_code = "GBI-CFG-001"


def pipeline_error_codes() -> Dict[str, str]:
    """Every code the error classes can carry, mapped to the class that raises it."""
    codes: Dict[str, str] = {_PipelineError.default_code: "GenBIError"}
    pending = list(_PipelineError.__subclasses__())
    while pending:
        cls = pending.pop()
        pending.extend(cls.__subclasses__())
        if "default_code" in vars(cls):
            codes[cls.default_code] = cls.__name__
        for code in cls.alternate_codes:
            codes[code] = cls.__name__
    for reason, code in ValidationError.REASON_CODES.items():
        codes[code] = f"ValidationError({reason!r})"
    return codes
