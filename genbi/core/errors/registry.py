"""
Error registry for the ingest service.

registry.yaml holds the user-facing copy for every GBI code. Loading it
checks each entry, then cross-checks the exception classes in
genbi.core.errors: every code a class can carry needs an entry, and each
validation reason must be tagged on the entry its code points at. A gap
fails startup rather than surfacing later as an untitled 500.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

import yaml

from genbi.core.errors import CODE_PATTERN, ValidationError, pipeline_error_codes

logger = logging.getLogger(__name__)

# Code prefix -> the stage of ingestion it belongs to
DOMAINS = {
    "API": "dataset library lookups",
    "CFG": "service configuration",
    "VAL": "file and caller validation",
    "INF": "schema inference",
    "STO": "bucket provisioning and object access",
    "UPL": "file transfer",
    "REC": "dataset metadata records",
    "SYS": "unclassified failures",
}
VALID_DOMAINS = set(DOMAINS)
SEVERITIES = ("DEBUG", "INFO", "WARN", "ERROR", "CRITICAL")
_REQUIRED = (
    "code", "domain", "title", "severity", "retryable",
    "user_action_required", "http_status", "safe_message", "remediation",
)


@dataclass(frozen=True)
class ErrorEntry:
    code: str
    domain: str
    title: str
    severity: str
    retryable: bool
    user_action_required: bool
    http_status: int
    safe_message: str
    remediation: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)


class RegistryValidationError(Exception):
    """registry.yaml is malformed or out of step with the error classes."""


def parse_entry(index: int, raw: object) -> ErrorEntry:
    if not isinstance(raw, Mapping):
        raise RegistryValidationError(f"entry {index}: expected a mapping, got {type(raw).__name__}")
    missing = [key for key in _REQUIRED if key not in raw]
    if missing:
        raise RegistryValidationError(f"entry {index} ({raw.get('code', '?')}): missing {', '.join(missing)}")

    code = str(raw["code"])
    if not CODE_PATTERN.match(code):
        raise RegistryValidationError(f"entry {index}: malformed code {code!r}")
    prefix = code.split("-")[1]
    if raw["domain"] != prefix:
        raise RegistryValidationError(f"{code}: domain {raw['domain']!r} does not match prefix {prefix!r}")
    if prefix not in DOMAINS:
        raise RegistryValidationError(f"{code}: unknown domain {prefix!r}")
    if raw["severity"] not in SEVERITIES:
        raise RegistryValidationError(f"{code}: unknown severity {raw['severity']!r}")
    status = int(raw["http_status"])
    if not 400 <= status <= 599:
        raise RegistryValidationError(f"{code}: http_status {status} is not an error status")

    return ErrorEntry(
        code=code,
        domain=prefix,
        title=raw["title"],
        severity=raw["severity"],
        retryable=bool(raw["retryable"]),
        user_action_required=bool(raw["user_action_required"]),
        http_status=status,
        safe_message=raw["safe_message"],
        remediation=list(raw.get("remediation") or []),
        tags=list(raw.get("tags") or []),
    )


def coverage_gaps(entries: Mapping[str, ErrorEntry]) -> List[str]:
    """Codes the error classes can raise that the registry cannot render."""
    gaps = [
        f"{code} (raised by {owner}) has no entry"
        for code, owner in sorted(pipeline_error_codes().items())
        if code not in entries
    ]
    for reason, code in sorted(ValidationError.REASON_CODES.items()):
        entry = entries.get(code)
        if entry is not None and reason not in entry.tags:
            gaps.append(f"{code} is not tagged with validation reason {reason!r}")
    return gaps


class ErrorRegistry:
    def __init__(self) -> None:
        self._entries: Dict[str, ErrorEntry] = {}
        self.schema_version: int = 0

    def load(self, path: str | None = None, check_classes: bool = True) -> None:
        path = path or os.path.join(os.path.dirname(__file__), "registry.yaml")
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        raw_entries = data.get("errors", [])
        if not isinstance(raw_entries, list):
            raise RegistryValidationError("'errors' must be a list")

        entries: Dict[str, ErrorEntry] = {}
        for index, raw in enumerate(raw_entries):
            entry = parse_entry(index, raw)
            if entry.code in entries:
                raise RegistryValidationError(f"duplicate code {entry.code}")
            entries[entry.code] = entry

        if check_classes:
            gaps = coverage_gaps(entries)
            if gaps:
                raise RegistryValidationError("; ".join(gaps))

        self._entries = entries
        self.schema_version = data.get("schema_version", 0)
        logger.info(
            "error_registry_loaded",
            extra={"registry.codes": len(entries), "registry.schema_version": self.schema_version},
        )

    def get(self, code: str) -> ErrorEntry | None:
        return self._entries.get(code)

    def lookup(self, code: str) -> ErrorEntry:
        entry = self._entries.get(code)
        if entry is None:
            raise KeyError(f"Unknown error code: {code!r}")
        return entry

    def codes_for_domain(self, domain: str) -> List[str]:
        return sorted(code for code, entry in self._entries.items() if entry.domain == domain)

    def __len__(self) -> int:
        return len(self._entries)


error_registry = ErrorRegistry()
