"""
Schema Inference
================

Best-effort column typing from a bounded sample of an uploaded file.

CSV columns are voted on over the first `schema_sample_rows` data rows:
number, then boolean, then date, then string. Empty cells do not vote; a
column with no values in the sample is `unknown`. JSON takes its schema
from the first element's keys.

Failure here is never fatal to an upload. Callers catch InferenceError
and continue with an empty schema.
"""

import csv
import io
import json
import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from genbi.config import settings
from genbi.core.errors import InferenceError
from genbi.models.dataset import ColumnSchema, ColumnType
from genbi.models.upload import ContentKind, SchemaInference

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")

_DATE_FORMATS = [
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%d.%m.%Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
]


def is_number(value: str) -> bool:
    return bool(_NUMBER_RE.match(value.strip()))


def is_boolean(value: str) -> bool:
    return value.strip() in ("true", "false")


def is_date(value: str) -> bool:
    text = value.strip()
    if not text:
        return False
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            datetime.strptime(text, fmt)
            return True
        except ValueError:
            continue
    return False


def vote_column_type(values: List[str]) -> ColumnType:
    """Type for one column given its sampled cells (empty cells ignored)."""
    present = [v for v in values if v is not None and v.strip() != ""]
    if not present:
        return ColumnType.UNKNOWN
    if all(is_number(v) for v in present):
        return ColumnType.NUMBER
    if all(is_boolean(v) for v in present):
        return ColumnType.BOOLEAN
    if all(is_date(v) for v in present):
        return ColumnType.DATE
    return ColumnType.STRING


def json_value_type(value: Any) -> ColumnType:
    # bool is an int subclass; check it first
    if isinstance(value, bool):
        return ColumnType.BOOLEAN
    if isinstance(value, (int, float)):
        return ColumnType.NUMBER
    if isinstance(value, str):
        return ColumnType.DATE if _ISO_DATE_PREFIX.match(value) else ColumnType.STRING
    if isinstance(value, (dict, list)):
        return ColumnType.OBJECT
    if value is None:
        return ColumnType.UNKNOWN
    return ColumnType.STRING


def decode_cell(raw: Optional[str], column_type: ColumnType) -> Any:
    """Convert a CSV cell to a preview value according to its column type."""
    if raw is None or raw.strip() == "":
        return None
    text = raw.strip()
    # Rows past the voting sample may not match the column type; keep those as text
    if column_type == ColumnType.NUMBER and is_number(text):
        if _INT_RE.match(text):
            try:
                return int(text)
            except ValueError:
                # Past the interpreter's integer digit limit
                pass
        value = float(text)
        return value if math.isfinite(value) else raw
    if column_type == ColumnType.BOOLEAN and is_boolean(text):
        return text == "true"
    return raw


def _unique_headers(header: List[str]) -> List[str]:
    seen: Dict[str, int] = {}
    names = []
    for index, raw in enumerate(header):
        name = raw.strip() or f"column_{index + 1}"
        if name in seen:
            seen[name] += 1
            name = f"{name}_{seen[name]}"
        else:
            seen[name] = 1
        names.append(name)
    return names


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.info("schema_inference_latin1_fallback")
        return data.decode("latin-1")


class SchemaInferencer:
    """Samples CSV and JSON content to produce a ColumnSchema."""

    def __init__(self, sample_rows: Optional[int] = None, preview_rows: Optional[int] = None):
        self.sample_rows = sample_rows or settings.schema_sample_rows
        self.preview_rows = preview_rows or settings.preview_rows

    def infer(self, data: bytes, kind: ContentKind) -> SchemaInference:
        if kind == ContentKind.CSV:
            return self.infer_csv(_decode_text(data))
        if kind == ContentKind.JSON:
            return self.infer_json(_decode_text(data))
        raise InferenceError(
            f"Schema inference not supported for {kind.value} files",
            code="GBI-INF-002",
            context={"kind": kind.value},
        )

    def infer_csv(self, text: str) -> SchemaInference:
        try:
            records = [
                r for r in csv.reader(io.StringIO(text, newline=""))
                if any(cell.strip() for cell in r)
            ]
        except csv.Error as e:
            raise InferenceError(f"Malformed CSV: {e}") from e

        if not records:
            raise InferenceError("CSV has no header row")

        header = _unique_headers(records[0])
        body = records[1:]

        def cell(row: List[str], index: int) -> Optional[str]:
            return row[index] if index < len(row) else None

        sampled = body[: self.sample_rows]
        schema: ColumnSchema = {
            name: vote_column_type([cell(r, i) for r in sampled])
            for i, name in enumerate(header)
        }

        sample_rows = [
            {name: decode_cell(cell(r, i), schema[name]) for i, name in enumerate(header)}
            for r in body[: self.preview_rows]
        ]

        logger.debug(
            "csv_schema_inferred",
            extra={"schema.columns": len(schema), "schema.rows": len(body)},
        )
        return SchemaInference(schema=schema, row_count=len(body), sample_rows=sample_rows)

    def infer_json(self, text: str) -> SchemaInference:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise InferenceError(f"Malformed JSON: {e}") from e
        except RecursionError as e:
            raise InferenceError("JSON nesting too deep to sample") from e

        if isinstance(document, dict):
            document = [document]
        if not isinstance(document, list):
            raise InferenceError(f"JSON top level must be an object or array, got {type(document).__name__}")
        if any(not isinstance(item, dict) for item in document):
            raise InferenceError("JSON array elements must be objects")

        if not document:
            return SchemaInference(schema={}, row_count=0, sample_rows=[])

        first = document[0]
        schema: ColumnSchema = {key: json_value_type(value) for key, value in first.items()}
        return SchemaInference(
            schema=schema,
            row_count=len(document),
            sample_rows=[dict(item) for item in document[: self.preview_rows]],
        )
