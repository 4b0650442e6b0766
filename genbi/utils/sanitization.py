"""Filename, path and display helpers for uploaded datasets."""

import re
from pathlib import Path

# Anything outside ASCII letters and digits becomes an underscore in object paths
_PATH_UNSAFE = re.compile(r"[^a-zA-Z0-9]")

MAX_NAME_LENGTH = 200

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def file_extension(filename: str) -> str:
    """Lowercased extension without the dot ('' when absent)."""
    return Path(filename or "").suffix.lower().lstrip(".")


def sanitize_path_component(name: str) -> str:
    """Make a dataset name safe to embed in an object path.

    Every character outside [a-zA-Z0-9] is replaced with '_', and the
    result is truncated to MAX_NAME_LENGTH. Returns 'dataset' for an
    input that is empty after stripping.
    """
    cleaned = _PATH_UNSAFE.sub("_", (name or "").strip())
    if not cleaned.strip("_"):
        return "dataset"
    return cleaned[:MAX_NAME_LENGTH]


def dataset_name_from_filename(filename: str) -> str:
    """Default display name: extension dropped, underscores to spaces, words capitalised.

    >>> dataset_name_from_filename("car_sales_2024.csv")
    'Car Sales 2024'
    """
    stem = Path(filename or "").stem
    words = stem.replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


def format_byte_size(num_bytes: int) -> str:
    if num_bytes <= 0:
        return "0 Bytes"
    value = float(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"
