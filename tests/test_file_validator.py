"""Tests for FileValidator: accepted types, size ceiling, empty files."""

import pytest

from genbi.core.errors import ValidationError
from genbi.models.upload import ContentKind, FileDescriptor
from genbi.services.file_validator import FileValidator

MB = 1024 * 1024


@pytest.fixture
def validator():
    return FileValidator(max_size_bytes=100 * MB)


def _file(name, content_type, size=10):
    return FileDescriptor(name=name, content_type=content_type, size=size)


class TestClassify:
    @pytest.mark.parametrize(
        "name,content_type,expected",
        [
            ("data.csv", "text/csv", ContentKind.CSV),
            ("data.csv", None, ContentKind.CSV),
            ("data.csv", "application/octet-stream", ContentKind.CSV),
            ("data.csv", "text/plain", ContentKind.CSV),
            # Windows browsers report CSV as an Excel type
            ("data.csv", "application/vnd.ms-excel", ContentKind.CSV),
            ("data.json", "application/json", ContentKind.JSON),
            ("data.json", "", ContentKind.JSON),
            ("book.xls", "application/vnd.ms-excel", ContentKind.SPREADSHEET),
            (
                "book.xlsx",
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                ContentKind.SPREADSHEET,
            ),
            ("export", "text/csv", ContentKind.CSV),
            ("DATA.CSV", None, ContentKind.CSV),
        ],
    )
    def test_accepted(self, validator, name, content_type, expected):
        assert validator.classify(_file(name, content_type)) == expected

    @pytest.mark.parametrize(
        "name,content_type",
        [
            ("notes.txt", "text/plain"),
            ("image.png", "image/png"),
            ("archive.zip", "application/zip"),
            ("noext", None),
        ],
    )
    def test_rejected(self, validator, name, content_type):
        assert validator.classify(_file(name, content_type)) is None


class TestValidate:
    def test_valid_csv_returns_kind(self, validator):
        assert validator.validate(_file("a.csv", "text/csv", 1234)) == ContentKind.CSV

    def test_unsupported_type(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(_file("notes.txt", "text/plain"))
        assert exc_info.value.reason == "invalid-type"
        assert exc_info.value.code == "GBI-VAL-001"

    def test_too_large(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(_file("big.csv", "text/csv", 100 * MB + 1))
        assert exc_info.value.reason == "too-large"
        assert exc_info.value.code == "GBI-VAL-002"

    def test_exactly_at_limit_is_accepted(self, validator):
        assert validator.validate(_file("edge.csv", "text/csv", 100 * MB)) == ContentKind.CSV

    def test_empty_file(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(_file("empty.csv", "text/csv", 0))
        assert exc_info.value.reason == "empty-file"
        assert exc_info.value.code == "GBI-VAL-004"

    def test_type_checked_before_size(self, validator):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(_file("huge.exe", "application/x-msdownload", 500 * MB))
        assert exc_info.value.reason == "invalid-type"
