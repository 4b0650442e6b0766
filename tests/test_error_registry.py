"""Tests for the error registry, error classes and the FastAPI error handler."""

from dataclasses import replace

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from genbi.core.errors import (
    GenBIError,
    RecordCreationError,
    TransferError,
    ValidationError,
    pipeline_error_codes,
)
from genbi.core.errors.middleware import genbi_error_handler
from genbi.core.errors.registry import VALID_DOMAINS, ErrorRegistry, RegistryValidationError, coverage_gaps, error_registry


class TestRegistry:
    def test_loads_every_domain(self):
        for domain in VALID_DOMAINS:
            assert error_registry.codes_for_domain(domain), domain

    def test_lookup(self):
        entry = error_registry.lookup("GBI-REC-002")
        assert entry.http_status == 409
        with pytest.raises(KeyError):
            error_registry.lookup("GBI-SYS-999")

    def test_domain_mismatch_is_rejected(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(
            "errors:\n"
            "  - code: GBI-VAL-001\n"
            "    domain: API\n"
            "    title: t\n"
            "    severity: INFO\n"
            "    retryable: false\n"
            "    user_action_required: false\n"
            "    http_status: 400\n"
            "    safe_message: m\n"
            "    remediation: []\n"
        )
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(str(path))

    def test_missing_fields_are_rejected(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text("errors:\n  - code: GBI-VAL-001\n    domain: VAL\n")
        with pytest.raises(RegistryValidationError):
            ErrorRegistry().load(str(path))

    def test_success_status_is_rejected(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(_entry_yaml("GBI-SYS-001", "SYS", status=200))
        with pytest.raises(RegistryValidationError, match="not an error status"):
            ErrorRegistry().load(str(path), check_classes=False)

    def test_missing_class_codes_fail_load(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(_entry_yaml("GBI-SYS-001", "SYS"))
        with pytest.raises(RegistryValidationError) as exc_info:
            ErrorRegistry().load(str(path))
        assert "GBI-UPL-002 (raised by TransferError)" in str(exc_info.value)
        assert "GBI-CFG-001 (raised by ConfigurationError)" in str(exc_info.value)

    def test_untagged_validation_reason_is_a_gap(self):
        entries = {code: error_registry.lookup(code) for code in pipeline_error_codes()}
        assert coverage_gaps(entries) == []

        entries["GBI-VAL-004"] = replace(entries["GBI-VAL-004"], tags=[])
        assert coverage_gaps(entries) == ["GBI-VAL-004 is not tagged with validation reason 'empty-file'"]

    def test_shipped_registry_covers_every_class_code(self):
        for code in pipeline_error_codes():
            assert error_registry.get(code) is not None, code


def _entry_yaml(code, domain, status=500):
    return (
        "errors:\n"
        f"  - code: {code}\n"
        f"    domain: {domain}\n"
        "    title: t\n"
        "    severity: ERROR\n"
        "    retryable: false\n"
        "    user_action_required: false\n"
        f"    http_status: {status}\n"
        "    safe_message: m\n"
        "    remediation: []\n"
    )


class TestErrorClasses:
    def test_bad_code_format(self):
        with pytest.raises(ValueError):
            GenBIError("VAL-1")

    def test_validation_reasons_map_to_codes(self):
        assert ValidationError("too-large").code == "GBI-VAL-002"
        with pytest.raises(ValueError):
            ValidationError("not-a-reason")

    def test_code_override(self):
        err = TransferError("denied", code="GBI-UPL-002")
        assert err.access_denied

    def test_every_default_code_is_registered(self):
        from genbi.core import errors

        for name in dir(errors):
            cls = getattr(errors, name)
            if isinstance(cls, type) and issubclass(cls, GenBIError) and hasattr(cls, "default_code"):
                assert error_registry.get(cls.default_code) is not None, name


@pytest.fixture
def client():
    app = FastAPI()
    app.add_exception_handler(GenBIError, genbi_error_handler)

    @app.get("/validation")
    async def _validation():
        raise ValidationError("empty-file", detail="internal detail")

    @app.get("/orphan")
    async def _orphan():
        raise RecordCreationError("insert failed", context={"requires_reconciliation": True, "storage_path": "p"})

    @app.get("/unregistered")
    async def _unregistered():
        raise GenBIError("GBI-SYS-999")

    return TestClient(app)


class TestHandler:
    def test_validation_body_carries_reason_not_detail(self, client):
        response = client.get("/validation")
        assert response.status_code == 422

        error = response.json()["error"]
        assert error["code"] == "GBI-VAL-004"
        assert error["reason"] == "empty-file"
        assert "internal detail" not in response.text

    def test_record_failure_is_server_error(self, client):
        response = client.get("/orphan")
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "GBI-REC-001"

    def test_unregistered_code_falls_back(self, client):
        response = client.get("/unregistered")
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "GBI-SYS-999"
