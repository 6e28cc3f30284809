"""Tests for the exception hierarchy."""
import pytest

from dashtext_sync.exceptions import (
    ConfigurationError,
    DashTextError,
    DocumentUnavailableError,
    DraftNotFoundError,
    ErrorCode,
    InvalidKeyError,
    MigrationError,
    NotInitializedError,
    StorageError,
    StorageIOError,
    UnexpectedFormatError,
    ValidationError,
)


class TestErrorHierarchy:
    @pytest.mark.parametrize("error,code", [
        (NotInitializedError("create_draft"), ErrorCode.REPOSITORY_NOT_INITIALIZED),
        (DraftNotFoundError("abc"), ErrorCode.DRAFT_NOT_FOUND),
        (ValidationError("bad", field="index", value=-1), ErrorCode.VALIDATION_FAILED),
        (InvalidKeyError(("doc",), operation="save"), ErrorCode.STORAGE_INVALID_KEY),
        (UnexpectedFormatError(3.5), ErrorCode.STORAGE_UNEXPECTED_FORMAT),
        (StorageIOError("failed", operation="select"), ErrorCode.STORAGE_IO_FAILED),
        (DocumentUnavailableError("doc1"), ErrorCode.DOCUMENT_UNAVAILABLE),
        (MigrationError("failed", total_count=2, migrated_count=1), ErrorCode.MIGRATION_FAILED),
        (ConfigurationError("bad", config_key="log_level"), ErrorCode.CONFIG_INVALID),
    ])
    def test_codes(self, error, code):
        assert isinstance(error, DashTextError)
        assert error.code is code

    def test_storage_errors_share_base(self):
        for error in (InvalidKeyError(()), UnexpectedFormatError(None),
                      StorageIOError("x"), DocumentUnavailableError("d")):
            assert isinstance(error, StorageError)


class TestErrorDetails:
    def test_to_dict(self):
        error = DraftNotFoundError("abc")
        assert error.to_dict() == {
            "error": "DraftNotFoundError",
            "code": 1002,
            "code_name": "DRAFT_NOT_FOUND",
            "message": "Draft 'abc' not found",
            "details": {"uuid": "abc"},
        }

    def test_str_includes_code_and_details(self):
        assert str(DraftNotFoundError("abc")) == "[DRAFT_NOT_FOUND] Draft 'abc' not found (uuid=abc)"

    def test_str_without_details(self):
        assert str(NotInitializedError()).startswith("[REPOSITORY_NOT_INITIALIZED] ")

    def test_invalid_key_keeps_key(self):
        error = InvalidKeyError(["doc", "incremental"], operation="save")
        assert error.key == ("doc", "incremental")
        assert error.details["operation"] == "save"

    def test_unexpected_format_type_name(self):
        assert UnexpectedFormatError(object()).type_name == "object"

    def test_storage_io_error_chains_original(self):
        original = RuntimeError("disk full")
        error = StorageIOError("failed", operation="execute",
                               sql="INSERT INTO   automerge_chunk\n VALUES (?)",
                               original_error=original)
        assert error.original_error is original
        assert error.details["sql"] == "INSERT INTO automerge_chunk VALUES (?)"
        assert error.details["original_error"] == "disk full"

    def test_migration_error_progress(self):
        error = MigrationError("failed", legacy_uuid="l1", total_count=5, migrated_count=2)
        assert error.details == {"total_count": 5, "migrated_count": 2, "legacy_uuid": "l1"}

    def test_migration_error_rejects_impossible_progress(self):
        with pytest.raises(ValueError):
            MigrationError("failed", total_count=1, migrated_count=2)
