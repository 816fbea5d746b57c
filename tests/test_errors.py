"""Tests for error classification, read results and write error translation."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from luxicle.db.writes import write_errors
from luxicle.errors import (
    RETRYABLE_KINDS,
    DuplicateError,
    ErrorKind,
    InvalidInputError,
    NotFoundError,
    OwnershipError,
    StoreError,
    as_luxicle_error,
    classify_exception,
)
from luxicle.profiles.schemas import ProfileUpdate
from luxicle.result import Err, Ok, read_failed
from luxicle.validation import parse_patch, require


class TestClassification:
    def test_domain_error_keeps_its_kind(self):
        assert classify_exception(NotFoundError("gone")) is ErrorKind.NOT_FOUND

    def test_ownership_error_is_a_permission_error(self):
        error = OwnershipError("You do not own this luxicle")
        assert isinstance(error, PermissionError)
        assert classify_exception(error) is ErrorKind.OWNERSHIP
        assert as_luxicle_error(error) is error

    def test_connection_failures_are_transport(self):
        exc = OperationalError("SELECT 1", {}, Exception("connection refused"))
        assert classify_exception(exc) is ErrorKind.TRANSPORT
        assert classify_exception(ConnectionResetError()) is ErrorKind.TRANSPORT

    def test_everything_else_is_remote(self):
        assert classify_exception(KeyError("x")) is ErrorKind.REMOTE

    def test_as_luxicle_error_wraps_foreign_exceptions(self):
        error = as_luxicle_error(TimeoutError())
        assert isinstance(error, StoreError)
        assert error.kind is ErrorKind.TRANSPORT
        assert error.message == "TimeoutError"
        assert error.kind in RETRYABLE_KINDS

    def test_as_luxicle_error_passes_domain_errors_through(self):
        original = DuplicateError("taken")
        assert as_luxicle_error(original) is original
        assert original.kind not in RETRYABLE_KINDS


class TestResult:
    def test_ok(self):
        result = Ok([1, 2])
        assert result.ok
        assert result.unwrap() == [1, 2]
        assert result.unwrap_or([]) == [1, 2]

    def test_err(self):
        result = Err(NotFoundError("gone"))
        assert not result.ok
        assert result.unwrap_or([]) == []
        with pytest.raises(NotFoundError):
            result.unwrap()

    def test_read_failed_wraps_exception(self):
        result = read_failed("get_thing", OSError("network down"), thing_id="t1")
        assert not result.ok
        assert result.error.kind is ErrorKind.TRANSPORT


class TestWriteErrors:
    def test_unique_violation_is_duplicate(self):
        with pytest.raises(DuplicateError):
            with write_errors("create_tag"):
                raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: tags.slug"))

    def test_foreign_key_violation_is_not_found(self):
        with pytest.raises(NotFoundError):
            with write_errors("add_comment"):
                raise IntegrityError("INSERT", {}, Exception("FOREIGN KEY constraint failed"))

    def test_other_failures_are_store_errors(self):
        with pytest.raises(StoreError) as exc_info:
            with write_errors("update_luxicle"):
                raise ProgrammingError("UPDATE", {}, Exception("syntax error"))
        assert exc_info.value.kind is ErrorKind.REMOTE

    def test_domain_errors_pass_through(self):
        with pytest.raises(InvalidInputError):
            with write_errors("follow_user"):
                raise InvalidInputError("follower_id must be provided")


class TestValidation:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_require_rejects_blank(self, value: str | None):
        with pytest.raises(InvalidInputError, match="user_id must be provided"):
            require(value, "user_id")

    def test_parse_patch_keeps_only_set_fields(self):
        assert parse_patch(ProfileUpdate, {"bio": "hi"}) == {"bio": "hi"}

    def test_parse_patch_reports_field(self):
        with pytest.raises(InvalidInputError, match="bio"):
            parse_patch(ProfileUpdate, {"bio": "x" * 161})
