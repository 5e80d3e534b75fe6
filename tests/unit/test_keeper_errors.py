"""
Unit tests for error types and result-code translation.

Tests cover:
- Exception hierarchy
- Code to exception mapping
- validate() behaviour
"""

import pytest

from sdk.keeper_sdk.errors import (
    BadVersionError,
    ConnectionLossError,
    InvalidStateError,
    KeeperError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    SessionExpiredError,
    UnknownError,
    error_for_code,
    validate,
)
from sdk.keeper_sdk.types import OperationResponse, ResultCode


class TestErrorHierarchy:
    """Tests for the exception classes."""

    @pytest.mark.parametrize(
        "error_cls",
        [
            NoNodeError,
            NodeExistsError,
            NotEmptyError,
            BadVersionError,
            ConnectionLossError,
            SessionExpiredError,
            InvalidStateError,
        ],
    )
    def test_inherits_keeper_error(self, error_cls):
        assert issubclass(error_cls, KeeperError)

    def test_carries_code_and_path(self):
        error = NoNodeError(path="/a")

        assert error.code == ResultCode.NO_NODE
        assert error.path == "/a"
        assert "/a" in str(error)
        assert error.details == {"code": ResultCode.NO_NODE, "path": "/a"}

    def test_custom_message(self):
        error = KeeperError("something is wrong", path="/a")

        assert str(error) == "something is wrong"
        assert error.code == ResultCode.SYSTEM_ERROR

    def test_unknown_error(self):
        error = UnknownError(-999, path="/a")

        assert error.code == -999
        assert "-999" in str(error)


class TestErrorForCode:
    """Tests for error_for_code."""

    @pytest.mark.parametrize(
        "code,error_cls",
        [
            (ResultCode.NO_NODE, NoNodeError),
            (ResultCode.NODE_EXISTS, NodeExistsError),
            (ResultCode.NOT_EMPTY, NotEmptyError),
            (ResultCode.BAD_VERSION, BadVersionError),
            (ResultCode.CONNECTION_LOSS, ConnectionLossError),
            (ResultCode.SESSION_EXPIRED, SessionExpiredError),
            (ResultCode.INVALID_STATE, InvalidStateError),
        ],
    )
    def test_mapped_codes(self, code, error_cls):
        error = error_for_code(code, path="/x")
        assert type(error) is error_cls
        assert error.path == "/x"

    def test_unmapped_code(self):
        error = error_for_code(ResultCode.BAD_ARGUMENTS)
        assert isinstance(error, UnknownError)
        assert error.code == ResultCode.BAD_ARGUMENTS


class TestValidate:
    """Tests for validate."""

    def test_ok_passes_through(self):
        response = OperationResponse(code=ResultCode.OK, path="/a")
        assert validate(response) is response

    def test_failure_raises(self):
        with pytest.raises(NodeExistsError) as exc_info:
            validate(OperationResponse(code=ResultCode.NODE_EXISTS, path="/a"))
        assert exc_info.value.path == "/a"

    def test_empty_path_is_none(self):
        with pytest.raises(NoNodeError) as exc_info:
            validate(OperationResponse(code=ResultCode.NO_NODE))
        assert exc_info.value.path is None
