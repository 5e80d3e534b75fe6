"""
Error types for the keeper SDK.

This module defines every exception the SDK raises for a failed
operation, and the translator that maps driver result codes onto them:
- KeeperError: Base exception
- NoNodeError: Node does not exist
- NodeExistsError: Node already exists
- NotEmptyError: Node still has children
- BadVersionError: Version check failed
- ConnectionLossError: Connection dropped mid-operation
- SessionExpiredError: Session is gone, ephemerals are gone with it
- InvalidStateError: Client handle is closed
- UnknownError: Any other result code

Invariants:
    - All errors inherit from KeeperError
    - Every error carries the numeric result code
    - validate() has no side effects beyond raising
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from .types import OperationResponse, ResultCode


class KeeperError(Exception):
    """Base exception for all keeper SDK errors.

    Attributes:
        message: Error message
        code: Numeric result code
        path: Path the failing operation targeted, if any
        details: Additional error context
    """

    default_code: int = ResultCode.SYSTEM_ERROR

    def __init__(
        self,
        message: Optional[str] = None,
        path: Optional[str] = None,
        code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.code = self.default_code if code is None else code
        self.path = path
        self.message = message or self._default_message()
        super().__init__(self.message)
        self.details = details or {}
        self.details.setdefault("code", self.code)
        if path is not None:
            self.details.setdefault("path", path)

    def _default_message(self) -> str:
        name = type(self).__name__
        if self.path:
            return f"{name}: {self.path}"
        return name


class NoNodeError(KeeperError):
    """The node does not exist."""

    default_code = ResultCode.NO_NODE


class NodeExistsError(KeeperError):
    """The node already exists."""

    default_code = ResultCode.NODE_EXISTS


class NotEmptyError(KeeperError):
    """The node has children and cannot be deleted."""

    default_code = ResultCode.NOT_EMPTY


class BadVersionError(KeeperError):
    """The supplied version does not match the node's version."""

    default_code = ResultCode.BAD_VERSION


class ConnectionLossError(KeeperError):
    """The connection was lost before the operation completed.

    The operation may or may not have been applied.
    """

    default_code = ResultCode.CONNECTION_LOSS


class SessionExpiredError(KeeperError):
    """The session expired; ephemeral nodes and watches are gone."""

    default_code = ResultCode.SESSION_EXPIRED


class InvalidStateError(KeeperError):
    """The client is closed or otherwise unusable."""

    default_code = ResultCode.INVALID_STATE


class UnknownError(KeeperError):
    """A result code with no dedicated exception."""

    def __init__(self, code: int, path: Optional[str] = None) -> None:
        super().__init__(
            f"Operation failed with result code {code}",
            path=path,
            code=code,
        )


_ERRORS_BY_CODE: Dict[int, type[KeeperError]] = {
    ResultCode.NO_NODE: NoNodeError,
    ResultCode.NODE_EXISTS: NodeExistsError,
    ResultCode.NOT_EMPTY: NotEmptyError,
    ResultCode.BAD_VERSION: BadVersionError,
    ResultCode.CONNECTION_LOSS: ConnectionLossError,
    ResultCode.SESSION_EXPIRED: SessionExpiredError,
    ResultCode.INVALID_STATE: InvalidStateError,
}


def error_for_code(code: int, path: Optional[str] = None) -> KeeperError:
    """Build the exception that corresponds to a result code.

    Args:
        code: Non-OK result code
        path: Path of the failed operation

    Returns:
        KeeperError subclass instance (UnknownError for unmapped codes)
    """
    error_cls = _ERRORS_BY_CODE.get(code)
    if error_cls is None:
        return UnknownError(code, path=path)
    return error_cls(path=path)


def validate(response: OperationResponse) -> OperationResponse:
    """Raise if a response carries a failure code.

    Args:
        response: Driver response

    Returns:
        The response unchanged when its code is OK

    Raises:
        KeeperError: The subclass matching the response code
    """
    if response.code != ResultCode.OK:
        raise error_for_code(response.code, path=response.path or None)
    return response
