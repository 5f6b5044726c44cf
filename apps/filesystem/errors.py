"""Errors raised by the filesystem services.

ConflictError - optimistic concurrency violation; re-read current state and retry
PreconditionError - caller error (missing upload metadata, oversized payload, ...)
StorageError - transport or server fault from a blob store backend
InvariantViolation - metadata corruption, never expected in correct operation
"""
from enum import Enum
from typing import Optional


class ConflictCode(str, Enum):
    SOURCE_NOT_FOUND = "SOURCE_NOT_FOUND"
    SOURCE_CHANGED = "SOURCE_CHANGED"
    DEST_EXISTS = "DEST_EXISTS"
    DEST_NOT_FOUND = "DEST_NOT_FOUND"
    DEST_CHANGED = "DEST_CHANGED"
    CAS_CONFLICT = "CAS_CONFLICT"


class ConflictError(Exception):

    def __init__(
        self,
        code: ConflictCode,
        message: str,
        path: str,
        expected: Optional[str] = None,
        found: Optional[str] = None,
        operation_index: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.path = path
        self.expected = expected
        self.found = found
        self.operation_index = operation_index

    def to_dict(self) -> dict:
        data = {
            "type": "conflict",
            "code": self.code.value,
            "message": self.message,
            "path": self.path,
            "expected": self.expected,
            "found": self.found,
        }
        if self.operation_index is not None:
            data["operationIndex"] = self.operation_index
        return data


class PreconditionError(ValueError):
    pass


class UnsupportedOperationError(PreconditionError):
    """The configured backend lacks the requested capability."""


class StorageError(RuntimeError):

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class InvariantViolation(RuntimeError):
    pass
