from __future__ import annotations

from typing import Optional, Type

from providers.storage import CONFLICT_CODES, NOT_FOUND_CODES


class BackendError(Exception):
    """Wraps an underlying storage failure with the operation that raised it."""

    def __init__(
        self,
        operation: str,
        message: str,
        cause: Optional[BaseException] = None,
        bucket: Optional[str] = None,
        key: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.operation = operation
        self.message = message
        self.cause = cause
        self.bucket = bucket
        self.key = key
        self.code = code
        super().__init__(self.__str__())

    def __str__(self) -> str:
        where = ""
        if self.bucket:
            where = f" (bucket={self.bucket}" + (f" key={self.key})" if self.key else ")")
        return f"{self.operation} failed{where}: {self.message}"


class NotFoundError(BackendError):
    pass


class ConflictError(BackendError):
    pass


class EmptyResultError(BackendError):
    pass


def error_class_for(code: Optional[str]) -> Type[BackendError]:
    if code in NOT_FOUND_CODES:
        return NotFoundError
    if code in CONFLICT_CODES:
        return ConflictError
    return BackendError
