"""Exceptions raised by the upload stores and lockers."""

from __future__ import annotations

from http import HTTPStatus
from typing import Iterable


class StoreError(Exception):
    """Base class for every error raised by this package."""


class HTTPError(StoreError):
    """An error that maps onto an HTTP response status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)


class NotFoundError(HTTPError):
    """The requested upload does not exist."""

    def __init__(self, message: str = "upload not found") -> None:
        super().__init__(message, HTTPStatus.NOT_FOUND)


class FileLockedError(HTTPError):
    """The upload is currently locked by someone else."""

    def __init__(self, message: str = "file currently locked") -> None:
        super().__init__(message, HTTPStatus.LOCKED)


class MultiError(StoreError):
    """Several errors that happened during one operation."""

    def __init__(self, errors: Iterable[BaseException]) -> None:
        self.errors = list(errors)
        message = "Multiple errors occurred:\n" + "".join(
            f"\t{error}\n" for error in self.errors
        )
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class S3ServiceError(StoreError):
    """An error reported by an S3-compatible service, identified by its code."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message