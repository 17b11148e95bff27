"""Error kinds raised by the spreadsheet update cycle and the config layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    COLUMN_NOT_FOUND = "ColumnNotFound"
    ROW_NOT_FOUND = "RowNotFound"
    AMBIGUOUS_SHEET = "AmbiguousSheet"
    NO_LINKED_RESOURCE = "NoLinkedResource"
    PERMISSION_DENIED = "PermissionDenied"
    RESOURCE_UNAVAILABLE = "ResourceUnavailable"
    WRITE_ERROR = "WriteError"
    INVALID_CONFIG = "InvalidConfig"


class MerchantMatchError(Exception):
    """Base error. Carries enough context for the caller to render an actionable message."""

    kind: ErrorKind

    def __init__(
        self,
        message: str,
        *,
        resource_name: Optional[str] = None,
        resource_kind: Optional[Any] = None,
        row_key: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.resource_name = resource_name
        self.resource_kind = getattr(resource_kind, "value", resource_kind)
        self.row_key = row_key

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.resource_name is not None:
            payload["resource_name"] = self.resource_name
        if self.resource_kind is not None:
            payload["resource_kind"] = self.resource_kind
        if self.row_key is not None:
            payload["row_key"] = self.row_key
        if self.__cause__ is not None:
            payload["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return payload


class ColumnNotFound(MerchantMatchError):
    kind = ErrorKind.COLUMN_NOT_FOUND


class RowNotFound(MerchantMatchError):
    kind = ErrorKind.ROW_NOT_FOUND


class AmbiguousSheet(MerchantMatchError):
    kind = ErrorKind.AMBIGUOUS_SHEET


class NoLinkedResource(MerchantMatchError):
    kind = ErrorKind.NO_LINKED_RESOURCE


class PermissionDenied(MerchantMatchError):
    kind = ErrorKind.PERMISSION_DENIED


class ResourceUnavailable(MerchantMatchError):
    kind = ErrorKind.RESOURCE_UNAVAILABLE


class WriteError(MerchantMatchError):
    kind = ErrorKind.WRITE_ERROR


class InvalidConfig(MerchantMatchError):
    kind = ErrorKind.INVALID_CONFIG


# Kinds that mean "the linked file could not be used", as opposed to "no such row/column".
RESOURCE_ERROR_KINDS = frozenset(
    {
        ErrorKind.NO_LINKED_RESOURCE,
        ErrorKind.PERMISSION_DENIED,
        ErrorKind.RESOURCE_UNAVAILABLE,
        ErrorKind.AMBIGUOUS_SHEET,
        ErrorKind.WRITE_ERROR,
    }
)
