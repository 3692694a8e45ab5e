"""
Error taxonomy for the bulk mutation engine.

Request-level errors are raised before any operation record is persisted and
map onto an HTTP status in the API layer. Per-row problems are never raised;
the executor records them as error entries instead.
"""
from typing import Optional


class BulkOperationError(Exception):
    """Base class for errors that reject a whole bulk request."""

    status_code = 400
    code = "BULK_OPERATION_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class MalformedInputError(BulkOperationError):
    """Uploaded payload could not be turned into row records."""

    code = "MALFORMED_INPUT"


class UnsupportedFormatError(BulkOperationError):
    code = "UNSUPPORTED_FORMAT"


class UnsupportedOperationError(BulkOperationError):
    code = "UNSUPPORTED_OPERATION"


class UnsupportedEntityTypeError(BulkOperationError):
    code = "UNSUPPORTED_ENTITY_TYPE"


class InvalidRequestError(BulkOperationError):
    """Request is well-formed but violates an engine limit (empty, too large...)."""

    code = "INVALID_REQUEST"


class WriteGroupError(BulkOperationError):
    """The record store rejected an atomic write group; nothing in it was applied."""

    status_code = 500
    code = "WRITE_GROUP_FAILED"
