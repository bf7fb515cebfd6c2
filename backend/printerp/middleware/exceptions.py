"""PrintERP error taxonomy and the handlers that render it.

Every failure that reaches the API is answered with one envelope, which the
wizards and supplier forms show as an inline alert:

    {"error": {"code": "DUPLICATE_RECORD",
               "message": "A supplier with this email already exists",
               "details": {"field": "email"}}}

`details` is omitted when there is nothing to add.
"""

import logging
import re
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("printerp.errors")


class PrintERPException(Exception):
    """Base exception for PrintERP application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(self.message)


class BusinessLogicError(PrintERPException):
    """Exception for business logic violations."""

    def __init__(self, message: str, error_code: str = "BUSINESS_LOGIC_ERROR"):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code=error_code,
        )


class ResourceNotFoundError(PrintERPException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


class StoreError(PrintERPException):
    """The tabular data store rejected or failed a request."""

    def __init__(self, message: str = "Data store temporarily unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="STORE_UNAVAILABLE",
        )


class DispatchError(PrintERPException):
    """A verification code could not be delivered. Safe to retry."""

    retryable = True

    def __init__(self, message: str = "Unable to send code. Try again later."):
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error_code="DISPATCH_FAILED",
        )


class AuthProviderError(PrintERPException):
    """The auth provider refused a request or could not be reached."""

    def __init__(
        self,
        message: str = "Authentication failed",
        status_code: int = status.HTTP_401_UNAUTHORIZED,
        error_code: str = "AUTH_FAILED",
    ):
        super().__init__(message=message, status_code=status_code, error_code=error_code)



def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def _request_context(request: Request) -> dict:
    return {"path": request.url.path, "method": request.method}


async def printerp_exception_handler(
    request: Request,
    exc: PrintERPException,
) -> JSONResponse:
    """Domain errors carry their own status, code and user-facing message.

    Failures that are safe to repeat (code dispatch) are flagged so the
    wizard can offer a retry button.
    """
    logger.warning(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={"error_code": exc.error_code, **_request_context(request)},
    )
    details = {"retryable": True} if getattr(exc, "retryable", False) else None
    return create_error_response(exc.status_code, exc.message, exc.error_code, details)


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    """Routing and auth-guard failures (404, 405, missing bearer token)."""
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")
    response = create_error_response(
        exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}"
    )
    # Keep WWW-Authenticate from the bearer guard
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def _field_path(loc) -> str:
    # ("body", "auto_logout", "minutes") -> "auto_logout.minutes"
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "request"


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Bad form input: one entry per field so the form can mark each one."""
    errors = [
        {"field": _field_path(error["loc"]), "message": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    logger.info(
        f"Rejected input on {request.url.path}: {', '.join(e['field'] for e in errors)}",
        extra=_request_context(request),
    )
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Some fields need attention",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


_CONSTRAINT_COLUMN = re.compile(r'Key \((?P<key>[^)]+)\)=|column "(?P<column>[^"]+)"')


def violated_column(message: str) -> str | None:
    """Column named in a Postgres constraint message, if any."""
    match = _CONSTRAINT_COLUMN.search(message)
    if match is None:
        return None
    return match.group("key") or match.group("column")


def _column_label(column: str) -> str:
    # contactPerson / contact_person -> contact person
    return re.sub(r"(?<=[a-z])(?=[A-Z])", " ", column).replace("_", " ").lower()


async def integrity_exception_handler(
    request: Request,
    exc: IntegrityError,
) -> JSONResponse:
    """Constraint violations from supplier writes, named by column."""
    error_msg = str(exc.orig) if exc.orig is not None else str(exc)
    logger.error(f"Constraint violation on {request.url.path}: {error_msg}")

    column = violated_column(error_msg)
    label = _column_label(column) if column else None
    lowered = error_msg.lower()

    if "unique" in lowered or "duplicate key" in lowered:
        error_code = "DUPLICATE_RECORD"
        message = (
            f"A supplier with this {label} already exists"
            if label else "This supplier already exists"
        )
    elif "not null" in lowered or "not-null" in lowered:
        error_code = "NULL_VALUE_NOT_ALLOWED"
        message = (
            f"Supplier {label} is required"
            if label else "A required supplier field is missing"
        )
    else:
        error_code = "INTEGRITY_ERROR"
        message = "The supplier record was rejected by the database"

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message=message,
        error_code=error_code,
        details={"field": column} if column else None,
    )


async def general_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
        extra=_request_context(request),
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="Something went wrong. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    app.add_exception_handler(PrintERPException, printerp_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, integrity_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
