from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN", status_code=status.HTTP_403_FORBIDDEN)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found", code: str = "NOT_FOUND"):
        super().__init__(message, code=code, status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(
        self,
        message: str = "Bad request",
        details: dict[str, Any] | None = None,
        code: str = "BAD_REQUEST",
    ):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST, details=details)


class AccountNotFoundError(NotFoundError):
    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__("Credit account not found", code="ACCOUNT_NOT_FOUND")


class ServiceNotFoundError(NotFoundError):
    """Missing or inactive catalog entry. Reported as 400 to activation callers."""

    def __init__(self, message: str = "Service not found"):
        super().__init__(message, code="SERVICE_NOT_FOUND")
        self.status_code = status.HTTP_400_BAD_REQUEST


class PackageNotFoundError(NotFoundError):
    def __init__(self, message: str = "Package not found"):
        super().__init__(message, code="PACKAGE_NOT_FOUND")
        self.status_code = status.HTTP_400_BAD_REQUEST


class InsufficientBalanceError(BadRequestError):
    def __init__(self, balance: int | None = None, required: int | None = None):
        details = {}
        if balance is not None:
            details = {"balance": balance, "required": required}
        super().__init__("Insufficient credit balance", details=details, code="INSUFFICIENT_BALANCE")


class InsufficientEarningsError(BadRequestError):
    def __init__(self):
        super().__init__("Insufficient earnings for payout", code="INSUFFICIENT_EARNINGS")


class BelowMinimumError(BadRequestError):
    def __init__(self, minimum: int):
        super().__init__(
            f"Minimum payout amount is {minimum}",
            details={"minimum": minimum},
            code="BELOW_MINIMUM",
        )


class StorageFaultError(AppError):
    """Transport or write-protocol failure. Safe for the caller to retry."""

    def __init__(self, message: str = "Storage fault", details: dict[str, Any] | None = None):
        super().__init__(message, code="STORAGE_FAULT", details=details)


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body: dict[str, Any] = {"error": exc.message, "code": exc.code}
    if exc.status_code >= 500:
        # internals stay in the logs
        body["error"] = "Internal server error"
    elif exc.details:
        body["details"] = exc.details
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    if exc.status_code >= 500:
        from app.core.logging import get_logger
        get_logger(__name__).error("app_error", code=exc.code, message=exc.message, **exc.details)
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": "Validation error",
        "code": "VALIDATION_ERROR",
        "details": {"errors": exc.errors()},
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {"error": "Internal server error", "code": "INTERNAL_ERROR"}
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
