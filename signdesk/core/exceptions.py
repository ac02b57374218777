## signdesk/core/exceptions.py

"""
Exception hierarchy for the signing workflow.
Every service raises one of these kinds; routers convert them at the edge.
"""

from typing import Optional
from fastapi import HTTPException, status


class SignDeskBaseException(Exception):
    """Base exception for all signing workflow errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundException(SignDeskBaseException):
    """Raised for an unknown slug, token or id."""
    def __init__(self, resource: str, identifier: Optional[str] = None, message: Optional[str] = None):
        msg = message or f"{resource} not found"
        details = {"resource": resource}
        if identifier is not None:
            details["identifier"] = identifier
        super().__init__(msg, details)


class ForbiddenException(SignDeskBaseException):
    """Raised when the caller resolved but lacks rights (wrong owner, out of order)."""


class InvalidStateException(SignDeskBaseException):
    """Raised when an operation is not legal for the current status."""
    def __init__(self, current_state: str, operation: str, reason: Optional[str] = None):
        msg = f"Cannot {operation} while {current_state}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(
            msg,
            {"current_state": current_state, "operation": operation, "reason": reason}
        )


class ValidationFailedException(SignDeskBaseException):
    """Raised for malformed input (bad phone format, missing required field)."""


class VerificationFailedException(SignDeskBaseException):
    """Raised when an OTP code does not match or has expired."""
    def __init__(self, message: str = "Verification code is invalid or expired", details: Optional[dict] = None):
        super().__init__(message, details)


class RateLimitedException(SignDeskBaseException):
    """Raised when too many requests were made within the window."""
    def __init__(self, limit: int, reset_in: int):
        super().__init__(
            "Too many requests, try again later",
            {"limit": limit, "retry_after": reset_in}
        )


class UpstreamFailureException(SignDeskBaseException):
    """Raised when the SMS or storage provider fails."""


def convert_to_http_exception(exc: SignDeskBaseException) -> HTTPException:
    """
    Convert a SignDeskBaseException to an HTTPException with appropriate status code.

    Args:
        exc: The workflow exception to convert

    Returns:
        HTTPException with appropriate status code and detail
    """
    if isinstance(exc, NotFoundException):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": exc.message, "details": exc.details}
        )
    elif isinstance(exc, ForbiddenException):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": exc.message, "details": exc.details}
        )
    elif isinstance(exc, InvalidStateException):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": exc.message, "details": exc.details}
        )
    elif isinstance(exc, (ValidationFailedException, VerificationFailedException)):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": exc.message, "details": exc.details}
        )
    elif isinstance(exc, RateLimitedException):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"message": exc.message, "details": exc.details},
            headers={"Retry-After": str(exc.details.get("retry_after", 0))}
        )
    elif isinstance(exc, UpstreamFailureException):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": exc.message, "details": exc.details}
        )
    else:
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"message": str(exc), "details": {}}
        )


def convert_to_signer_http_exception(exc: SignDeskBaseException) -> HTTPException:
    """
    Same mapping as convert_to_http_exception, except that a token that does not
    resolve never reports which lookup failed.
    """
    if isinstance(exc, NotFoundException):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Invalid or expired signing link", "details": {}}
        )
    return convert_to_http_exception(exc)
