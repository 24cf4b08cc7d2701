"""
=============================================================================
LUSHAK CONTACT API - ERROR HANDLING MODULE
=============================================================================
Contact pipeline error taxonomy and global exception handlers.

Every error is terminal for the request: nothing is retried. Handlers render
``{"error": <message>}`` so the browser form can show it as a toast.

Usage:
    # In main.py
    from lushak.core.errors import register_exception_handlers
    register_exception_handlers(app)
=============================================================================
"""

import logging
import traceback
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lushak.core.config import settings

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Failed to send message."


@dataclass(frozen=True)
class FieldViolation:
    """A single field-level rule violation."""

    field: str
    message: str


class ContactError(Exception):
    """Base class for errors that end a contact submission."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = GENERIC_FAILURE_MESSAGE

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class ValidationError(ContactError):
    """Field-level, user-correctable problem (HTTP 400)."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid submission."

    def __init__(self, violations: List[FieldViolation]):
        self.violations = list(violations)
        first = self.violations[0].message if self.violations else None
        super().__init__(first)


class ThrottleError(ContactError):
    """Too many submissions from one identifier inside the window (HTTP 429)."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Try again in 1 minute."

    def __init__(self, retry_after: Optional[int] = None, message: Optional[str] = None):
        self.retry_after = retry_after
        super().__init__(message)

    def headers(self) -> Optional[Dict[str, str]]:
        if self.retry_after is None:
            return None
        return {"Retry-After": str(self.retry_after)}


class BotVerificationError(ContactError):
    """Bot-defense token missing, invalid or low-trust (HTTP 400)."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "reCAPTCHA verification failed."


class PayloadTooLargeError(ContactError):
    """Attachment aggregate exceeds the cap.

    Reported as 500, not 413, to stay compatible with the deployed form.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Total uploaded size exceeds 20MB limit"


class DispatchError(ContactError):
    """Mail transport failure (HTTP 500). Detail is logged, never returned."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = GENERIC_FAILURE_MESSAGE


def register_exception_handlers(app: FastAPI) -> None:
    """Register contact error and catch-all handlers on the FastAPI app."""

    @app.exception_handler(ContactError)
    async def contact_error_handler(request: Request, exc: ContactError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=exc.headers(),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg") if errors else "Invalid request."
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unhandled exceptions.

        - Logs the full traceback server-side
        - Returns a generic error message to prevent info leakage
        - In debug mode, includes the exception type and text
        """
        logger.error(
            f"Unhandled exception on {request.method} {request.url.path}:\n"
            f"{traceback.format_exc()}"
        )

        content = {"error": GENERIC_FAILURE_MESSAGE}
        if settings.DEBUG:
            content["error_type"] = type(exc).__name__
            content["message"] = str(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=content,
        )
