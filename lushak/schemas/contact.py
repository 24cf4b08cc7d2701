"""
Contact form schemas and field rules.

The same rules back the submission client (before upload) and the API
(authoritative re-check). Messages are user-facing and shown verbatim.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Type, TypeVar

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from lushak.core.errors import FieldViolation, ValidationError

MAX_FILES = 8
MAX_TOTAL_SIZE_BYTES = 20 * 1024 * 1024

NAME_PATTERN = re.compile(r"^[a-zA-Z '-]+$")
LINE_BREAKS = re.compile(r"[\r\n]+")

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/csv",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/zip",
        "application/x-zip-compressed",
    }
)

MAX_FILES_MESSAGE = f"Maximum {MAX_FILES} files allowed"
TOTAL_SIZE_MESSAGE = "Total file size cannot exceed 20MB"
ALLOWED_TYPES_MESSAGE = (
    "Allowed types: JPG, PNG, GIF, WEBP, PDF, DOC, DOCX, TXT, CSV, XLS, XLSX, ZIP"
)


def is_allowed_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    # Drop parameters such as "; charset=utf-8"
    return content_type.split(";", 1)[0].strip().lower() in ALLOWED_CONTENT_TYPES


def _length_rule(value: str, label: str, min_length: int, max_length: int) -> str:
    if len(value) < min_length:
        raise PydanticCustomError(
            "too_short", f"{label} must be at least {min_length} characters"
        )
    if len(value) > max_length:
        raise PydanticCustomError(
            "too_long", f"{label} cannot exceed {max_length} characters"
        )
    return value


class ContactFields(BaseModel):
    """Human-entered fields of the contact form."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    email: str
    phone: Optional[str] = None
    subject: str
    message: str

    @field_validator("name", "email", "subject", "message", mode="before")
    @classmethod
    def coerce_text(cls, v: Any, info: ValidationInfo) -> Any:
        # Absent multipart fields arrive as None; length rules report them
        if v is None:
            return ""
        if isinstance(v, str):
            if info.field_name in ("name", "subject"):
                # Both end up in mail headers, which must stay on one line
                v = LINE_BREAKS.sub(" ", v)
            return v.strip()
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v and not NAME_PATTERN.match(v):
            raise PydanticCustomError(
                "name_format",
                "Name can only contain letters, spaces, hyphens and apostrophes",
            )
        return _length_rule(v, "Name", 2, 100)

    @field_validator("email")
    @classmethod
    def validate_email_address(cls, v: str) -> str:
        if not v:
            raise PydanticCustomError("required", "Email is required")
        try:
            return validate_email(v, check_deliverability=False).normalized
        except EmailNotValidError:
            raise PydanticCustomError("email_format", "Please enter a valid email address")

    @field_validator("phone", mode="before")
    @classmethod
    def validate_phone(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        if not v:
            return None
        if len(v) < 9:
            raise PydanticCustomError(
                "phone_length", "Phone number must be at least 9 characters if provided"
            )
        return v

    @field_validator("subject")
    @classmethod
    def validate_subject(cls, v: str) -> str:
        return _length_rule(v, "Subject", 3, 150)

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        return _length_rule(v, "Message", 10, 2000)


class ContactSubmission(ContactFields):
    """Fields plus the bot-defense token, as received by the API."""

    recaptcha_token: str = Field(alias="recaptchaToken")

    @field_validator("recaptcha_token", mode="before")
    @classmethod
    def validate_token(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise PydanticCustomError("required", "reCAPTCHA token is required")
        return v.strip()

    @property
    def email_domain(self) -> str:
        return self.email.split("@")[-1]


class ContactResponse(BaseModel):
    success: bool = True


class ErrorResponse(BaseModel):
    error: str


class DeclaredFile(Protocol):
    """Client-side view of a file: metadata declared by the browser/OS."""

    name: str
    size: int
    content_type: str


ModelT = TypeVar("ModelT", bound=BaseModel)


def _violations(exc: PydanticValidationError) -> List[FieldViolation]:
    violations = []
    for error in exc.errors():
        loc = error.get("loc") or ("__root__",)
        violations.append(FieldViolation(field=str(loc[0]), message=error["msg"]))
    return violations


def _validate(model: Type[ModelT], fields: Mapping[str, Any]) -> ModelT:
    payload = dict(fields)
    for name, info in model.model_fields.items():
        key = info.alias or name
        if key not in payload and name not in payload:
            payload[key] = None
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(_violations(exc)) from exc


def validate_form(fields: Mapping[str, Any]) -> ContactFields:
    """Validate user-entered fields. Raises ``ValidationError``."""
    return _validate(ContactFields, fields)


def validate_submission(fields: Mapping[str, Any]) -> ContactSubmission:
    """Validate a full submission, token included. Raises ``ValidationError``."""
    return _validate(ContactSubmission, fields)


def validate_declared_files(files: Iterable[DeclaredFile]) -> List[FieldViolation]:
    """Check declared metadata of staged files (client side only)."""
    files = list(files)
    violations = []
    if len(files) > MAX_FILES:
        violations.append(FieldViolation("files", MAX_FILES_MESSAGE))
    if sum(f.size for f in files) > MAX_TOTAL_SIZE_BYTES:
        violations.append(FieldViolation("files", TOTAL_SIZE_MESSAGE))
    if not all(is_allowed_content_type(f.content_type) for f in files):
        violations.append(FieldViolation("files", ALLOWED_TYPES_MESSAGE))
    return violations
