"""
Public contact endpoint.

Receives the website contact form (multipart, with optional attachments)
and forwards it by email to the team inbox.
"""
from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.datastructures import FormData

from lushak.api.deps import (
    get_contact_service,
    get_recaptcha_verifier,
    get_request_throttle,
)
from lushak.core.errors import FieldViolation, ValidationError
from lushak.core.rate_limiter import RequestThrottle, get_client_ip
from lushak.schemas.contact import ContactResponse, ErrorResponse
from lushak.services.contact_pipeline import ContactPipeline, SubmissionContext
from lushak.services.contact_service import ContactService
from lushak.services.recaptcha_service import RecaptchaVerifier

logger = logging.getLogger(__name__)

router = APIRouter()

# Parser ceilings sit above the business limits so those can report properly
FORM_MAX_FILES = 64
FORM_MAX_FIELDS = 64


@router.post(
    "/contact",
    response_model=ContactResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a contact message",
    description=(
        "Multipart form with `name`, `email`, `phone` (optional), `subject`, "
        "`message`, `recaptchaToken` and up to 8 `files` (20MB total)."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid submission"},
        429: {"model": ErrorResponse, "description": "Too many requests"},
        500: {"model": ErrorResponse, "description": "Attachments too large or delivery failed"},
    },
)
async def submit_contact(
    request: Request,
    throttle: RequestThrottle = Depends(get_request_throttle),
    verifier: RecaptchaVerifier = Depends(get_recaptcha_verifier),
    service: ContactService = Depends(get_contact_service),
) -> ContactResponse:
    """Run the contact pipeline and translate its outcome."""

    async def load_form() -> FormData:
        try:
            return await request.form(max_files=FORM_MAX_FILES, max_fields=FORM_MAX_FIELDS)
        except HTTPException as exc:
            logger.info("Malformed contact form body: %s", exc.detail)
            raise ValidationError([FieldViolation("form", "Invalid form submission.")]) from exc

    request_id = getattr(request.state, "request_id", None) or uuid4().hex
    ctx = SubmissionContext(request_id=request_id, identifier=get_client_ip(request))

    pipeline = ContactPipeline(
        throttle=throttle,
        verifier=verifier,
        service=service,
        load_form=load_form,
    )
    outcome = await pipeline.run(ctx)
    if outcome.error is not None:
        raise outcome.error

    return ContactResponse(success=True)
