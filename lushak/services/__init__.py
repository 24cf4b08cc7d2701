"""
LUSHAK Contact Services.

Services:
    - ContactService: attachment packaging and email delivery
    - RecaptchaVerifier: reCAPTCHA v3 token verification
    - ContactPipeline: ordered, short-circuiting submission pipeline
"""

from .contact_pipeline import (
    ContactPipeline,
    SubmissionContext,
    SubmissionOutcome,
    SubmissionState,
)
from .contact_service import ContactAttachment, ContactService
from .recaptcha_service import RecaptchaVerifier, VerificationResult

__all__ = [
    "ContactAttachment",
    "ContactPipeline",
    "ContactService",
    "RecaptchaVerifier",
    "SubmissionContext",
    "SubmissionOutcome",
    "SubmissionState",
    "VerificationResult",
]
