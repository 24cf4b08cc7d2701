"""
Contact submission pipeline.

Stages run in order and stop at the first failure:

    throttle -> validate -> verify token -> attachments -> dispatch

Each stage either fills in the shared ``SubmissionContext`` or raises a
``ContactError``; ``ContactPipeline.run`` turns that into a tagged
``SubmissionOutcome`` whose ``state`` names where the submission ended.
A context starts out ``RECEIVED`` and carries its terminal state afterwards.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Type

from starlette.datastructures import FormData, UploadFile

from lushak.core.errors import (
    BotVerificationError,
    ContactError,
    PayloadTooLargeError,
    ThrottleError,
)
from lushak.core.rate_limiter import ANONYMOUS_IDENTIFIER, RequestThrottle
from lushak.schemas.contact import ContactSubmission, validate_submission
from lushak.services.contact_service import ContactAttachment, ContactService
from lushak.services.recaptcha_service import RecaptchaVerifier, VerificationResult

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("name", "email", "phone", "subject", "message", "recaptchaToken")
FILES_FIELD = "files"


class SubmissionState(str, Enum):
    RECEIVED = "received"
    THROTTLED = "throttled"
    INVALID = "invalid"
    UNVERIFIED = "unverified"
    ATTACHMENTS_REJECTED = "attachments_rejected"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    DISPATCHED = "dispatched"
    DISPATCH_FAILED = "dispatch_failed"


@dataclass
class SubmissionContext:
    request_id: str
    identifier: str = ANONYMOUS_IDENTIFIER
    state: SubmissionState = SubmissionState.RECEIVED
    form: Optional[FormData] = None
    submission: Optional[ContactSubmission] = None
    uploads: List[UploadFile] = field(default_factory=list)
    verification: Optional[VerificationResult] = None
    attachments: List[ContactAttachment] = field(default_factory=list)


@dataclass
class SubmissionOutcome:
    state: SubmissionState
    context: SubmissionContext
    error: Optional[ContactError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


FormLoader = Callable[[], Awaitable[FormData]]
Stage = Callable[[SubmissionContext], Awaitable[None]]


class ContactPipeline:
    """Runs one contact submission end to end, sequentially."""

    def __init__(
        self,
        throttle: RequestThrottle,
        verifier: RecaptchaVerifier,
        service: ContactService,
        load_form: FormLoader,
    ):
        self.throttle = throttle
        self.verifier = verifier
        self.service = service
        self.load_form = load_form

    def stages(self) -> List[Tuple[Stage, SubmissionState, Dict[Type[ContactError], SubmissionState]]]:
        return [
            (self._admit, SubmissionState.THROTTLED, {}),
            (self._validate, SubmissionState.INVALID, {}),
            (self._verify, SubmissionState.UNVERIFIED, {}),
            (
                self._collect_attachments,
                SubmissionState.ATTACHMENTS_REJECTED,
                {PayloadTooLargeError: SubmissionState.PAYLOAD_TOO_LARGE},
            ),
            (self._dispatch, SubmissionState.DISPATCH_FAILED, {}),
        ]

    async def run(self, ctx: SubmissionContext) -> SubmissionOutcome:
        try:
            for stage, failure_state, overrides in self.stages():
                try:
                    await stage(ctx)
                except ContactError as exc:
                    state = overrides.get(type(exc), failure_state)
                    ctx.state = state
                    logger.info(
                        "Contact submission stopped id=%s state=%s reason=%s",
                        ctx.request_id,
                        state.value,
                        exc.message,
                        extra={"event_type": "contact_rejected", "state": state.value},
                    )
                    return SubmissionOutcome(state=state, context=ctx, error=exc)
        finally:
            ctx.attachments = []
            if ctx.form is not None:
                await ctx.form.close()

        ctx.state = SubmissionState.DISPATCHED
        return SubmissionOutcome(state=ctx.state, context=ctx)

    async def _admit(self, ctx: SubmissionContext) -> None:
        decision = self.throttle.admit(ctx.identifier)
        if not decision.allowed:
            raise ThrottleError(retry_after=decision.retry_after)

    async def _validate(self, ctx: SubmissionContext) -> None:
        ctx.form = await self.load_form()
        fields = {name: ctx.form.get(name) for name in TEXT_FIELDS}
        ctx.submission = validate_submission(fields)
        # Browsers send an empty part when no file was picked
        ctx.uploads = [
            item
            for item in ctx.form.getlist(FILES_FIELD)
            if isinstance(item, UploadFile) and item.filename
        ]

    async def _verify(self, ctx: SubmissionContext) -> None:
        remote_ip = None if ctx.identifier == ANONYMOUS_IDENTIFIER else ctx.identifier
        ctx.verification = await asyncio.to_thread(
            self.verifier.verify, ctx.submission.recaptcha_token, remote_ip
        )
        if not ctx.verification.passed:
            raise BotVerificationError()

    async def _collect_attachments(self, ctx: SubmissionContext) -> None:
        self.service.check_uploads(ctx.uploads)
        ctx.attachments = await self.service.read_attachments(ctx.uploads)

    async def _dispatch(self, ctx: SubmissionContext) -> None:
        message = self.service.build_email_message(
            request_id=ctx.request_id,
            submission=ctx.submission,
            attachments=ctx.attachments,
        )
        await self.service.send_contact_email(message)
        logger.info(
            "AUDIT: Contact request dispatched id=%s attachments=%d",
            ctx.request_id,
            len(ctx.attachments),
            extra={
                "event_type": "contact_dispatched",
                "email_domain": ctx.submission.email_domain,
                "has_attachment": bool(ctx.attachments),
            },
        )
