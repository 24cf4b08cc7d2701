from io import BytesIO

import pytest
from starlette.datastructures import FormData, Headers, UploadFile

from lushak.core.config import settings
from lushak.core.errors import (
    BotVerificationError,
    DispatchError,
    PayloadTooLargeError,
    ThrottleError,
    ValidationError,
)
from lushak.services.contact_pipeline import (
    ContactPipeline,
    SubmissionContext,
    SubmissionState,
)
from lushak.services.contact_service import ContactService
from lushak.services.recaptcha_service import VerificationResult


def _upload(name, data, content_type="application/pdf"):
    return UploadFile(
        file=BytesIO(data),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


class FormSource:
    """Hands out one parsed form and remembers whether it was requested."""

    def __init__(self, fields, uploads=()):
        self.uploads = list(uploads)
        self.form = FormData(list(fields.items()) + [("files", u) for u in self.uploads])
        self.loaded = 0

    async def __call__(self):
        self.loaded += 1
        return self.form


@pytest.fixture
def fields(valid_form):
    return dict(valid_form)


@pytest.fixture
def service():
    return ContactService(settings)


def _pipeline(throttle, verifier, service, source):
    return ContactPipeline(throttle=throttle, verifier=verifier, service=service, load_form=source)


class TestContactPipeline:
    def test_context_starts_received(self):
        assert SubmissionContext(request_id="req-1").state is SubmissionState.RECEIVED

    @pytest.mark.asyncio
    async def test_dispatches_and_releases_resources(
        self, throttle, verifier, service, outbox, fields
    ):
        source = FormSource(fields, [_upload("brief.pdf", b"%PDF")])
        ctx = SubmissionContext(request_id="req-1", identifier="203.0.113.7")

        outcome = await _pipeline(throttle, verifier, service, source).run(ctx)

        assert outcome.ok
        assert outcome.state is SubmissionState.DISPATCHED
        assert ctx.state is SubmissionState.DISPATCHED
        assert len(outbox) == 1
        assert outbox[0]["X-Contact-Request-ID"] == "req-1"
        assert ctx.attachments == []
        assert source.uploads[0].file.closed
        assert verifier.calls == [("token-abc", "203.0.113.7")]

    @pytest.mark.asyncio
    async def test_throttled_before_form_is_read(self, throttle, verifier, service, outbox, fields):
        for _ in range(5):
            throttle.admit("203.0.113.7")
        source = FormSource(fields)

        ctx = SubmissionContext(request_id="req-1", identifier="203.0.113.7")

        outcome = await _pipeline(throttle, verifier, service, source).run(ctx)

        assert outcome.state is SubmissionState.THROTTLED
        assert ctx.state is SubmissionState.THROTTLED
        assert isinstance(outcome.error, ThrottleError)
        assert outcome.error.retry_after == 60
        assert source.loaded == 0
        assert outbox == []

    @pytest.mark.asyncio
    async def test_invalid_fields_skip_verification(
        self, throttle, verifier, service, outbox, fields
    ):
        source = FormSource({**fields, "email": "nope"})

        outcome = await _pipeline(throttle, verifier, service, source).run(
            SubmissionContext(request_id="req-1")
        )

        assert outcome.state is SubmissionState.INVALID
        assert isinstance(outcome.error, ValidationError)
        assert verifier.calls == []
        assert outbox == []

    @pytest.mark.asyncio
    async def test_failed_bot_check_never_reads_or_dispatches(
        self, throttle, verifier, service, outbox, fields
    ):
        verifier.result = VerificationResult(passed=False, score=0.1, reason="low-score")
        upload = _upload("brief.pdf", b"%PDF")
        source = FormSource(fields, [upload])
        ctx = SubmissionContext(request_id="req-1")

        outcome = await _pipeline(throttle, verifier, service, source).run(ctx)

        assert outcome.state is SubmissionState.UNVERIFIED
        assert isinstance(outcome.error, BotVerificationError)
        assert ctx.attachments == []
        assert outbox == []
        assert upload.file.closed

    @pytest.mark.asyncio
    async def test_anonymous_identifier_sends_no_remote_ip(
        self, throttle, verifier, service, outbox, fields
    ):
        await _pipeline(throttle, verifier, service, FormSource(fields)).run(
            SubmissionContext(request_id="req-1")
        )

        assert verifier.calls == [("token-abc", None)]

    @pytest.mark.asyncio
    async def test_disallowed_attachment_rejected(
        self, throttle, verifier, service, outbox, fields
    ):
        source = FormSource(fields, [_upload("run.sh", b"#!/bin/sh", "application/x-sh")])

        outcome = await _pipeline(throttle, verifier, service, source).run(
            SubmissionContext(request_id="req-1")
        )

        assert outcome.state is SubmissionState.ATTACHMENTS_REJECTED
        assert outbox == []

    @pytest.mark.asyncio
    async def test_oversized_attachments_tagged_separately(
        self, throttle, verifier, service, outbox, fields
    ):
        service.max_total_bytes = 4
        source = FormSource(fields, [_upload("a.pdf", b"abc"), _upload("b.pdf", b"de")])

        outcome = await _pipeline(throttle, verifier, service, source).run(
            SubmissionContext(request_id="req-1")
        )

        assert outcome.state is SubmissionState.PAYLOAD_TOO_LARGE
        assert isinstance(outcome.error, PayloadTooLargeError)
        assert outbox == []

    @pytest.mark.asyncio
    async def test_dispatch_failure(self, throttle, verifier, service, fields, monkeypatch):
        async def _fail(self, message):
            raise DispatchError()

        monkeypatch.setattr(ContactService, "send_contact_email", _fail)

        outcome = await _pipeline(throttle, verifier, service, FormSource(fields)).run(
            SubmissionContext(request_id="req-1")
        )

        assert outcome.state is SubmissionState.DISPATCH_FAILED
        assert not outcome.ok

    @pytest.mark.asyncio
    async def test_empty_file_parts_ignored(self, throttle, verifier, service, outbox, fields):
        source = FormSource(fields, [_upload("", b"")])

        outcome = await _pipeline(throttle, verifier, service, source).run(
            SubmissionContext(request_id="req-1")
        )

        assert outcome.ok
        assert list(outbox[0].iter_attachments()) == []
