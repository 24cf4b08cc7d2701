"""Email packaging, attachment reading and SMTP delivery."""
from datetime import datetime, timezone
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pydantic import SecretStr
from starlette.datastructures import Headers, UploadFile

from lushak.core import email as email_module
from lushak.core.config import settings
from lushak.core.errors import DispatchError, PayloadTooLargeError, ValidationError
from lushak.schemas.contact import ALLOWED_TYPES_MESSAGE, validate_submission
from lushak.services.contact_service import ContactAttachment, ContactService


def _upload(name, data, content_type="application/pdf"):
    return UploadFile(
        file=BytesIO(data),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


@pytest.fixture
def service():
    return ContactService(settings)


@pytest.fixture
def submission():
    return validate_submission(
        {
            "name": "Jane Doe",
            "email": "jane.doe@example.com",
            "phone": "+234 803 123 4567",
            "subject": "Quote for <b>analytics</b>",
            "message": "Line one of the brief\nLine two & more",
            "recaptchaToken": "token-abc",
        }
    )


class TestBuildEmailMessage:
    def test_headers(self, service, submission):
        message = service.build_email_message("req-1", submission)

        assert message["From"] == "Contact Form <hello@lushak.io>"
        assert message["To"] == "hello@lushak.io"
        assert message["Reply-To"] == "jane.doe@example.com"
        assert message["Subject"] == "New Contact: Quote for <b>analytics</b> - Jane Doe"
        assert message["X-Contact-Request-ID"] == "req-1"

    def test_explicit_recipient_wins(self, service, submission, monkeypatch):
        monkeypatch.setattr(settings, "CONTACT_RECIPIENT", "inbox@lushak.io")

        message = service.build_email_message("req-1", submission)

        assert message["To"] == "inbox@lushak.io"

    def test_timestamp_in_lagos_time(self, service, submission):
        sent_at = datetime(2026, 1, 15, 14, 30, 5, tzinfo=timezone.utc)

        message = service.build_email_message("req-1", submission, sent_at=sent_at)

        text = message.get_body(preferencelist=("plain",)).get_content()
        assert "Time: 1/15/2026, 3:30:05 PM" in text
        html = message.get_body(preferencelist=("html",)).get_content()
        assert "&copy; 2026 LUSHAK DATA SYSTEMS" in html

    def test_html_escapes_user_input(self, service, submission):
        message = service.build_email_message("req-1", submission)

        html = message.get_body(preferencelist=("html",)).get_content()
        assert "<b>analytics</b>" not in html
        assert "Quote for &lt;b&gt;analytics&lt;/b&gt;" in html
        assert "Line one of the brief<br>Line two &amp; more" in html
        assert "+234 803 123 4567" in html

    def test_phone_row_omitted_when_absent(self, service, submission):
        message = service.build_email_message(
            "req-1", submission.model_copy(update={"phone": None})
        )

        html = message.get_body(preferencelist=("html",)).get_content()
        assert "Phone:" not in html

    def test_attachments(self, service, submission):
        attachments = [
            ContactAttachment("brief.pdf", "application/pdf", b"%PDF"),
            ContactAttachment("data.csv", "text/csv; charset=utf-8", b"a,b\n1,2\n"),
        ]

        message = service.build_email_message("req-1", submission, attachments)

        parts = list(message.iter_attachments())
        assert [p.get_filename() for p in parts] == ["brief.pdf", "data.csv"]
        assert parts[1].get_content_type() == "text/csv"
        assert parts[0].get_payload(decode=True) == b"%PDF"
        html = message.get_body(preferencelist=("html",)).get_content()
        assert "&bull; brief.pdf" in html
        assert "Attached files:" in html

    def test_from_omitted_without_smtp_user(self, service, submission, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_USER", None)

        message = service.build_email_message("req-1", submission)

        assert message["From"] is None
        assert message["To"] is None


class TestCheckUploads:
    def test_nine_uploads_rejected(self, service):
        uploads = [_upload(f"n{i}.pdf", b"x") for i in range(9)]

        with pytest.raises(ValidationError) as exc_info:
            service.check_uploads(uploads)

        assert exc_info.value.message == "Maximum 8 files allowed"

    def test_disallowed_type_rejected(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.check_uploads([_upload("page.html", b"<html>", "text/html")])

        assert exc_info.value.message == ALLOWED_TYPES_MESSAGE

    def test_allowed_uploads_pass(self, service):
        service.check_uploads(
            [_upload("a.pdf", b"x"), _upload("b.png", b"x", "image/png")]
        )


class TestReadAttachments:
    @pytest.mark.asyncio
    async def test_reads_all_uploads_in_order(self, service):
        attachments = await service.read_attachments(
            [_upload("a.pdf", b"first"), _upload("b.png", b"second", "image/png")]
        )

        assert [a.filename for a in attachments] == ["a.pdf", "b.png"]
        assert attachments[1].content == b"second"
        assert attachments[1].content_type == "image/png"
        assert attachments[0].size_bytes == 5

    @pytest.mark.asyncio
    async def test_exactly_at_cap_is_accepted(self, service):
        service.max_total_bytes = 10

        attachments = await service.read_attachments(
            [_upload("a.pdf", b"x" * 6), _upload("b.pdf", b"y" * 4)]
        )

        assert sum(a.size_bytes for a in attachments) == 10

    @pytest.mark.asyncio
    async def test_over_cap_aborts(self, service):
        service.max_total_bytes = 10

        with pytest.raises(PayloadTooLargeError) as exc_info:
            await service.read_attachments(
                [_upload("a.pdf", b"x" * 6), _upload("b.pdf", b"y" * 5)]
            )

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == "Total uploaded size exceeds 20MB limit"


class TestSendContactEmail:
    @pytest.mark.asyncio
    async def test_transport_failure_becomes_dispatch_error(self, service, monkeypatch):
        async def _fail(message, config):
            raise OSError("connection reset")

        monkeypatch.setattr("lushak.services.contact_service.send_email", _fail)

        with pytest.raises(DispatchError) as exc_info:
            await service.send_contact_email(MagicMock())

        assert exc_info.value.message == "Failed to send message."

    @pytest.mark.asyncio
    async def test_missing_smtp_host_is_dispatch_error(self, service, monkeypatch):
        monkeypatch.setattr(settings, "SMTP_HOST", None)

        with pytest.raises(DispatchError):
            await service.send_contact_email(MagicMock())

    @pytest.mark.asyncio
    async def test_delegates_to_transport(self, service, monkeypatch):
        sent = []

        async def _send(message, config):
            sent.append((message, config))

        monkeypatch.setattr("lushak.services.contact_service.send_email", _send)
        message = MagicMock()

        await service.send_contact_email(message)

        assert sent == [(message, settings)]


class TestSmtpTransport:
    @staticmethod
    def _config(port=587, user="hello@lushak.io", password="app-password"):
        return SimpleNamespace(
            SMTP_HOST="smtp.mailhost.io",
            SMTP_PORT=port,
            SMTP_USER=user,
            SMTP_PASSWORD=SecretStr(password) if password else None,
            SMTP_TIMEOUT=30.0,
        )

    def test_starttls_on_submission_port(self, monkeypatch):
        smtp = MagicMock()
        smtp_ssl = MagicMock()
        monkeypatch.setattr(email_module.smtplib, "SMTP", smtp)
        monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", smtp_ssl)
        message = MagicMock()

        email_module._send_email_sync(message, self._config(port=587))

        smtp.assert_called_once_with("smtp.mailhost.io", 587, timeout=30.0)
        smtp_ssl.assert_not_called()
        server = smtp.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("hello@lushak.io", "app-password")
        server.send_message.assert_called_once_with(message)

    def test_implicit_tls_on_port_465(self, monkeypatch):
        smtp = MagicMock()
        smtp_ssl = MagicMock()
        monkeypatch.setattr(email_module.smtplib, "SMTP", smtp)
        monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", smtp_ssl)

        email_module._send_email_sync(MagicMock(), self._config(port=465))

        smtp.assert_not_called()
        smtp_ssl.assert_called_once_with("smtp.mailhost.io", 465, timeout=30.0)
        smtp_ssl.return_value.starttls.assert_not_called()

    def test_no_login_without_credentials(self, monkeypatch):
        smtp = MagicMock()
        monkeypatch.setattr(email_module.smtplib, "SMTP", smtp)

        email_module._send_email_sync(MagicMock(), self._config(password=None))

        smtp.return_value.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_email_runs_transport_once(self, monkeypatch):
        calls = []
        monkeypatch.setattr(
            email_module, "_send_email_sync", lambda message, config: calls.append(message)
        )
        message = MagicMock()

        await email_module.send_email(message, self._config())

        assert calls == [message]
