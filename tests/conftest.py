import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("THROTTLE_BACKEND", "memory")

from typing import List

import pytest
from fastapi.testclient import TestClient

from lushak.api.deps import get_recaptcha_verifier, get_request_throttle
from lushak.core.config import settings
from lushak.core.rate_limiter import InMemorySlidingWindow, RequestThrottle
from lushak.main import app
from lushak.services.contact_service import ContactService
from lushak.services.recaptcha_service import VerificationResult

# -----------------------------------------------------------------------------
# Collaborator doubles
# -----------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock for sliding-window tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVerifier:
    """Stands in for RecaptchaVerifier; records the tokens it saw."""

    def __init__(self, result: VerificationResult = VerificationResult(passed=True, score=0.9)):
        self.result = result
        self.calls: List[tuple] = []

    def verify(self, token, remote_ip=None) -> VerificationResult:
        self.calls.append((token, remote_ip))
        return self.result


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _smtp_settings(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.mailhost.io", raising=False)
    monkeypatch.setattr(settings, "SMTP_PORT", 587, raising=False)
    monkeypatch.setattr(settings, "SMTP_USER", "hello@lushak.io", raising=False)
    monkeypatch.setattr(settings, "CONTACT_RECIPIENT", None, raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def throttle(clock) -> RequestThrottle:
    return RequestThrottle(InMemorySlidingWindow(), limit=5, window_seconds=60, clock=clock)


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def outbox(monkeypatch):
    """Capture messages instead of talking to SMTP."""
    sent = []

    async def _mock_send_contact_email(self, message):
        sent.append(message)

    monkeypatch.setattr(ContactService, "send_contact_email", _mock_send_contact_email)
    return sent


@pytest.fixture
def client(throttle, verifier):
    app.dependency_overrides[get_request_throttle] = lambda: throttle
    app.dependency_overrides[get_recaptcha_verifier] = lambda: verifier

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def valid_form():
    return {
        "name": "Jane Doe",
        "email": "jane.doe@example.com",
        "subject": "Hello",
        "message": "Looking for a quote!",
        "recaptchaToken": "token-abc",
    }
