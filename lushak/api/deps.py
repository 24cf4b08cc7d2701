from fastapi import Request

from lushak.core.config import settings
from lushak.core.rate_limiter import RequestThrottle
from lushak.services.contact_service import ContactService
from lushak.services.recaptcha_service import RecaptchaVerifier


def get_request_throttle(request: Request) -> RequestThrottle:
    """Throttle owned by the running app (built at startup, see main.py)."""
    return request.app.state.throttle


def get_recaptcha_verifier() -> RecaptchaVerifier:
    return RecaptchaVerifier(settings)


def get_contact_service() -> ContactService:
    return ContactService(settings)
