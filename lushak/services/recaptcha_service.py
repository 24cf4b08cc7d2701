from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import requests

from lushak.core.config import Settings, settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    passed: bool
    score: Optional[float] = None
    reason: Optional[str] = None


class RecaptchaVerifier:
    """Exchanges reCAPTCHA v3 tokens with Google's siteverify endpoint.

    One attempt per token. Any network failure, non-2xx answer or malformed
    body counts as a failed verification.
    """

    def __init__(self, config: Settings = settings):
        self.verify_url = config.RECAPTCHA_VERIFY_URL
        self.secret = config.RECAPTCHA_SECRET_KEY
        self.min_score = config.RECAPTCHA_MIN_SCORE
        self.timeout = config.RECAPTCHA_TIMEOUT
        self.expected_action = config.RECAPTCHA_EXPECTED_ACTION

    def _fail(self, reason: str, score: Optional[float] = None) -> VerificationResult:
        logger.warning(
            "recaptcha verification failed: %s",
            reason,
            extra={"event_type": "recaptcha_failed", "score": score},
        )
        return VerificationResult(passed=False, score=score, reason=reason)

    def verify(self, token: Optional[str], remote_ip: Optional[str] = None) -> VerificationResult:
        if not token:
            return self._fail("missing-token")
        if not self.secret:
            logger.error("RECAPTCHA_SECRET_KEY is not configured; rejecting token")
            return self._fail("missing-secret")

        data = {"secret": self.secret.get_secret_value(), "response": token}
        if remote_ip:
            data["remoteip"] = remote_ip

        try:
            response = requests.post(self.verify_url, data=data, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("recaptcha request failed: %s", exc)
            return self._fail("request-failed")

        try:
            payload = response.json()
        except ValueError:
            return self._fail("invalid-json")

        if not isinstance(payload, dict):
            return self._fail("invalid-json")

        score = payload.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            score = None

        if payload.get("success") is not True:
            codes = payload.get("error-codes") or []
            return self._fail("unsuccessful:" + ",".join(map(str, codes)), score)

        if score is None or score < self.min_score:
            return self._fail("low-score", score)

        action = payload.get("action")
        if self.expected_action and action and action != self.expected_action:
            return self._fail(f"unexpected-action:{action}", score)

        logger.info("recaptcha verification passed score=%s", score)
        return VerificationResult(passed=True, score=float(score))
