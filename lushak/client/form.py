"""
Contact form submission client.

Mirrors what the website form does before and after ``POST /api/contact``:
validate the fields and staged files locally, fetch a reCAPTCHA token, send
the multipart payload, and report the result as a transient notice.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional

import httpx

from lushak.client.staging import (
    FileStagingStore,
    LocalFile,
    StagingCondition,
    StagingSnapshot,
)
from lushak.core.config import settings
from lushak.core.errors import GENERIC_FAILURE_MESSAGE, ValidationError
from lushak.schemas.contact import (
    MAX_FILES_MESSAGE,
    TOTAL_SIZE_MESSAGE,
    validate_declared_files,
    validate_form,
)

logger = logging.getLogger(__name__)

CONTACT_PATH = "/api/contact"

SUCCESS_DURATION_MS = 8000
ERROR_DURATION_MS = 6000

# (site_key, action) -> token, or None when the bot-defense script is unavailable
TokenProvider = Callable[[str, str], Optional[str]]


@dataclass(frozen=True)
class Notice:
    level: str
    text: str
    duration_ms: int = ERROR_DURATION_MS


class ContactFormClient:
    """One form interaction: staged files, field checks and submission."""

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        site_key: Optional[str] = None,
        action: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        store: Optional[FileStagingStore] = None,
        notify: Optional[Callable[[Notice], None]] = None,
        timeout: float = 30.0,
    ) -> None:
        self.site_key = site_key or settings.RECAPTCHA_SITE_KEY or ""
        self.action = action or settings.RECAPTCHA_ACTION
        self.token_provider = token_provider
        self.store = store if store is not None else FileStagingStore()
        self.notices: List[Notice] = []
        self._notify = notify
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def __enter__(self) -> "ContactFormClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _emit(self, level: str, text: str, duration_ms: int = ERROR_DURATION_MS) -> None:
        notice = Notice(level=level, text=text, duration_ms=duration_ms)
        self.notices.append(notice)
        if self._notify is not None:
            self._notify(notice)

    @property
    def files(self) -> StagingSnapshot:
        return self.store.snapshot

    def add_files(self, files: List[LocalFile]) -> StagingSnapshot:
        result = self.store.add(files)
        if StagingCondition.CAPACITY_EXCEEDED in result.conditions:
            self._emit("error", MAX_FILES_MESSAGE)
        if StagingCondition.SIZE_EXCEEDED in result.conditions:
            self._emit("error", TOTAL_SIZE_MESSAGE)
        return result.snapshot

    def remove_file(self, index: int) -> StagingSnapshot:
        return self.store.remove(index)

    def _get_token(self) -> Optional[str]:
        try:
            token = self.token_provider(self.site_key, self.action)
        except Exception as exc:
            logger.warning("reCAPTCHA execution failed: %s", exc)
            self._emit("error", "reCAPTCHA execution failed.")
            return None
        if not token:
            self._emit("error", "reCAPTCHA failed to load. Please refresh the page.")
            return None
        return token

    def submit(self, fields: Mapping[str, Any]) -> bool:
        """Validate and send the form. Returns True when the server accepted it."""
        try:
            form = validate_form(fields)
        except ValidationError as exc:
            self._emit("error", exc.message)
            return False

        file_violations = validate_declared_files(self.store.snapshot)
        if file_violations:
            self._emit("error", file_violations[0].message)
            return False

        token = self._get_token()
        if token is None:
            return False

        data = {
            "name": form.name,
            "email": form.email,
            "subject": form.subject,
            "message": form.message,
            "recaptchaToken": token,
        }
        if form.phone:
            data["phone"] = form.phone

        staged = self.store.snapshot
        files = [("files", (f.name, f.file.data, f.content_type)) for f in staged]

        try:
            response = self._http.post(CONTACT_PATH, data=data, files=files or None)
        except httpx.HTTPError as exc:
            logger.warning("Contact submission transport error: %s", exc)
            self._emit("error", "Network error - please check your connection.")
            return False

        try:
            payload = response.json()
        except ValueError:
            payload = {}

        if response.is_success:
            listing = f" ({', '.join(staged.names)})" if len(staged) else ""
            self._emit("success", f"Message sent successfully!{listing}", SUCCESS_DURATION_MS)
            self.store.clear()
            return True

        error = payload.get("error") if isinstance(payload, dict) else None
        self._emit("error", error or GENERIC_FAILURE_MESSAGE)
        return False

    def close(self) -> None:
        """Teardown: release every preview handle whether or not we submitted."""
        self.store.clear()
        if self._owns_client:
            self._http.close()
