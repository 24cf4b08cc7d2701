import re

_DATE_PREFIX = re.compile(r"\d{4}-\d{2}-\d{2}")


def _redact_phone(match: "re.Match[str]") -> str:
    candidate = match.group()
    digits = sum(ch.isdigit() for ch in candidate)
    if digits < 9 or _DATE_PREFIX.match(candidate):
        return candidate
    return "[PHONE_REDACTED]"


def redact_pii(message: str) -> str:
    """Redact personally identifiable information from log messages.

    Contact submissions carry names, emails and phone numbers; none of them
    should reach the log sink in clear text.
    """
    if not isinstance(message, str):
        return str(message)

    # Emails: user@example.com -> u***@example.com
    message = re.sub(
        r"[\w.+-]+@[\w.-]+\.\w+",
        lambda m: m.group()[0] + "***@" + m.group().split("@")[1],
        message,
    )

    # IPs (IPv4): 192.168.1.100 -> 192.168.1.***
    message = re.sub(
        r"\b(\d{1,3}\.\d{1,3}\.\d{1,3}\.)\d{1,3}\b", r"\1***", message
    )

    # Phone numbers: +234 803 123 4567, (555) 123-4567, 08031234567
    message = re.sub(
        r"(?<![\w.:])\+?\(?\d[\d\s()-]{7,}\d\b",
        _redact_phone,
        message,
    )

    # JWT tokens: eyJ... -> [JWT_REDACTED]
    message = re.sub(
        r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+",
        "[JWT_REDACTED]",
        message,
    )

    # reCAPTCHA tokens and API keys: long opaque strings
    message = re.sub(r"\b[A-Za-z0-9_-]{40,}\b", "[TOKEN_REDACTED]", message)

    # Password values in common patterns
    message = re.sub(
        r'(password|passwd|pwd|secret)["\']?\s*[:=]\s*["\']?[^"\'&\s]+',
        r"\1=[REDACTED]",
        message,
        flags=re.IGNORECASE,
    )

    return message
