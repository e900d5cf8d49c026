"""Plain-text input sanitizing for user-supplied titles and descriptions."""

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)


def sanitize_text(text: str | None) -> str:
    """Strip all markup, leaving plain text with no angle brackets."""
    if not text:
        return ""
    cleaned = _SCRIPT_RE.sub("", text)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = html.unescape(cleaned)
    return cleaned.replace("<", "").replace(">", "").strip()


def sanitize_email(email: str | None) -> str:
    if not email:
        return ""
    return email.strip().lower()[:255]
