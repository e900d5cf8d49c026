"""Logging setup: console handler plus redaction of credential-shaped values."""

import logging
import sys

SENSITIVE_KEYS = ("password", "access_key", "secret_key", "token", "encryption_key")
REDACTED = "[REDACTED]"


def _is_sensitive(key: object) -> bool:
    # accessKey, access_key and access-key all match
    normalized = str(key).lower().replace("_", "").replace("-", "")
    return any(s.replace("_", "") in normalized for s in SENSITIVE_KEYS)


def redact(value):
    """Return a copy of dict/list `value` with sensitive keys masked."""
    if isinstance(value, dict):
        return {
            k: REDACTED if _is_sensitive(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(v) for v in value)
    return value


class SensitiveDataFilter(logging.Filter):
    """Masks credential fields in dict-shaped log arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = redact(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(redact(a) for a in record.args)
        return True


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("videorelay")
    if any(isinstance(f, SensitiveDataFilter) for h in root.handlers for f in h.filters):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    )
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)
    root.setLevel(level.upper())
