"""Secret redaction for log output.

Two kinds of value are masked: AWS credentials taken from the environment,
and secrets handed over at runtime with ``register_secret`` (the private key
material returned when a key pair is created).
"""

import logging
import os
import re

# Env vars whose values should be redacted from all output
_SECRET_ENV_VARS = [
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
]

_MIN_SECRET_LENGTH = 8  # skip short values to avoid false positives

_registered: set[str] = set()
_patterns: list[re.Pattern] | None = None


def register_secret(value: str) -> None:
    """Mask ``value`` in every log record emitted from now on."""
    global _patterns
    if value and len(value) >= _MIN_SECRET_LENGTH and value not in _registered:
        _registered.add(value)
        _patterns = None


def _secret_values() -> set[str]:
    values = {v for v in (os.environ.get(var, "") for var in _SECRET_ENV_VARS) if len(v) >= _MIN_SECRET_LENGTH}
    return values | _registered


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        # Longer values first so a secret containing another is fully replaced
        _patterns = [re.compile(re.escape(v)) for v in sorted(_secret_values(), key=len, reverse=True)]
    return _patterns


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    for pattern in _get_patterns():
        text = pattern.sub("***", text)
    return text


def _redact_arg(value):
    return redact_secrets(value) if isinstance(value, str) else value


class SecretRedactingFilter(logging.Filter):
    """Handler filter that masks secrets in both the message and its %-args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not _get_patterns():
            return True
        record.msg = redact_secrets(str(record.msg))
        if isinstance(record.args, dict):
            record.args = {k: _redact_arg(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_redact_arg(a) for a in record.args)
        return True
