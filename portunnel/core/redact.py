"""Credential redaction for log output and user-facing error text.

Auth tokens are registered at runtime (one per tunnel request) and
replaced with ``[REDACTED]`` wherever they would otherwise be logged.
Values that merely *look* like an ngrok authtoken assignment are masked
too, since the tunnel process may echo its configuration back.
"""
from __future__ import annotations

import logging
import re
from typing import ClassVar

REDACTED = "[REDACTED]"

# e.g. "NGROK_AUTHTOKEN=abc", "authtoken: abc", '"authtoken":"abc"', "--authtoken abc"
_TOKEN_ASSIGNMENT_RE = re.compile(
    r"(?i)((?:ngrok_)?authtoken[\"']?\s*[=:]\s*[\"']?|--authtoken\s+)([^\s\"',}]+)"
)


class SecretFilter(logging.Filter):
    """Logging filter that redacts registered secrets from every record.

    Secrets are shared class-wide so a filter attached once to the root
    handlers covers credentials registered later by any component.
    """

    _secrets: ClassVar[dict[str, int]] = {}
    _pattern: ClassVar[re.Pattern[str] | None] = None

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = scrub(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: scrub(v) if isinstance(v, str) else v
                    for k, v in record.args.items()
                }
            else:
                record.args = tuple(
                    scrub(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        return True

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Register *secret* for redaction. Empty strings are ignored.

        Registrations are counted; each one is paired with an
        ``unregister_secret`` call when the secret is no longer in use.
        """
        if secret:
            cls._secrets[secret] = cls._secrets.get(secret, 0) + 1
            cls._rebuild_pattern()

    @classmethod
    def unregister_secret(cls, secret: str) -> None:
        """Drop one registration of *secret*; it stays masked until the last one."""
        count = cls._secrets.get(secret)
        if count is None:
            return
        if count > 1:
            cls._secrets[secret] = count - 1
            return
        del cls._secrets[secret]
        cls._rebuild_pattern()

    @classmethod
    def clear_secrets(cls) -> None:
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def _rebuild_pattern(cls) -> None:
        if cls._secrets:
            # Longest first so a secret containing another is fully masked
            escaped = [re.escape(s) for s in sorted(cls._secrets, key=len, reverse=True)]
            cls._pattern = re.compile("|".join(escaped))
        else:
            cls._pattern = None


def scrub(text: str) -> str:
    """Return *text* with registered secrets and token assignments masked."""
    if not text:
        return text
    pattern = SecretFilter._pattern
    if pattern is not None:
        text = pattern.sub(REDACTED, text)
    return _TOKEN_ASSIGNMENT_RE.sub(lambda m: m.group(1) + REDACTED, text)


def install_secret_filter(logger: logging.Logger | None = None) -> SecretFilter:
    """Attach a ``SecretFilter`` to every handler of *logger* (root by default)."""
    target = logger or logging.getLogger()
    secret_filter = SecretFilter()
    for handler in target.handlers:
        handler.addFilter(secret_filter)
    return secret_filter
