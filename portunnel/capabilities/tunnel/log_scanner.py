"""Line-oriented scanning of the tunnel process's JSON log output.

``docker logs`` always returns the full history, so every poll sees the
same prefix again.  ``LogScanner`` keeps a high-water mark over the
complete lines it has already decoded and only parses what is new.
"""
from __future__ import annotations

import json
import logging
from typing import Iterable, Iterator

from portunnel.core.redact import scrub

logger = logging.getLogger(__name__)

TUNNEL_STARTED_MSG = "started tunnel"


def decode_line(line: str) -> dict | None:
    """Decode one log line into a record, or ``None`` if it is not a JSON object.

    Truncated lines (the writer has not flushed yet) land here too; a
    later poll will see them complete.
    """
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except ValueError:
        logger.debug("Skipping malformed log line: %s", scrub(line[:200]))
        return None
    if not isinstance(record, dict):
        return None
    return record


def decode_lines(lines: Iterable[str]) -> Iterator[dict]:
    for line in lines:
        record = decode_line(line)
        if record is not None:
            yield record


def find_tunnel_url(records: Iterable[dict], event_name: str = TUNNEL_STARTED_MSG) -> str | None:
    """Return the URL of the first *event_name* record, stopping there."""
    for record in records:
        if record.get("msg") != event_name:
            continue
        url = record.get("url")
        if isinstance(url, str) and url:
            return url
        logger.debug("'%s' record without a usable url, ignoring", event_name)
    return None


class LogScanner:
    """Incremental scanner over a cumulative, append-only log payload."""

    def __init__(self, event_name: str = TUNNEL_STARTED_MSG) -> None:
        self._event_name = event_name
        self._scanned = ""  # complete lines already decoded
        self._url: str | None = None

    @property
    def url(self) -> str | None:
        return self._url

    @property
    def high_water_mark(self) -> int:
        """Number of characters of complete lines already scanned."""
        return len(self._scanned)

    def feed(self, text: str) -> str | None:
        """Scan the full payload *text*; return the tunnel URL once seen.

        Only the part past the high-water mark is decoded.  If *text* no
        longer extends what was scanned before (the log was truncated or
        the container recreated), scanning restarts from the beginning.
        """
        if self._url is not None:
            return self._url

        if not text.startswith(self._scanned):
            logger.debug("Log payload no longer extends scanned prefix, rescanning")
            self._scanned = ""

        pending = text[len(self._scanned):]
        cut = pending.rfind("\n") + 1
        complete, partial = pending[:cut], pending[cut:]

        lines = complete.splitlines()
        if partial:
            # Decoded every time until its newline arrives; never marked scanned
            lines.append(partial)

        for line in lines:
            if line.strip():
                logger.debug("tunnel: %s", scrub(line.strip()))

        self._url = find_tunnel_url(decode_lines(lines), self._event_name)
        self._scanned += complete
        return self._url
