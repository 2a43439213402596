"""Tests for tunnel log decoding and the incremental scanner."""
from __future__ import annotations

from unittest.mock import patch

from portunnel.capabilities.tunnel import log_scanner
from portunnel.capabilities.tunnel.log_scanner import (
    LogScanner,
    decode_line,
    decode_lines,
    find_tunnel_url,
)

OPEN = '{"lvl":"info","msg":"open config file","path":"/var/lib/ngrok/ngrok.yml"}'
STARTED = '{"lvl":"info","msg":"started tunnel","name":"command_line","url":"https://abcd.ngrok-free.app"}'


class TestDecodeLine:
    def test_object(self):
        assert decode_line(OPEN)["msg"] == "open config file"

    def test_surrounding_whitespace(self):
        assert decode_line(f"  {OPEN}\r\n") is not None

    def test_blank(self):
        assert decode_line("   ") is None

    def test_truncated(self):
        assert decode_line('{"msg":"star') is None

    def test_not_json(self):
        assert decode_line("t=2024-01-01 lvl=info msg=hello") is None

    def test_non_object_json(self):
        assert decode_line("[1, 2, 3]") is None
        assert decode_line('"started tunnel"') is None
        assert decode_line("42") is None

    def test_decode_lines_skips_bad(self):
        records = list(decode_lines([OPEN, "oops", "", STARTED]))
        assert [r["msg"] for r in records] == ["open config file", "started tunnel"]


class TestFindTunnelUrl:
    def test_found(self):
        records = [decode_line(OPEN), decode_line(STARTED)]
        assert find_tunnel_url(records) == "https://abcd.ngrok-free.app"

    def test_absent(self):
        assert find_tunnel_url([decode_line(OPEN)]) is None

    def test_missing_url_is_skipped(self):
        records = [{"msg": "started tunnel"}, {"msg": "started tunnel", "url": "https://b.io"}]
        assert find_tunnel_url(records) == "https://b.io"

    def test_non_string_url_is_skipped(self):
        assert find_tunnel_url([{"msg": "started tunnel", "url": 42}]) is None

    def test_stops_at_first_match(self):
        seen = []

        def records():
            for r in [{"msg": "started tunnel", "url": "https://a.io"}, {"msg": "other"}]:
                seen.append(r["msg"])
                yield r

        assert find_tunnel_url(records()) == "https://a.io"
        assert seen == ["started tunnel"]

    def test_custom_event_name(self):
        records = [{"msg": "tunnel session started", "url": "https://c.io"}]
        assert find_tunnel_url(records, event_name="tunnel session started") == "https://c.io"


class TestLogScanner:
    def test_empty_payload(self):
        scanner = LogScanner()
        assert scanner.feed("") is None
        assert scanner.high_water_mark == 0

    def test_url_in_first_payload(self):
        scanner = LogScanner()
        assert scanner.feed(f"{OPEN}\n{STARTED}\n") == "https://abcd.ngrok-free.app"
        assert scanner.url == "https://abcd.ngrok-free.app"

    def test_cumulative_payloads(self):
        scanner = LogScanner()
        assert scanner.feed(f"{OPEN}\n") is None
        assert scanner.feed(f"{OPEN}\n{STARTED}\n") == "https://abcd.ngrok-free.app"

    def test_high_water_mark_skips_scanned_prefix(self):
        scanner = LogScanner()
        first = f"{OPEN}\n"
        scanner.feed(first)
        assert scanner.high_water_mark == len(first)

        with patch.object(log_scanner, "decode_line", wraps=log_scanner.decode_line) as spy:
            scanner.feed(first + f"{OPEN}\n")
        # Only the one new line was decoded
        assert spy.call_count == 1

    def test_partial_line_not_counted(self):
        scanner = LogScanner()
        scanner.feed(f"{OPEN}\n" + '{"msg":"star')
        assert scanner.high_water_mark == len(OPEN) + 1
        assert scanner.feed(f"{OPEN}\n{STARTED}\n") == "https://abcd.ngrok-free.app"

    def test_complete_last_line_without_newline(self):
        scanner = LogScanner()
        assert scanner.feed(f"{OPEN}\n{STARTED}") == "https://abcd.ngrok-free.app"

    def test_truncated_log_rescans(self):
        scanner = LogScanner()
        scanner.feed(f"{OPEN}\n{OPEN}\n")
        # Container was recreated: history no longer extends what we saw
        assert scanner.feed(f"{STARTED}\n") == "https://abcd.ngrok-free.app"

    def test_idempotent_after_match(self):
        scanner = LogScanner()
        payload = f"{OPEN}\n{STARTED}\n"
        first = scanner.feed(payload)
        assert scanner.feed(payload) == first
        assert scanner.feed(payload + '{"msg":"started tunnel","url":"https://other.io"}\n') == first

    def test_same_payload_twice_same_outcome(self):
        payload = f"garbage\n{OPEN}\n{STARTED}\n"
        assert LogScanner().feed(payload) == LogScanner().feed(payload)

    def test_malformed_lines_ignored(self):
        scanner = LogScanner()
        payload = "not json\n{broken\n" + f"{STARTED}\n"
        assert scanner.feed(payload) == "https://abcd.ngrok-free.app"

    def test_crlf_lines(self):
        scanner = LogScanner()
        assert scanner.feed(f"{OPEN}\r\n{STARTED}\r\n") == "https://abcd.ngrok-free.app"
