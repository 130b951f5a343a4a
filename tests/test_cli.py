"""Tests for the sntp-query command line"""

import sys
from pathlib import Path


# Ensure src is importable
ROOT = Path(__file__).parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


import pytest  # noqa: E402

from sntp_client.app import main as cli  # noqa: E402
from sntp_client.protocol.errors import Timeout  # noqa: E402
from sntp_client.protocol.packet import LocalTime, NtpTimestamp  # noqa: E402


class TestFormatting:
    """Test presentation helpers."""

    def test_format_local_time(self):
        assert cli.format_local_time(LocalTime(1704067200, 500000000)) == "2024-01-01T00:00:00.500000000Z"

    def test_format_duration(self):
        assert cli.format_duration(1_500_000) == "+1.500ms"
        assert cli.format_duration(-250_000.0) == "-0.250ms"

    def test_zero_timestamp(self):
        assert cli.format_timestamp(NtpTimestamp(0, 0)) == "-"


class _NullChannel:
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return None


class TestQueryRetries:
    """Test the caller-side retry loop."""

    def test_retries_only_timeouts(self, monkeypatch):
        calls = []

        def flaky(channel, timeout):
            calls.append(timeout)
            if len(calls) < 3:
                raise Timeout("no reply")
            return "result"

        monkeypatch.setattr(cli, "perform_exchange", flaky)
        monkeypatch.setattr(cli, "open_udp_channel", lambda endpoint: _NullChannel())
        monkeypatch.setattr(cli, "RETRY_BACKOFF", 0)
        logger = cli.setup_logging(level="ERROR")
        assert cli.query("127.0.0.1:123", 1.0, 3, logger) == "result"
        assert calls == [1.0, 1.0, 1.0]

    def test_gives_up_after_retries(self, monkeypatch):
        def silent(channel, timeout):
            raise Timeout("no reply")

        monkeypatch.setattr(cli, "perform_exchange", silent)
        monkeypatch.setattr(cli, "open_udp_channel", lambda endpoint: _NullChannel())
        monkeypatch.setattr(cli, "RETRY_BACKOFF", 0)
        logger = cli.setup_logging(level="ERROR")
        with pytest.raises(Timeout):
            cli.query("127.0.0.1:123", 1.0, 2, logger)

    def test_fresh_channel_per_attempt(self, monkeypatch):
        """Every attempt opens its own channel."""
        opened = []

        def opener(endpoint):
            opened.append(endpoint)
            return _NullChannel()

        def silent(channel, timeout):
            raise Timeout("no reply")

        monkeypatch.setattr(cli, "perform_exchange", silent)
        monkeypatch.setattr(cli, "open_udp_channel", opener)
        monkeypatch.setattr(cli, "RETRY_BACKOFF", 0)
        logger = cli.setup_logging(level="ERROR")
        with pytest.raises(Timeout):
            cli.query("127.0.0.1:123", 1.0, 3, logger)
        assert opened == ["127.0.0.1:123"] * 3

    @pytest.mark.integration
    @pytest.mark.parametrize("ntp_server", [{"first_reply_delay": 0.3}], indirect=True)
    def test_late_reply_not_paired_with_retry(self, ntp_server):
        """A reply arriving after the deadline is never read by the next attempt."""
        logger = cli.setup_logging(level="ERROR")
        result = cli.query(f"127.0.0.1:{ntp_server.port}", 0.2, 2, logger)
        assert len(ntp_server.requests) == 2
        assert 0 <= result.delay_ns < 200_000_000
        assert abs(result.offset) < 0.1


@pytest.mark.integration
class TestMain:
    """End-to-end runs of the command against a local fake server."""

    def test_success(self, ntp_server, capsys):
        code = cli.main(["-e", f"127.0.0.1:{ntp_server.port}", "-t", "2", "--log-level", "ERROR"])
        out = capsys.readouterr().out
        assert code == cli.EXIT_OK
        assert "server transmit (T3)" in out
        assert "offset:" in out
        assert "delay:" in out

    @pytest.mark.parametrize("ntp_server", [{"mode": "silent"}], indirect=True)
    def test_timeout_exit_code(self, ntp_server, capsys):
        code = cli.main(["-e", f"127.0.0.1:{ntp_server.port}", "-t", "0.2", "-r", "2", "--log-level", "ERROR"])
        err = capsys.readouterr().err
        assert code == cli.EXIT_FAILED
        assert "Timeout" in err
        assert len(ntp_server.requests) == 2

    def test_bad_endpoint(self, capsys):
        code = cli.main(["-e", "127.0.0.1:notaport", "--log-level", "ERROR"])
        assert code == cli.EXIT_FAILED

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(SystemExit):
            cli.main(["-t", "0"])

    def test_rejects_unknown_log_level(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["--log-level", "LOUD"])
        assert exc_info.value.code == 2
        assert "invalid choice" in capsys.readouterr().err

    def test_log_level_case_insensitive(self):
        args = cli.build_parser().parse_args(["--log-level", "debug"])
        assert args.log_level == "DEBUG"
