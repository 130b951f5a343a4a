"""Command-line entry point: query one SNTP server and print the result.

Usage examples:
  - sntp-query
  - sntp-query -e time.google.com:123 -t 2 -r 3 --strict
"""

from __future__ import annotations

import argparse
import sys
import time
from datetime import datetime, timezone
from typing import Optional, Sequence

from sntp_client.config.settings import settings
from sntp_client.protocol.errors import SntpError, Timeout
from sntp_client.protocol.packet import LocalTime, NtpTimestamp, reply_warnings
from sntp_client.timing.exchange import ExchangeResult, perform_exchange
from sntp_client.transport.udp import open_udp_channel
from sntp_client.utils.logging_config import setup_logging

RETRY_BACKOFF = 0.2  # seconds

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_WARNINGS = 2

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def format_local_time(value: LocalTime) -> str:
    dt = datetime.fromtimestamp(value.seconds, tz=timezone.utc)
    return f"{dt.strftime('%Y-%m-%dT%H:%M:%S')}.{value.nanoseconds:09d}Z"


def format_duration(ns: float) -> str:
    return f"{ns / 1e6:+.3f}ms"


def format_timestamp(ts: NtpTimestamp) -> str:
    if ts.is_zero():
        return "-"
    return format_local_time(ts.to_local_time())


def print_result(result: ExchangeResult, out=sys.stdout) -> None:
    reply = result.reply
    print(f"local send (T1):      {format_local_time(result.t1)}", file=out)
    print(f"origin:               {format_timestamp(reply.origin_timestamp)}", file=out)
    print(f"reference:            {format_timestamp(reply.reference_timestamp)}", file=out)
    print(f"server receive (T2):  {format_local_time(result.t2)}", file=out)
    print(f"server transmit (T3): {format_local_time(result.t3)}", file=out)
    print(f"local receive (T4):   {format_local_time(result.t4)}", file=out)
    print(f"stratum:              {reply.stratum}", file=out)
    print(f"delay:                {format_duration(result.delay_ns)}", file=out)
    print(f"offset:               {format_duration(result.offset_ns)}", file=out)


def query(endpoint: str, timeout: float, retries: int, logger) -> ExchangeResult:
    """Run exchanges until one succeeds; only timeouts are retried.

    Each attempt gets its own channel so a late reply to an earlier request
    cannot be read as the answer to a later one.
    """
    attempt = 0
    while True:
        attempt += 1
        logger.debug("exchange_start", attempt=attempt, timeout=timeout)
        try:
            with open_udp_channel(endpoint) as channel:
                return perform_exchange(channel, timeout)
        except Timeout:
            if attempt >= retries:
                raise
            logger.warning("exchange_timeout", attempt=attempt, retries=retries)
            time.sleep(RETRY_BACKOFF)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query an SNTP server once and report offset and delay")
    parser.add_argument(
        "-e",
        "--endpoint",
        default=settings.SERVER,
        help=f"NTP host as host[:port] (default: {settings.SERVER})",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=float,
        default=settings.TIMEOUT,
        help=f"Reply deadline in seconds (default: {settings.TIMEOUT})",
    )
    parser.add_argument(
        "-r",
        "--retries",
        type=int,
        default=settings.RETRIES,
        help=f"Attempts before giving up on timeouts (default: {settings.RETRIES})",
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=settings.LOG_LEVEL,
        help=f"Logging level (default: {settings.LOG_LEVEL})",
    )
    parser.add_argument("--log-path", default=settings.LOG_PATH, help="Write logs to this file")
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 2 if the reply looks invalid (stratum 0, wrong mode, ...)",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.timeout <= 0:
        parser.error("--timeout must be positive")
    if args.retries < 1:
        parser.error("--retries must be at least 1")

    logger = setup_logging(level=args.log_level, component="cli", log_path=args.log_path)
    logger = logger.bind(endpoint=args.endpoint)

    try:
        result = query(args.endpoint, args.timeout, args.retries, logger)
    except SntpError as e:
        logger.error("exchange_failed", error_type=type(e).__name__, error=str(e))
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return EXIT_FAILED
    except ValueError as e:
        logger.error("invalid_endpoint", error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return EXIT_FAILED

    logger.info(
        "exchange_complete",
        delay_ms=result.delay_ns / 1e6,
        offset_ms=result.offset_ns / 1e6,
        stratum=result.reply.stratum,
    )
    print_result(result)

    warnings = reply_warnings(result.reply)
    for warning in warnings:
        logger.warning("suspicious_reply", detail=warning)
    if warnings and args.strict:
        return EXIT_WARNINGS
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
