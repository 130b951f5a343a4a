"""One client -> server -> client SNTP round trip.

The engine owns nothing but its buffers: the caller opens and closes the
channel, and the read deadline is applied only for the duration of the
exchange. Failures surface as :mod:`sntp_client.protocol.errors` exceptions;
nothing is retried or logged here.
"""

from __future__ import annotations

import time
from contextlib import contextmanager, suppress
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Protocol, Tuple, Union

from sntp_client.protocol.errors import (
    ChannelSetupError,
    MalformedPacket,
    ReceiveError,
    SendError,
    SntpError,
    Timeout,
)
from sntp_client.protocol.packet import (
    CLIENT_REQUEST_SETTINGS,
    PACKET_SIZE,
    LocalTime,
    NtpPacket,
    decode,
    encode,
)

Number = Union[int, float]


class DatagramChannel(Protocol):
    """Connected, bidirectional datagram transport."""

    def write(self, data: bytes) -> int: ...

    def read_into(self, buffer: bytearray) -> int: ...

    def set_read_deadline(self, timeout: Optional[float]) -> None: ...


class ExchangeState(Enum):
    NOT_STARTED = "not_started"
    AWAITING_REPLY = "awaiting_reply"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class ExchangeResult:
    """Four timestamps of one exchange and the values derived from them.

    ``delay_ns`` and ``offset_ns`` are signed; a positive offset means the
    server clock is ahead of the local clock.
    """

    t1: LocalTime  # local send
    t2: LocalTime  # server receive
    t3: LocalTime  # server transmit
    t4: LocalTime  # local receive
    delay_ns: int
    offset_ns: float
    reply: NtpPacket

    @property
    def delay(self) -> float:
        """Round-trip delay in seconds."""
        return self.delay_ns / 1e9

    @property
    def offset(self) -> float:
        """Clock offset in seconds."""
        return self.offset_ns / 1e9


def compute_delay_offset(t1: Number, t2: Number, t3: Number, t4: Number) -> Tuple[Number, float]:
    """Return ``(delay, offset)`` for the four SNTP timestamps.

    Assumes symmetric network paths.
    """
    delay = (t4 - t1) - (t3 - t2)
    offset = ((t2 - t1) + (t3 - t4)) / 2
    return delay, offset


@contextmanager
def _read_deadline(channel: DatagramChannel, timeout: float) -> Iterator[None]:
    try:
        channel.set_read_deadline(timeout)
    except (OSError, ValueError) as e:
        raise ChannelSetupError(f"failed to set read deadline: {e}", e) from e
    try:
        yield
    except BaseException:
        # the exchange error in flight wins over a failure to clear the deadline
        with suppress(OSError):
            channel.set_read_deadline(None)
        raise
    try:
        channel.set_read_deadline(None)
    except OSError as e:
        raise ChannelSetupError(f"failed to clear read deadline: {e}", e) from e


class Exchange:
    """A single request/reply pair over ``channel``; runs at most once."""

    def __init__(
        self,
        channel: DatagramChannel,
        timeout: float,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.channel = channel
        self.timeout = timeout
        self.clock = clock
        self.state = ExchangeState.NOT_STARTED

    def run(self) -> ExchangeResult:
        if self.state is not ExchangeState.NOT_STARTED:
            raise RuntimeError(f"exchange already {self.state.value}")
        self.state = ExchangeState.AWAITING_REPLY
        try:
            result = self._run()
        except SntpError:
            self.state = ExchangeState.FAILED
            raise
        self.state = ExchangeState.COMPLETE
        return result

    def _run(self) -> ExchangeResult:
        request = encode(CLIENT_REQUEST_SETTINGS)
        buffer = bytearray(PACKET_SIZE)

        with _read_deadline(self.channel, self.timeout):
            t1_ns = self.clock()
            self._send(request)
            received = self._receive(buffer)
            t4_ns = self.clock()

        if received < PACKET_SIZE:
            raise MalformedPacket(f"short reply: {received} of {PACKET_SIZE} bytes")
        reply = decode(buffer)

        t1 = LocalTime.from_ns(t1_ns)
        t2 = reply.receive_timestamp.to_local_time()
        t3 = reply.transmit_timestamp.to_local_time()
        t4 = LocalTime.from_ns(t4_ns)
        delay_ns, offset_ns = compute_delay_offset(t1.to_ns(), t2.to_ns(), t3.to_ns(), t4.to_ns())
        return ExchangeResult(
            t1=t1,
            t2=t2,
            t3=t3,
            t4=t4,
            delay_ns=delay_ns,
            offset_ns=offset_ns,
            reply=reply,
        )

    def _send(self, request: bytes) -> None:
        try:
            sent = self.channel.write(request)
        except OSError as e:
            raise SendError(f"failed to send request: {e}", e) from e
        if sent is not None and sent != len(request):
            raise SendError(f"partial write: {sent} of {len(request)} bytes")

    def _receive(self, buffer: bytearray) -> int:
        # TimeoutError must be checked before OSError, it is a subclass
        try:
            return self.channel.read_into(buffer)
        except TimeoutError as e:
            raise Timeout(f"no reply within {self.timeout}s", e) from e
        except OSError as e:
            raise ReceiveError(f"failed to read server response: {e}", e) from e


def perform_exchange(
    channel: DatagramChannel,
    timeout: float,
    clock: Callable[[], int] = time.time_ns,
) -> ExchangeResult:
    """Send one SNTP request over ``channel`` and measure delay and offset."""
    return Exchange(channel, timeout, clock=clock).run()
