"""NTP v3 packet codec (48-byte, big-endian, no extension fields).

Layout, in order:
- settings byte (leap indicator:2, version:3, mode:3)
- stratum (u8), poll exponent (i8), precision exponent (i8)
- root delay, root dispersion, reference id (u32 each)
- reference, origin, receive, transmit timestamps (u32 seconds + u32 fraction)

Timestamps count seconds since 1900-01-01T00:00:00Z. Era rollover in 2036 is
not handled: a wrapped seconds field decodes to a date in 1900.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import NamedTuple, Union

from .errors import MalformedPacket

PACKET_SIZE = 48
NTP_EPOCH_OFFSET = 2_208_988_800  # seconds between 1900-01-01 and 1970-01-01
NANOS_PER_SECOND = 1_000_000_000

MODE_CLIENT = 3
MODE_SERVER = 4
LEAP_ALARM = 3

# LI=0 (no warning), VN=3, mode=3 (client)
CLIENT_REQUEST_SETTINGS = 0x1B

_PACKET = struct.Struct("!BBbbIIIIIIIIIII")

Buffer = Union[bytes, bytearray, memoryview]


class PacketSettings(NamedTuple):
    """The packed first byte of a packet."""

    leap: int = 0
    version: int = 3
    mode: int = MODE_CLIENT

    def pack(self) -> int:
        if not 0 <= self.leap <= 0x3:
            raise ValueError(f"leap indicator out of range: {self.leap}")
        if not 0 <= self.version <= 0x7:
            raise ValueError(f"version out of range: {self.version}")
        if not 0 <= self.mode <= 0x7:
            raise ValueError(f"mode out of range: {self.mode}")
        return (self.leap << 6) | (self.version << 3) | self.mode

    @classmethod
    def unpack(cls, value: int) -> "PacketSettings":
        if not 0 <= value <= 0xFF:
            raise ValueError(f"settings byte out of range: {value}")
        return cls(leap=(value >> 6) & 0x3, version=(value >> 3) & 0x7, mode=value & 0x7)


class LocalTime(NamedTuple):
    """Seconds since the Unix epoch plus a nanosecond remainder in [0, 1e9)."""

    seconds: int
    nanoseconds: int

    @classmethod
    def from_ns(cls, total_ns: int) -> "LocalTime":
        seconds, nanoseconds = divmod(total_ns, NANOS_PER_SECOND)
        return cls(seconds, nanoseconds)

    def to_ns(self) -> int:
        return self.seconds * NANOS_PER_SECOND + self.nanoseconds

    def __str__(self) -> str:
        return f"{self.seconds}.{self.nanoseconds:09d}"


class NtpTimestamp(NamedTuple):
    """64-bit NTP fixed-point timestamp."""

    seconds: int = 0
    fraction: int = 0

    def to_local_time(self) -> LocalTime:
        return timestamp_to_local_time(self.seconds, self.fraction)

    def is_zero(self) -> bool:
        return self.seconds == 0 and self.fraction == 0


def timestamp_to_local_time(seconds: int, fraction: int) -> LocalTime:
    """Convert an NTP (seconds, fraction) pair to Unix epoch seconds and nanoseconds.

    The fraction is scaled by 1e9 and shifted down by 32, so ``0xFFFFFFFF``
    maps to 999999999 and never rolls over into the next second.
    """
    return LocalTime(seconds - NTP_EPOCH_OFFSET, (fraction * NANOS_PER_SECOND) >> 32)


def local_time_to_timestamp(epoch_seconds: int, nanoseconds: int) -> NtpTimestamp:
    """Inverse of :func:`timestamp_to_local_time` for times inside NTP era 0.

    The fraction is rounded up so that converting back yields exactly the
    same nanosecond value.
    """
    if not 0 <= nanoseconds < NANOS_PER_SECOND:
        raise ValueError(f"nanoseconds out of range: {nanoseconds}")
    seconds = epoch_seconds + NTP_EPOCH_OFFSET
    if not 0 <= seconds <= 0xFFFFFFFF:
        raise ValueError(f"time outside NTP era 0: {epoch_seconds}")
    fraction = ((nanoseconds << 32) + NANOS_PER_SECOND - 1) // NANOS_PER_SECOND
    return NtpTimestamp(seconds, fraction)


@dataclass(frozen=True)
class NtpPacket:
    settings: int = 0
    stratum: int = 0
    poll: int = 0
    precision: int = 0
    root_delay: int = 0
    root_dispersion: int = 0
    reference_id: int = 0
    reference_timestamp: NtpTimestamp = field(default_factory=NtpTimestamp)
    origin_timestamp: NtpTimestamp = field(default_factory=NtpTimestamp)
    receive_timestamp: NtpTimestamp = field(default_factory=NtpTimestamp)
    transmit_timestamp: NtpTimestamp = field(default_factory=NtpTimestamp)

    @property
    def leap(self) -> int:
        return PacketSettings.unpack(self.settings).leap

    @property
    def version(self) -> int:
        return PacketSettings.unpack(self.settings).version

    @property
    def mode(self) -> int:
        return PacketSettings.unpack(self.settings).mode

    @property
    def reference_code(self) -> str:
        """Reference id as ASCII, meaningful for stratum 0/1 (kiss codes, clock names)."""
        raw = self.reference_id.to_bytes(4, "big")
        return raw.rstrip(b"\x00").decode("ascii", errors="replace")

    def to_bytes(self) -> bytes:
        return _PACKET.pack(
            self.settings,
            self.stratum,
            self.poll,
            self.precision,
            self.root_delay,
            self.root_dispersion,
            self.reference_id,
            *self.reference_timestamp,
            *self.origin_timestamp,
            *self.receive_timestamp,
            *self.transmit_timestamp,
        )


def encode(settings: int) -> bytes:
    """Build a 48-byte request with only the settings byte populated."""
    if not 0 <= settings <= 0xFF:
        raise ValueError(f"settings byte out of range: {settings}")
    return NtpPacket(settings=settings).to_bytes()


def decode(data: Buffer) -> NtpPacket:
    """Parse the first 48 bytes of ``data`` into an :class:`NtpPacket`.

    No semantic checks are made here; see :func:`reply_warnings`.
    """
    if len(data) < PACKET_SIZE:
        raise MalformedPacket(f"packet too short: {len(data)} of {PACKET_SIZE} bytes")
    (
        settings,
        stratum,
        poll,
        precision,
        root_delay,
        root_dispersion,
        reference_id,
        ref_sec,
        ref_frac,
        orig_sec,
        orig_frac,
        rx_sec,
        rx_frac,
        tx_sec,
        tx_frac,
    ) = _PACKET.unpack_from(data)
    return NtpPacket(
        settings=settings,
        stratum=stratum,
        poll=poll,
        precision=precision,
        root_delay=root_delay,
        root_dispersion=root_dispersion,
        reference_id=reference_id,
        reference_timestamp=NtpTimestamp(ref_sec, ref_frac),
        origin_timestamp=NtpTimestamp(orig_sec, orig_frac),
        receive_timestamp=NtpTimestamp(rx_sec, rx_frac),
        transmit_timestamp=NtpTimestamp(tx_sec, tx_frac),
    )


def reply_warnings(packet: NtpPacket) -> list[str]:
    """Describe anything suspicious about a server reply. Advisory only."""
    warnings: list[str] = []
    if packet.mode != MODE_SERVER:
        warnings.append(f"unexpected mode {packet.mode} (expected {MODE_SERVER})")
    if packet.stratum == 0:
        warnings.append(f"stratum 0 (kiss code {packet.reference_code or '-'})")
    if not 1 <= packet.version <= 4:
        warnings.append(f"unsupported version {packet.version}")
    if packet.leap == LEAP_ALARM:
        warnings.append("leap indicator alarm: server clock unsynchronized")
    if packet.transmit_timestamp.is_zero():
        warnings.append("zero transmit timestamp")
    return warnings
