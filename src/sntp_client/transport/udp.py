"""Connected UDP socket exposed as a datagram channel.

The read deadline is absolute (like a socket deadline in other runtimes):
``set_read_deadline(5.0)`` bounds every read until the deadline is cleared,
rather than restarting a 5 second timer per read.
"""

from __future__ import annotations

import socket
import time
from typing import Optional, Tuple

from sntp_client.protocol.errors import ChannelSetupError
from sntp_client.utils.logging_config import get_logger

DEFAULT_NTP_PORT = 123

logger = get_logger(__name__)


def parse_endpoint(endpoint: str, default_port: int = DEFAULT_NTP_PORT) -> Tuple[str, int]:
    """Split ``host[:port]`` into its parts."""
    host, sep, port_str = endpoint.rpartition(":")
    if not sep:
        host, port_str = endpoint, ""
    host = host.strip()
    if not host:
        raise ValueError(f"missing host in endpoint: {endpoint!r}")
    if not port_str:
        return host, default_port
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in endpoint: {endpoint!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in endpoint: {endpoint!r}")
    return host, port


class UdpChannel:
    def __init__(self, sock: socket.socket):
        self.sock = sock
        self._deadline: Optional[float] = None

    @property
    def peer(self) -> Tuple[str, int]:
        return self.sock.getpeername()[:2]

    def set_read_deadline(self, timeout: Optional[float]) -> None:
        if timeout is None:
            self._deadline = None
            self.sock.settimeout(None)
            return
        if timeout <= 0:
            raise ValueError(f"timeout must be positive: {timeout}")
        self._deadline = time.monotonic() + timeout

    def write(self, data: bytes) -> int:
        return self.sock.send(data)

    def read_into(self, buffer: bytearray) -> int:
        if self._deadline is not None:
            remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("read deadline exceeded")
            self.sock.settimeout(remaining)
        return self.sock.recv_into(buffer)

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "UdpChannel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def open_udp_channel(endpoint: str) -> UdpChannel:
    """Resolve ``endpoint`` (IPv4) and return a connected :class:`UdpChannel`."""
    host, port = parse_endpoint(endpoint)
    try:
        infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
    except socket.gaierror as e:
        raise ChannelSetupError(f"failed to resolve {host}: {e}", e) from e

    last_error: Optional[OSError] = None
    for family, socktype, proto, _, sockaddr in infos:
        sock = socket.socket(family, socktype, proto)
        try:
            sock.connect(sockaddr)
        except OSError as e:
            sock.close()
            last_error = e
            logger.debug("udp_connect_failed", address=sockaddr[0], port=sockaddr[1], error=str(e))
            continue
        logger.debug("udp_channel_open", host=host, address=sockaddr[0], port=sockaddr[1])
        return UdpChannel(sock)
    raise ChannelSetupError(f"failed to connect to {endpoint}: {last_error}", last_error)
