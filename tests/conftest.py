"""Shared fixtures: a localhost UDP server that speaks just enough NTP."""

import socket
import sys
import threading
import time
from pathlib import Path


# Ensure src is importable
ROOT = Path(__file__).parent.parent
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))


import pytest  # noqa: E402

from sntp_client.protocol.packet import (  # noqa: E402
    NtpPacket,
    PacketSettings,
    decode,
    local_time_to_timestamp,
)


class FakeNtpServer:
    """Answers client requests on localhost; ``mode`` picks the behaviour."""

    def __init__(self, mode: str = "ok", skew: float = 0.0, first_reply_delay: float = 0.0):
        self.mode = mode
        self.skew = skew
        self.first_reply_delay = first_reply_delay
        self.timers = []
        self.requests = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(0.1)
        self.port = self.sock.getsockname()[1]
        self.running = False
        self.thread = None

    def start(self):
        self.running = True
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def stop(self):
        self.running = False
        if self.thread:
            self.thread.join()
        for timer in self.timers:
            timer.cancel()
            timer.join()
        self.sock.close()

    def _serve(self):
        while self.running:
            try:
                data, addr = self.sock.recvfrom(1024)
            except socket.timeout:
                continue
            received = time.time() + self.skew
            self.requests.append(data)
            if self.mode == "silent":
                continue
            if self.mode == "short":
                self.sock.sendto(b"\x1c" * 12, addr)
                continue
            if self.first_reply_delay and len(self.requests) == 1:
                timer = threading.Timer(self.first_reply_delay, self._reply, args=(data, addr, received))
                self.timers.append(timer)
                timer.start()
                continue
            self._reply(data, addr, received)

    def _reply(self, data, addr, received):
        request = decode(data)
        rx = local_time_to_timestamp(*self._split(received))
        tx = local_time_to_timestamp(*self._split(time.time() + self.skew))
        reply = NtpPacket(
            settings=PacketSettings(leap=0, version=3, mode=4).pack(),
            stratum=2,
            poll=4,
            precision=-20,
            reference_id=int.from_bytes(b"LOCL", "big"),
            reference_timestamp=rx,
            origin_timestamp=request.transmit_timestamp,
            receive_timestamp=rx,
            transmit_timestamp=tx,
        )
        self.sock.sendto(reply.to_bytes(), addr)

    @staticmethod
    def _split(t: float):
        seconds = int(t)
        return seconds, min(int((t - seconds) * 1e9), 999_999_999)


@pytest.fixture
def ntp_server(request):
    server = FakeNtpServer(**getattr(request, "param", {}))
    server.start()
    yield server
    server.stop()
