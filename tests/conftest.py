"""
Shared fixtures for screen-evidence tests.

Everything runs offline: NTP servers are local asyncio UDP fakes and
timestamp authorities are served through httpx.MockTransport.
"""

import asyncio
import struct
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

from screen_evidence.forensics.evidence.time_authority import (
    NTP_EPOCH_OFFSET,
    NTP_TRANSMIT_SECONDS_OFFSET,
)

SETTINGS_ENV_VARS = (
    "SCREEN_EVIDENCE_NTP_SERVERS",
    "SCREEN_EVIDENCE_TSA_URLS",
    "SCREEN_EVIDENCE_NTP_TIMEOUT",
    "SCREEN_EVIDENCE_TSA_TIMEOUT",
    "SCREEN_EVIDENCE_TSA_FORMAT",
)


# ============================================================================
# Environment
# ============================================================================


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    """Keep host SCREEN_EVIDENCE_* variables out of the tests."""
    for name in SETTINGS_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ============================================================================
# Clocks and artifacts
# ============================================================================


class TickingClock:
    """Deterministic clock that advances a fixed step on every call."""

    def __init__(self, start: Optional[datetime] = None, step_seconds: float = 1.0):
        self.current = start or datetime(2026, 1, 15, 9, 30, 0, tzinfo=timezone.utc)
        self.step = timedelta(seconds=step_seconds)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + self.step
        return value

    def jump(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def ticking_clock() -> TickingClock:
    """Clock starting 2026-01-15T09:30:00Z, one second per reading."""
    return TickingClock()


@pytest.fixture
def zero_artifact(tmp_path: Path) -> Path:
    """A 1000-byte all-zero recording."""
    path = tmp_path / "recording.mp4"
    path.write_bytes(bytes(1000))
    return path


# ============================================================================
# Fake NTP server
# ============================================================================


def build_ntp_reply(unix_seconds: int) -> bytes:
    """48-byte server-mode reply carrying ``unix_seconds`` as transmit time."""
    data = bytearray(48)
    data[0] = 0x1C
    struct.pack_into("!I", data, NTP_TRANSMIT_SECONDS_OFFSET, unix_seconds + NTP_EPOCH_OFFSET)
    return bytes(data)


class FakeNTPServer(asyncio.DatagramProtocol):
    """Answers every request with a canned reply, or stays silent when reply is None."""

    def __init__(self, reply: Optional[bytes]):
        self.reply = reply
        self.requests: List[bytes] = []
        self.transport = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr) -> None:
        self.requests.append(data)
        if self.reply is not None:
            self.transport.sendto(self.reply, addr)


@asynccontextmanager
async def run_fake_ntp_server(reply: Optional[bytes]):
    """Yield ``("127.0.0.1:<port>", FakeNTPServer)`` for the lifetime of the block."""
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        lambda: FakeNTPServer(reply), local_addr=("127.0.0.1", 0)
    )
    try:
        host, port = transport.get_extra_info("sockname")[:2]
        yield f"{host}:{port}", protocol
    finally:
        transport.close()


@pytest.fixture
def fake_ntp_server():
    """Factory fixture: ``async with fake_ntp_server(reply) as (address, server)``."""
    return run_fake_ntp_server


@pytest.fixture
def ntp_reply():
    """Factory fixture building NTP replies from UNIX seconds."""
    return build_ntp_reply
