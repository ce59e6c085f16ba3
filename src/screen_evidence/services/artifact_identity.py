"""
Artifact identity and actor identity.

Artifacts are identified by time-ordered UUID v7 strings (RFC 9562), generated
independently of where the file currently lives. Actor identity is resolved
through an injectable provider so tests can pin a fixed actor.

UUID v7 layout:
    - 48 bits: UNIX timestamp in milliseconds
    - 4 bits:  version (0b0111)
    - 12 bits: monotonic counter within the same millisecond
    - 2 bits:  variant (0b10)
    - 62 bits: random
"""

import getpass
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Protocol
from uuid import UUID

from screen_evidence.models.evidence import UNKNOWN_ACTOR

logger = logging.getLogger(__name__)


class _UUIDv7Generator:
    """Thread-safe, monotonic UUID v7 source."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_ms = 0
        self._counter = 0

    def generate(self) -> UUID:
        with self._lock:
            now_ms = int(time.time() * 1000)

            if now_ms <= self._last_ms:
                # Same millisecond or clock stepped back: stay on the last
                # timestamp and advance the counter so ids keep sorting.
                now_ms = self._last_ms
                self._counter += 1
                if self._counter > 0xFFF:
                    now_ms += 1
                    self._counter = 0
            else:
                self._counter = 0
            self._last_ms = now_ms

            value = bytearray(now_ms.to_bytes(6, "big"))
            value += self._counter.to_bytes(2, "big")
            value += secrets.token_bytes(8)

            value[6] = (value[6] & 0x0F) | 0x70
            value[8] = (value[8] & 0x3F) | 0x80

            return UUID(bytes=bytes(value))


_generator = _UUIDv7Generator()


def generate_artifact_id() -> str:
    """
    Generate a new artifact identifier.

    Returns:
        UUID v7 as hyphenated string
    """
    return str(_generator.generate())


def artifact_timestamp(artifact_id: str) -> datetime:
    """
    Extract the creation time embedded in an artifact identifier.

    Raises:
        ValueError: If the identifier is not a UUID v7
    """
    value = UUID(artifact_id)
    if value.version != 7:
        raise ValueError(f"{artifact_id} is not a UUID v7")
    timestamp_ms = int.from_bytes(value.bytes[:6], "big")
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)


class IdentityProvider(Protocol):
    """Resolves the identity recorded as actor on custody events."""

    def current_actor(self) -> str:
        ...


class SystemIdentityProvider:
    """Uses the login name of the current OS user."""

    def current_actor(self) -> str:
        try:
            return getpass.getuser()
        except (KeyError, OSError) as e:
            logger.debug(f"Cannot resolve current user: {e}")
            return UNKNOWN_ACTOR


class StaticIdentityProvider:
    """Always reports the same actor."""

    def __init__(self, actor: str):
        self.actor = actor

    def current_actor(self) -> str:
        return self.actor
