"""
Time Authority Client for Forensic Evidence.

Obtains independently verifiable time for captured artifacts:

- NTP (RFC 5905 client mode, simplified SNTP exchange) over UDP with ordered
  server fallback. Mandatory for evidence generation.
- Timestamp authority (TSA) submission over HTTP with ordered endpoint
  fallback. Best-effort proof of submission; the response is stored as
  returned and is not validated.

Every network exchange has a hard deadline. On expiry the socket or request is
cancelled and no partial response is accepted.
"""

import asyncio
import logging
import struct
from datetime import datetime, timedelta, timezone
from typing import List, NamedTuple, Optional, Sequence, Tuple

import httpx
import rfc3161ng

from screen_evidence.config.evidence_config import (
    DEFAULT_NTP_SERVERS,
    DEFAULT_TSA_URLS,
    EvidenceSettings,
)
from screen_evidence.forensics.evidence.exceptions import (
    AuthorityTimeoutError,
    MalformedResponseError,
    NoTimestampAuthorityError,
    TimeAuthorityError,
    TimeUnavailableError,
)
from screen_evidence.models.evidence import StepResult, TimestampProof

logger = logging.getLogger(__name__)

NTP_PORT = 123
NTP_PACKET_SIZE = 48
# LI=0, VN=3, Mode=3 (client)
NTP_CLIENT_HEADER = 0x1B
NTP_TRANSMIT_SECONDS_OFFSET = 40
# Seconds between 1900-01-01 (NTP era 0) and 1970-01-01
NTP_EPOCH_OFFSET = 2_208_988_800

TSA_CONTENT_TYPE = "application/timestamp-query"
TSA_STEP = "tsa_token"

_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class VerifiedTime(NamedTuple):
    """Time reported by an NTP server and the server that reported it."""

    time: datetime
    server: str


class TimestampToken(NamedTuple):
    """Raw timestamp authority response and the endpoint that produced it."""

    url: str
    response: bytes


def build_ntp_request() -> bytes:
    """Return a 48-byte client-mode version-3 NTP request."""
    return bytes([NTP_CLIENT_HEADER]) + bytes(NTP_PACKET_SIZE - 1)


def parse_ntp_response(data: bytes) -> datetime:
    """
    Extract the transmit timestamp (whole seconds) from an NTP reply.

    Args:
        data: Raw datagram

    Returns:
        Aware UTC datetime

    Raises:
        MalformedResponseError: If the reply is shorter than 48 bytes or the
            transmit timestamp is unset
    """
    if len(data) < NTP_PACKET_SIZE:
        raise MalformedResponseError(
            f"NTP reply is {len(data)} bytes, expected {NTP_PACKET_SIZE}"
        )

    (seconds,) = struct.unpack_from("!I", data, NTP_TRANSMIT_SECONDS_OFFSET)
    if seconds == 0:
        raise MalformedResponseError("NTP reply carries no transmit timestamp")

    return _UNIX_EPOCH + timedelta(seconds=seconds - NTP_EPOCH_OFFSET)


def parse_server_address(server: str) -> Tuple[str, int]:
    """
    Split ``host``, ``host:port`` or ``[ipv6]:port`` into host and port.

    Raises:
        ValueError: If the port is not an integer in range
    """
    server = server.strip()
    if server.startswith("["):
        host, _, rest = server[1:].partition("]")
        port_text = rest[1:] if rest.startswith(":") else ""
    elif server.count(":") == 1:
        host, port_text = server.split(":")
    else:
        host, port_text = server, ""

    port = int(port_text) if port_text else NTP_PORT
    if not 0 < port < 65536:
        raise ValueError(f"Invalid NTP port in {server!r}")
    return host, port


class _NTPClientProtocol(asyncio.DatagramProtocol):
    """Sends one request and resolves ``response`` with the first datagram."""

    def __init__(self, request: bytes, response: "asyncio.Future[bytes]"):
        self._request = request
        self._response = response

    def connection_made(self, transport) -> None:
        transport.sendto(self._request)

    def datagram_received(self, data: bytes, addr) -> None:
        if not self._response.done():
            self._response.set_result(data)

    def error_received(self, exc: Exception) -> None:
        if not self._response.done():
            self._response.set_exception(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if not self._response.done():
            self._response.set_exception(exc or ConnectionError("NTP socket closed"))


class TimeAuthorityClient:
    """
    NTP and timestamp authority client with ordered fallback.

    The client keeps no state between calls beyond its configured endpoint
    lists, so one instance may serve concurrent workflows.

    Attributes:
        ntp_servers: NTP servers queried in order
        tsa_urls: Timestamp authority endpoints queried in order
        ntp_timeout: Hard deadline per NTP server in seconds
        tsa_timeout: Hard deadline per TSA request in seconds
        tsa_request_format: "raw" (hex digest as body) or "rfc3161"
    """

    def __init__(
        self,
        ntp_servers: Optional[Sequence[str]] = None,
        tsa_urls: Optional[Sequence[str]] = None,
        ntp_timeout: float = 5.0,
        tsa_timeout: float = 10.0,
        tsa_request_format: str = "raw",
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the time authority client.

        Args:
            ntp_servers: NTP servers (default: public pool list; must not be empty)
            tsa_urls: TSA endpoints (default: public TSA list; must not be empty)
            ntp_timeout: Deadline per NTP server in seconds
            tsa_timeout: Deadline per TSA request in seconds
            tsa_request_format: Request body encoding, "raw" or "rfc3161"
            http_transport: Optional httpx transport (for offline testing)

        Raises:
            ValueError: On an unknown request format or an empty endpoint list
        """
        if tsa_request_format not in ("raw", "rfc3161"):
            raise ValueError(f"Unsupported TSA request format: {tsa_request_format}")

        self.ntp_servers: List[str] = list(DEFAULT_NTP_SERVERS if ntp_servers is None else ntp_servers)
        self.tsa_urls: List[str] = list(DEFAULT_TSA_URLS if tsa_urls is None else tsa_urls)
        if not self.ntp_servers:
            raise ValueError("At least one NTP server is required")
        if not self.tsa_urls:
            raise ValueError("At least one TSA endpoint is required")
        self.ntp_timeout = ntp_timeout
        self.tsa_timeout = tsa_timeout
        self.tsa_request_format = tsa_request_format
        self._http_transport = http_transport

        logger.info(
            f"TimeAuthorityClient initialized: {len(self.ntp_servers)} NTP servers, "
            f"{len(self.tsa_urls)} TSA endpoints, format={tsa_request_format}"
        )

    @classmethod
    def from_settings(
        cls,
        settings: EvidenceSettings,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TimeAuthorityClient":
        return cls(
            ntp_servers=settings.ntp_servers,
            tsa_urls=settings.tsa_urls,
            ntp_timeout=settings.ntp_timeout,
            tsa_timeout=settings.tsa_timeout,
            tsa_request_format=settings.tsa_request_format,
            http_transport=http_transport,
        )

    # ------------------------------------------------------------------
    # NTP
    # ------------------------------------------------------------------

    async def get_verified_time(self) -> VerifiedTime:
        """
        Query NTP servers in order until one answers.

        A failing server is never retried; the next one is tried at once.

        Returns:
            VerifiedTime with the reported time and the answering server

        Raises:
            TimeUnavailableError: If every server failed
        """
        failures: List[Tuple[str, str]] = []

        for server in self.ntp_servers:
            try:
                reported = await self._query_ntp_server(server)
            except (TimeAuthorityError, OSError, ValueError) as e:
                reason = str(e) or type(e).__name__
                logger.warning(f"NTP server {server} failed: {reason}")
                failures.append((server, reason))
                continue

            logger.info(f"NTP time obtained from {server}: {reported.isoformat()}")
            return VerifiedTime(time=reported, server=server)

        raise TimeUnavailableError(failures)

    async def _query_ntp_server(self, server: str) -> datetime:
        host, port = parse_server_address(server)
        try:
            data = await asyncio.wait_for(self._ntp_exchange(host, port), timeout=self.ntp_timeout)
        except asyncio.TimeoutError as e:
            raise AuthorityTimeoutError(server, self.ntp_timeout) from e
        return parse_ntp_response(data)

    async def _ntp_exchange(self, host: str, port: int) -> bytes:
        loop = asyncio.get_running_loop()
        response: "asyncio.Future[bytes]" = loop.create_future()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _NTPClientProtocol(build_ntp_request(), response),
            remote_addr=(host, port),
        )
        try:
            return await response
        finally:
            transport.close()

    # ------------------------------------------------------------------
    # Timestamp authority
    # ------------------------------------------------------------------

    def build_tsa_request(self, file_hash: str) -> bytes:
        """
        Encode the TSA request body for a SHA-256 hex digest.

        Raises:
            ValueError: If ``rfc3161`` encoding is selected and the digest is
                not 32 bytes of hex
        """
        if self.tsa_request_format == "rfc3161":
            request = rfc3161ng.make_timestamp_request(
                digest=bytes.fromhex(file_hash), hashname="sha256"
            )
            return rfc3161ng.encode_timestamp_request(request)
        return file_hash.encode("utf-8")

    async def request_timestamp_token(self, file_hash: str) -> TimestampToken:
        """
        Submit a digest to timestamp authorities in order.

        Any 2xx response wins and its body is returned unmodified.

        Args:
            file_hash: SHA-256 hex digest of the artifact

        Returns:
            TimestampToken with the endpoint and raw response bytes

        Raises:
            NoTimestampAuthorityError: If every endpoint failed
        """
        body = self.build_tsa_request(file_hash)
        headers = {"Content-Type": TSA_CONTENT_TYPE}
        failures: List[Tuple[str, str]] = []

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.tsa_timeout), transport=self._http_transport
        ) as client:
            for url in self.tsa_urls:
                try:
                    response = await asyncio.wait_for(
                        client.post(url, content=body, headers=headers),
                        timeout=self.tsa_timeout,
                    )
                except (asyncio.TimeoutError, httpx.TimeoutException):
                    reason = f"timed out after {self.tsa_timeout:g}s"
                    logger.warning(f"TSA {url} {reason}")
                    failures.append((url, reason))
                    continue
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    reason = str(e) or type(e).__name__
                    logger.warning(f"TSA {url} request failed: {reason}")
                    failures.append((url, reason))
                    continue

                if not response.is_success:
                    reason = f"HTTP {response.status_code}"
                    logger.warning(f"TSA {url} rejected request: {reason}")
                    failures.append((url, reason))
                    continue

                logger.info(
                    f"TSA token received from {url} for hash {file_hash[:16]}... "
                    f"({len(response.content)} bytes)"
                )
                return TimestampToken(url=url, response=response.content)

        raise NoTimestampAuthorityError(failures)

    async def attempt_timestamp_token(self, file_hash: str) -> StepResult:
        """
        Best-effort variant of request_timestamp_token.

        Never raises except on cancellation; every other error becomes a
        failed optional StepResult.

        Returns:
            Optional StepResult whose value is a TimestampToken on success
        """
        try:
            token = await self.request_timestamp_token(file_hash)
        except Exception as e:
            logger.warning(f"Timestamp token unavailable for {file_hash[:16]}...: {e}")
            return StepResult.failure(TSA_STEP, e, mandatory=False)
        return StepResult.success(TSA_STEP, token, mandatory=False)

    @staticmethod
    def build_timestamp_proof(
        file_hash: str,
        device_time: datetime,
        verified_time: VerifiedTime,
        token: Optional[TimestampToken] = None,
    ) -> TimestampProof:
        """Aggregate NTP and TSA results into a TimestampProof."""
        return TimestampProof(
            file_hash=file_hash,
            ntp_timestamp=verified_time.time,
            ntp_server=verified_time.server,
            device_timestamp=device_time,
            tsa_url=token.url if token else None,
            tsa_response=token.response if token else None,
        )
