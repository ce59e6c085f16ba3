"""
ForensicOrchestrator - end-to-end evidence generation after capture stops.

Sequence (each step recorded in the custody ledger):
    1. Precondition: RECORDING_START and RECORDING_COMPLETE already logged
    2. Digests (mandatory)
    3. NTP verified time (mandatory)
    4. Timestamp authority token (optional, never aborts)
    5. Artifact size (mandatory)
    6. Forensic manifest (mandatory)
    7. Custody snapshot + EvidenceRecord assembly

Every step yields a StepResult. The first failed mandatory step raises
EvidenceGenerationError and no EvidenceRecord is produced. Blocking file work
runs on worker threads so the event loop stays responsive; cancelling the
awaiting task cancels in-flight network calls.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

import httpx

from screen_evidence.config.evidence_config import EvidenceSettings
from screen_evidence.forensics.evidence.custody_ledger import CustodyLedger
from screen_evidence.forensics.evidence.digest_engine import DigestEngine
from screen_evidence.forensics.evidence.exceptions import (
    EvidenceGenerationError,
    EvidenceIOError,
    OrchestrationError,
    TimeAuthorityError,
)
from screen_evidence.forensics.evidence.time_authority import (
    TimeAuthorityClient,
    TimestampToken,
    VerifiedTime,
)
from screen_evidence.models.evidence import (
    CaptureResult,
    CustodyAction,
    DigestPair,
    EvidenceRecord,
    StepResult,
    format_utc,
)

logger = logging.getLogger(__name__)

HASH_STEP = "hash_generation"
TIME_STEP = "timestamp_verification"
STAT_STEP = "artifact_stat"
MANIFEST_STEP = "manifest"

# Free-form custody action recorded when a mandatory step fails
ABORT_ACTION = "EVIDENCE_GENERATION_ABORTED"


class EvidenceSink(Protocol):
    """Persistence collaborator that stores finished evidence records."""

    def save(self, record: EvidenceRecord) -> None:
        ...


class ForensicOrchestrator:
    """
    Composes digesting, time verification, custody logging and manifest
    writing into one evidence-generation workflow.

    Example:
        orchestrator = ForensicOrchestrator(DigestEngine(), TimeAuthorityClient(), ledger)
        record = await orchestrator.generate_evidence(capture_result)
    """

    def __init__(
        self,
        digest_engine: DigestEngine,
        time_client: TimeAuthorityClient,
        ledger: CustodyLedger,
        sink: Optional[EvidenceSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize ForensicOrchestrator.

        Args:
            digest_engine: Digest and manifest service
            time_client: NTP / timestamp authority client
            ledger: Custody ledger shared with the capture collaborator
            sink: Optional persistence collaborator for finished records
            clock: Device clock (injectable for tests)
        """
        self._digest_engine = digest_engine
        self._time_client = time_client
        self._ledger = ledger
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls,
        settings: EvidenceSettings,
        ledger: CustodyLedger,
        sink: Optional[EvidenceSink] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ForensicOrchestrator":
        return cls(
            digest_engine=DigestEngine(chunk_size=settings.hash_chunk_size),
            time_client=TimeAuthorityClient.from_settings(settings, http_transport=http_transport),
            ledger=ledger,
            sink=sink,
        )

    async def generate_evidence(self, capture: CaptureResult) -> EvidenceRecord:
        """
        Run the full evidence sequence for a finished capture.

        Args:
            capture: Artifact location, timing and device metadata

        Returns:
            Immutable EvidenceRecord

        Raises:
            OrchestrationError: If the capture lifecycle events are missing
            EvidenceGenerationError: If a mandatory step fails
        """
        self._check_preconditions(capture)
        artifact_id = capture.artifact_id
        logger.info(f"Generating evidence for {capture.artifact_path.name} ({artifact_id})")

        digests: DigestPair = self._require(capture, await self._hash_step(capture))
        verified_time, device_time = self._require(capture, await self._time_step(capture))
        token = await self._tsa_step(capture, digests)
        file_size: int = self._require(capture, await self._stat_step(capture))
        manifest_path: Path = self._require(
            capture, await self._manifest_step(capture, digests, verified_time, token)
        )

        proof = self._time_client.build_timestamp_proof(
            file_hash=digests.sha256,
            device_time=device_time,
            verified_time=verified_time,
            token=token,
        )

        record = EvidenceRecord(
            artifact_id=artifact_id,
            filename=capture.artifact_path.name,
            file_path=str(capture.artifact_path),
            created_at=capture.started_at,
            duration_seconds=capture.duration_seconds,
            file_size=file_size,
            digests=digests,
            timestamp_proof=proof,
            custody_log=self._ledger.get_events(artifact_id),
            device=capture.device,
            manifest_path=str(manifest_path),
            proof_of_existence=self._digest_engine.proof_of_existence(
                digests.sha256, verified_time.time
            ),
            is_original_file=True,
            original_file_hash=digests.sha256,
        )

        logger.info(
            f"Evidence record ready for {record.filename}: sha256={digests.sha256[:16]}..., "
            f"tsa={'yes' if token else 'no'}, events={len(record.custody_log)}"
        )

        if self._sink is not None:
            await asyncio.to_thread(self._sink.save, record)

        return record

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _check_preconditions(self, capture: CaptureResult) -> None:
        actions = {event.action for event in self._ledger.get_events(capture.artifact_id)}
        for required in (CustodyAction.RECORDING_START, CustodyAction.RECORDING_COMPLETE):
            if required.value not in actions:
                raise OrchestrationError(
                    f"Cannot generate evidence for {capture.artifact_id}: "
                    f"{required.value} has not been recorded"
                )

        if self._ledger.artifact_path(capture.artifact_id) != capture.artifact_path:
            self._ledger.register(capture.artifact_id, capture.artifact_path)

    def _require(self, capture: CaptureResult, result: StepResult) -> Any:
        if result.ok:
            return result.value

        error = result.error or RuntimeError("unknown failure")
        logger.error(f"Mandatory step '{result.step}' failed for {capture.artifact_id}: {error}")
        self._ledger.append(
            capture.artifact_id,
            ABORT_ACTION,
            f"Evidence generation aborted at {result.step}: {error}",
        )
        raise EvidenceGenerationError(result.step, error)

    async def _hash_step(self, capture: CaptureResult) -> StepResult:
        self._ledger.append(
            capture.artifact_id,
            CustodyAction.HASH_GENERATION_START,
            "Generating cryptographic hashes",
        )
        try:
            digests = await self._digest_engine.compute_digests_async(capture.artifact_path)
        except EvidenceIOError as e:
            return StepResult.failure(HASH_STEP, e)

        self._ledger.append(
            capture.artifact_id,
            CustodyAction.HASH_GENERATION_COMPLETE,
            f"SHA-256: {digests.sha256}",
        )
        return StepResult.success(HASH_STEP, digests)

    async def _time_step(self, capture: CaptureResult) -> StepResult:
        self._ledger.append(
            capture.artifact_id,
            CustodyAction.TIMESTAMP_VERIFICATION_START,
            "Requesting timestamp verification from NTP",
        )
        try:
            verified = await self._time_client.get_verified_time()
        except TimeAuthorityError as e:
            return StepResult.failure(TIME_STEP, e)
        device_time = self._clock()

        self._ledger.append(
            capture.artifact_id,
            CustodyAction.TIMESTAMP_VERIFICATION_COMPLETE,
            f"NTP timestamp obtained from {verified.server}",
        )
        return StepResult.success(TIME_STEP, (verified, device_time))

    async def _tsa_step(self, capture: CaptureResult, digests: DigestPair) -> Optional[TimestampToken]:
        result = await self._time_client.attempt_timestamp_token(digests.sha256)

        if result.ok:
            token: TimestampToken = result.value
            self._ledger.append(
                capture.artifact_id,
                CustodyAction.TSA_TOKEN_RECEIVED,
                f"Timestamp token received from {token.url}",
            )
            return token

        self._ledger.append(
            capture.artifact_id,
            CustodyAction.TSA_TOKEN_FAILED,
            f"Failed to obtain timestamp token: {result.error}",
        )
        return None

    async def _stat_step(self, capture: CaptureResult) -> StepResult:
        try:
            stat = await asyncio.to_thread(capture.artifact_path.stat)
        except OSError as e:
            return StepResult.failure(
                STAT_STEP,
                EvidenceIOError(f"Cannot stat artifact {capture.artifact_path}: {e}", str(capture.artifact_path)),
            )
        return StepResult.success(STAT_STEP, stat.st_size)

    async def _manifest_step(
        self,
        capture: CaptureResult,
        digests: DigestPair,
        verified_time: VerifiedTime,
        token: Optional[TimestampToken],
    ) -> StepResult:
        metadata: Dict[str, Any] = capture.device.to_dict()
        metadata.update(
            {
                "artifact_id": capture.artifact_id,
                "capture_started_at": format_utc(capture.started_at),
                "duration_seconds": capture.duration_seconds,
                "ntp_timestamp": format_utc(verified_time.time),
                "ntp_server": verified_time.server,
            }
        )
        if token is not None:
            metadata["timestamp_authority"] = token.url

        try:
            manifest_path = await asyncio.to_thread(
                self._digest_engine.build_manifest,
                capture.artifact_path,
                digests,
                metadata,
                self._clock(),
            )
        except EvidenceIOError as e:
            return StepResult.failure(MANIFEST_STEP, e)

        self._ledger.append(
            capture.artifact_id,
            CustodyAction.MANIFEST_CREATED,
            f"Forensic manifest created at {manifest_path.name}",
        )
        return StepResult.success(MANIFEST_STEP, manifest_path)
