"""
Chain of Custody Ledger for Forensic Evidence.

Append-only, per-artifact custody event logs with:

- per-artifact single-writer locking (unrelated artifacts never contend)
- background persistence of each snapshot to a JSON sidecar
- structural integrity auditing
- ECDSA signing of the canonical log text
- best-effort rehydration from the sidecar

The in-memory log is authoritative for the process lifetime. A failed
background write is logged and never rolls back an append.
"""

import json
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from screen_evidence.config.evidence_config import EvidenceSettings
from screen_evidence.forensics.evidence.digest_engine import (
    custody_log_path_for,
    write_json_atomic,
)
from screen_evidence.forensics.evidence.digital_signature import (
    DigitalSignatureService,
    PrivateKeyLike,
    PublicKeyLike,
)
from screen_evidence.forensics.evidence.exceptions import (
    ArtifactNotRegisteredError,
    EvidenceIOError,
)
from screen_evidence.models.evidence import (
    MANDATORY_ACTIONS,
    CustodyAction,
    CustodyEvent,
    IntegrityReport,
)
from screen_evidence.services.artifact_identity import (
    IdentityProvider,
    SystemIdentityProvider,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PathLike = Union[str, Path]

DEFAULT_MAX_TIME_GAP_SECONDS = 3600.0


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def canonical_log_text(events: Iterable[CustodyEvent]) -> str:
    """
    Canonical text covered by a custody log signature.

    One ``"<epoch seconds>|<action>|<details>"`` line per event, joined by
    newlines, with epoch seconds in Python float notation.
    """
    return "\n".join(f"{event.epoch_seconds}|{event.action}|{event.details}" for event in events)


@dataclass
class _ArtifactLog:
    """Guarded custody state for one artifact."""

    artifact_id: str
    path: Optional[Path] = None
    events: List[CustodyEvent] = field(default_factory=list)
    # Incremented on every mutation; persisted_version trails it
    version: int = 0
    persisted_version: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)
    write_lock: threading.Lock = field(default_factory=threading.Lock)


class CustodyLedger:
    """
    Append-only chain of custody ledger keyed by artifact id.

    Example:
        ledger = CustodyLedger()
        ledger.register(artifact_id, Path("recording.mp4"))
        ledger.append(artifact_id, CustodyAction.RECORDING_START, "Screen recording initiated")
        report = ledger.verify_integrity(artifact_id)
        ledger.close()
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        identity_provider: Optional[IdentityProvider] = None,
        signature_service: Optional[DigitalSignatureService] = None,
        max_time_gap_seconds: float = DEFAULT_MAX_TIME_GAP_SECONDS,
        persist_workers: int = 2,
    ):
        """
        Initialize the custody ledger.

        Args:
            clock: Returns the current aware UTC time (injectable for tests)
            identity_provider: Resolves the actor when append() gets none
            signature_service: Signing backend
            max_time_gap_seconds: Largest gap between events before flagging
            persist_workers: Background persistence threads
        """
        self._clock = clock or _utc_now
        self._identity = identity_provider or SystemIdentityProvider()
        self._signatures = signature_service or DigitalSignatureService()
        self.max_time_gap_seconds = max_time_gap_seconds

        self._logs: Dict[str, _ArtifactLog] = {}
        self._registry_lock = threading.Lock()

        self._executor = ThreadPoolExecutor(
            max_workers=persist_workers, thread_name_prefix="custody-persist"
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: EvidenceSettings, **kwargs) -> "CustodyLedger":
        return cls(
            max_time_gap_seconds=settings.max_time_gap_seconds,
            persist_workers=settings.persist_workers,
            **kwargs,
        )

    def __enter__(self) -> "CustodyLedger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _entry(self, artifact_id: str, create: bool = True) -> Optional[_ArtifactLog]:
        with self._registry_lock:
            entry = self._logs.get(artifact_id)
            if entry is None and create:
                entry = _ArtifactLog(artifact_id=artifact_id)
                self._logs[artifact_id] = entry
            return entry

    def register(self, artifact_id: str, artifact_path: PathLike) -> Path:
        """
        Bind an artifact id to the file it currently describes.

        Returns:
            Path of the custody log sidecar
        """
        entry = self._entry(artifact_id)
        with entry.lock:
            entry.path = Path(artifact_path)
        return custody_log_path_for(entry.path)

    def relocate(self, artifact_id: str, new_path: PathLike) -> Path:
        """
        Point a registered artifact at a new location.

        Subsequent persists and exports go to the sidecar next to the new
        path; the old sidecar is left untouched.

        Raises:
            ArtifactNotRegisteredError: If the artifact has no location yet
        """
        entry = self._entry(artifact_id, create=False)
        if entry is None or entry.path is None:
            raise ArtifactNotRegisteredError(artifact_id)
        with entry.lock:
            old_path, entry.path = entry.path, Path(new_path)
        logger.info(f"Artifact {artifact_id} relocated: {old_path} -> {new_path}")
        return custody_log_path_for(new_path)

    def artifact_path(self, artifact_id: str) -> Optional[Path]:
        entry = self._entry(artifact_id, create=False)
        return entry.path if entry else None

    def artifact_ids(self) -> Tuple[str, ...]:
        with self._registry_lock:
            return tuple(self._logs)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append(
        self,
        artifact_id: str,
        action: Union[CustodyAction, str],
        details: str,
        actor: Optional[str] = None,
    ) -> CustodyEvent:
        """
        Append a custody event stamped with the ledger clock.

        The snapshot is persisted in the background when the artifact has a
        registered location.

        Args:
            artifact_id: Artifact the event belongs to
            action: Known CustodyAction or free-form action code
            details: Free-text description
            actor: Actor identity (defaults to the identity provider)

        Returns:
            The appended event
        """
        if actor is None:
            actor = self._identity.current_actor()

        entry = self._entry(artifact_id)
        with entry.lock:
            event = CustodyEvent(
                timestamp=self._clock().replace(microsecond=0),
                action=action,
                details=details,
                actor=actor,
            )
            entry.events.append(event)
            entry.version += 1
            snapshot = tuple(entry.events)
            version = entry.version
            has_location = entry.path is not None

        logger.debug(f"Custody event {event.action} appended for {artifact_id} (#{version})")

        if has_location:
            self._schedule_persist(entry, snapshot, version)
        return event

    def get_events(self, artifact_id: str) -> Tuple[CustodyEvent, ...]:
        """Return a snapshot of the artifact's events in append order."""
        entry = self._entry(artifact_id, create=False)
        if entry is None:
            return ()
        with entry.lock:
            return tuple(entry.events)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _schedule_persist(
        self, entry: _ArtifactLog, snapshot: Tuple[CustodyEvent, ...], version: int
    ) -> None:
        try:
            future = self._executor.submit(self._persist_snapshot, entry, snapshot, version)
        except RuntimeError as e:
            logger.error(f"Failed to schedule custody log persist for {entry.artifact_id}: {e}")
            return

        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._discard_pending)

    def _discard_pending(self, future: Future) -> None:
        with self._pending_lock:
            self._pending.discard(future)

    def _persist_snapshot(
        self, entry: _ArtifactLog, snapshot: Tuple[CustodyEvent, ...], version: int
    ) -> None:
        with entry.write_lock:
            # A newer snapshot already reached disk
            if version <= entry.persisted_version:
                return
            path = entry.path
            if path is None:
                return
            try:
                self._write_log(path, snapshot)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to persist custody log for {entry.artifact_id}: {e}")
                return
            entry.persisted_version = version

    @staticmethod
    def _write_log(artifact_path: Path, events: Tuple[CustodyEvent, ...]) -> Path:
        log_path = custody_log_path_for(artifact_path)
        payload = {
            "file_url": str(artifact_path.absolute()),
            "file_name": artifact_path.name,
            "total_events": len(events),
            "events": [event.to_export_dict() for event in events],
        }
        write_json_atomic(log_path, payload)
        return log_path

    def export_log(self, artifact_id: str) -> Path:
        """
        Write the custody log sidecar for an artifact.

        Returns:
            Path to the custody log JSON

        Raises:
            ArtifactNotRegisteredError: If the artifact has no location
            EvidenceIOError: If the sidecar cannot be written
        """
        entry = self._entry(artifact_id, create=False)
        if entry is None or entry.path is None:
            raise ArtifactNotRegisteredError(artifact_id)

        with entry.lock:
            snapshot = tuple(entry.events)
            version = entry.version
            path = entry.path

        log_path = custody_log_path_for(path)
        with entry.write_lock:
            if version < entry.persisted_version:
                return log_path
            try:
                self._write_log(path, snapshot)
            except (OSError, TypeError, ValueError) as e:
                raise EvidenceIOError(
                    f"Cannot write custody log {log_path}: {e}", str(log_path)
                ) from e
            entry.persisted_version = version

        logger.info(f"Custody log exported: {log_path.name} ({len(snapshot)} events)")
        return log_path

    def load(self, artifact_id: str, artifact_path: Optional[PathLike] = None) -> int:
        """
        Hydrate an artifact's log from its sidecar, if one exists.

        Entries that cannot be parsed are skipped. A missing sidecar is not an
        error; an unreadable one is logged and leaves the log untouched.

        Args:
            artifact_id: Artifact to hydrate
            artifact_path: Location to register first (optional)

        Returns:
            Number of events loaded

        Raises:
            ArtifactNotRegisteredError: If no location is known
        """
        if artifact_path is not None:
            self.register(artifact_id, artifact_path)

        entry = self._entry(artifact_id, create=False)
        if entry is None or entry.path is None:
            raise ArtifactNotRegisteredError(artifact_id)

        log_path = custody_log_path_for(entry.path)
        if not log_path.exists():
            return 0

        try:
            with open(log_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Cannot load custody log {log_path}: {e}")
            return 0

        raw_events = data.get("events") if isinstance(data, dict) else None
        if not isinstance(raw_events, list):
            logger.warning(f"Custody log {log_path} has no events array")
            return 0

        events: List[CustodyEvent] = []
        for index, raw in enumerate(raw_events):
            if not isinstance(raw, dict):
                logger.warning(f"Skipping custody entry {index} in {log_path.name}: not an object")
                continue
            try:
                events.append(CustodyEvent.from_export_dict(raw))
            except ValueError as e:
                logger.warning(f"Skipping custody entry {index} in {log_path.name}: {e}")

        with entry.lock:
            entry.events = events
            entry.version += 1
            version = entry.version
        with entry.write_lock:
            entry.persisted_version = max(entry.persisted_version, version)

        logger.info(f"Custody log loaded for {artifact_id}: {len(events)} events")
        return len(events)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for background persists scheduled so far.

        Returns:
            True if all pending writes finished within ``timeout``
        """
        with self._pending_lock:
            pending = set(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Flush pending writes and stop the persistence pool."""
        self.flush()
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------
    # Audit and signing
    # ------------------------------------------------------------------

    def verify_integrity(self, artifact_id: str) -> IntegrityReport:
        """
        Audit the structure of an artifact's custody log.

        Checks chronological order of every adjacent pair, presence of the
        mandatory actions, and gaps longer than ``max_time_gap_seconds``.
        All violations are reported. The log is not modified.

        Returns:
            IntegrityReport
        """
        events = self.get_events(artifact_id)

        if not events:
            return IntegrityReport(is_valid=False, issues=("No custody events found",), event_count=0)

        issues: List[str] = []

        for i in range(1, len(events)):
            if events[i].timestamp < events[i - 1].timestamp:
                issues.append(f"Events not in chronological order at index {i}")

        actions = {event.action for event in events}
        for required in MANDATORY_ACTIONS:
            if required.value not in actions:
                issues.append(f"Missing {required.value} event")

        for i in range(1, len(events)):
            gap = (events[i].timestamp - events[i - 1].timestamp).total_seconds()
            if gap > self.max_time_gap_seconds:
                issues.append(
                    f"Suspicious time gap of {round(gap / 60)} minutes "
                    f"between events {i - 1} and {i}"
                )

        report = IntegrityReport(is_valid=not issues, issues=tuple(issues), event_count=len(events))
        if not report.is_valid:
            logger.warning(f"Custody audit for {artifact_id} found {len(issues)} issue(s)")
        return report

    def sign(self, artifact_id: str, signing_key: PrivateKeyLike) -> str:
        """
        Sign the canonical text of an artifact's custody log.

        Args:
            artifact_id: Artifact whose log is signed
            signing_key: P-256 private key (object or PEM)

        Returns:
            Base64-encoded raw ``r || s`` ECDSA signature
        """
        text = canonical_log_text(self.get_events(artifact_id))
        return self._signatures.sign_bytes(text.encode("utf-8"), signing_key)

    def verify_signature(
        self, artifact_id: str, signature_b64: str, public_key: PublicKeyLike
    ) -> bool:
        """Check a signature produced by sign() against the current log."""
        text = canonical_log_text(self.get_events(artifact_id))
        return self._signatures.verify_bytes(text.encode("utf-8"), signature_b64, public_key)
