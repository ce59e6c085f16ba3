"""
Capture session lifecycle.

Reference implementation of the capture collaborator contract: it assigns an
artifact id, records RECORDING_START when capture begins and
RECORDING_COMPLETE when it stops, and hands a CaptureResult to the evidence
orchestrator. The capture pipeline itself (screen/audio encoding) lives
outside this package.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from screen_evidence.forensics.evidence.custody_ledger import CustodyLedger
from screen_evidence.forensics.evidence.exceptions import (
    AlreadyRecordingError,
    NotRecordingError,
)
from screen_evidence.models.evidence import CaptureResult, CustodyAction, DeviceMetadata
from screen_evidence.services.artifact_identity import generate_artifact_id

logger = logging.getLogger(__name__)


class CaptureSession:
    """Tracks one capture at a time and logs its lifecycle to the ledger."""

    def __init__(
        self,
        ledger: CustodyLedger,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._ledger = ledger
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._artifact_id: Optional[str] = None
        self._artifact_path: Optional[Path] = None
        self._started_at: Optional[datetime] = None

    @property
    def is_recording(self) -> bool:
        return self._artifact_id is not None

    @property
    def artifact_id(self) -> Optional[str]:
        return self._artifact_id

    def start(self, artifact_path: Union[str, Path]) -> str:
        """
        Begin a capture into ``artifact_path``.

        Returns:
            Newly generated artifact id

        Raises:
            AlreadyRecordingError: If a capture is already running
        """
        with self._lock:
            if self._artifact_id is not None:
                raise AlreadyRecordingError()

            artifact_id = generate_artifact_id()
            path = Path(artifact_path)
            self._ledger.register(artifact_id, path)
            self._ledger.append(artifact_id, CustodyAction.RECORDING_START, "Screen recording initiated")

            self._artifact_id = artifact_id
            self._artifact_path = path
            self._started_at = self._clock()

        logger.info(f"Capture started: {path.name} ({artifact_id})")
        return artifact_id

    def stop(self, device: Optional[DeviceMetadata] = None) -> CaptureResult:
        """
        End the running capture.

        Raises:
            NotRecordingError: If no capture is running
        """
        with self._lock:
            if self._artifact_id is None or self._artifact_path is None or self._started_at is None:
                raise NotRecordingError()

            artifact_id = self._artifact_id
            self._ledger.append(
                artifact_id,
                CustodyAction.RECORDING_COMPLETE,
                "Screen recording completed successfully",
            )
            duration = max((self._clock() - self._started_at).total_seconds(), 0.0)

            result = CaptureResult(
                artifact_id=artifact_id,
                artifact_path=self._artifact_path,
                started_at=self._started_at,
                duration_seconds=duration,
                device=device or DeviceMetadata(),
            )

            self._artifact_id = None
            self._artifact_path = None
            self._started_at = None

        logger.info(f"Capture stopped: {result.artifact_path.name} ({duration:.1f}s)")
        return result
