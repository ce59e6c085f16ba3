"""
Digest Engine for Forensic Evidence.

Computes SHA-256 / SHA-512 content digests for captured artifacts, writes the
forensic manifest sidecar and derives proofs of existence.
"""

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from screen_evidence.forensics.evidence.exceptions import EvidenceIOError
from screen_evidence.models.evidence import DigestPair, format_utc

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MANIFEST_SUFFIX = ".manifest.json"
CUSTODY_LOG_SUFFIX = ".custody_log.json"


def sidecar_path(artifact_path: PathLike, suffix: str) -> Path:
    """Strip the artifact extension and append ``suffix``."""
    path = Path(artifact_path)
    return path.with_name(path.stem + suffix)


def manifest_path_for(artifact_path: PathLike) -> Path:
    return sidecar_path(artifact_path, MANIFEST_SUFFIX)


def custody_log_path_for(artifact_path: PathLike) -> Path:
    return sidecar_path(artifact_path, CUSTODY_LOG_SUFFIX)


def write_json_atomic(target: Path, payload: Mapping[str, Any]) -> None:
    """
    Write sorted JSON to ``target`` via a temporary file and rename.

    Readers never observe a half-written sidecar at the final path.

    Raises:
        OSError: If the temporary file cannot be written or renamed
    """
    data = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class DigestEngine:
    """
    Content digest and manifest service for captured artifacts.

    Hashing is streamed in fixed-size chunks, so the digest is identical to
    hashing the whole file at once without loading it into memory.

    Attributes:
        chunk_size: Read size in bytes
    """

    def __init__(self, chunk_size: int = 4 * 1024 * 1024):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def compute_digests(self, artifact_path: PathLike) -> DigestPair:
        """
        Compute SHA-256 and SHA-512 over the full artifact content.

        Args:
            artifact_path: Path to the artifact

        Returns:
            DigestPair with lowercase hex digests

        Raises:
            EvidenceIOError: If the artifact cannot be read
        """
        path = Path(artifact_path)
        sha256 = hashlib.sha256()
        sha512 = hashlib.sha512()

        try:
            with path.open("rb") as fh:
                while chunk := fh.read(self.chunk_size):
                    sha256.update(chunk)
                    sha512.update(chunk)
        except OSError as e:
            raise EvidenceIOError(f"Cannot read artifact {path}: {e}", str(path)) from e

        digests = DigestPair(sha256=sha256.hexdigest(), sha512=sha512.hexdigest())
        logger.info(f"Digests computed for {path.name}: sha256={digests.sha256[:16]}...")
        return digests

    async def compute_digests_async(self, artifact_path: PathLike) -> DigestPair:
        """Run compute_digests on a worker thread."""
        return await asyncio.to_thread(self.compute_digests, artifact_path)

    def verify(self, artifact_path: PathLike, expected_sha256: str) -> bool:
        """
        Recompute the SHA-256 of the artifact and compare.

        Raises:
            EvidenceIOError: If the artifact cannot be read
        """
        digests = self.compute_digests(artifact_path)
        matches = digests.sha256 == expected_sha256.strip().lower()
        if not matches:
            logger.warning(
                f"Integrity mismatch for {Path(artifact_path).name}: "
                f"expected {expected_sha256[:16]}..., got {digests.sha256[:16]}..."
            )
        return matches

    def build_manifest(
        self,
        artifact_path: PathLike,
        digests: DigestPair,
        metadata: Optional[Mapping[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> Path:
        """
        Write the forensic manifest sidecar for an artifact.

        Caller metadata is merged over the required fields, so a caller key
        replaces a required key of the same name.

        Args:
            artifact_path: Path to the artifact
            digests: Digests previously computed for the artifact
            metadata: Additional manifest fields
            created_at: Manifest creation time (defaults to now, UTC)

        Returns:
            Path to the written manifest

        Raises:
            EvidenceIOError: If the artifact cannot be stat'ed or the manifest
                cannot be written
        """
        path = Path(artifact_path)
        manifest_path = manifest_path_for(path)

        try:
            file_size = path.stat().st_size
        except OSError as e:
            raise EvidenceIOError(f"Cannot stat artifact {path}: {e}", str(path)) from e

        manifest: Dict[str, Any] = {
            "filename": path.name,
            "sha256": digests.sha256,
            "sha512": digests.sha512,
            "created_at": format_utc(created_at or datetime.now(timezone.utc)),
            "file_size": file_size,
        }
        manifest.update(metadata or {})

        try:
            write_json_atomic(manifest_path, manifest)
        except (OSError, TypeError, ValueError) as e:
            raise EvidenceIOError(
                f"Cannot write manifest {manifest_path}: {e}", str(manifest_path)
            ) from e

        logger.info(f"Forensic manifest written: {manifest_path.name}")
        return manifest_path

    def read_manifest(self, artifact_path: PathLike) -> Dict[str, Any]:
        """
        Load the manifest sidecar of an artifact.

        Raises:
            EvidenceIOError: If the manifest is missing or not valid JSON
        """
        manifest_path = manifest_path_for(artifact_path)
        try:
            with open(manifest_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise EvidenceIOError(
                f"Cannot read manifest {manifest_path}: {e}", str(manifest_path)
            ) from e
        if not isinstance(data, dict):
            raise EvidenceIOError(f"Manifest {manifest_path} is not a JSON object", str(manifest_path))
        return data

    def verify_manifest(self, artifact_path: PathLike) -> bool:
        """
        Check the artifact against both digests recorded in its manifest.

        Raises:
            EvidenceIOError: If the artifact or manifest cannot be read
        """
        manifest = self.read_manifest(artifact_path)
        digests = self.compute_digests(artifact_path)
        return (
            digests.sha256 == str(manifest.get("sha256", "")).lower()
            and digests.sha512 == str(manifest.get("sha512", "")).lower()
        )

    @staticmethod
    def proof_of_existence(sha256: str, timestamp: datetime) -> str:
        """
        Derive a reproducible proof of existence.

        Returns:
            SHA-256 hex of ``"<sha256>|<epoch seconds>"``
        """
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        combined = f"{sha256}|{timestamp.timestamp()}"
        return hashlib.sha256(combined.encode("utf-8")).hexdigest()
