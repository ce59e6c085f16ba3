"""
Evidence Configuration Module

Endpoint lists, deadlines and tuning knobs for evidence generation.

Settings are resolved in priority order:
    1. SCREEN_EVIDENCE_* environment variables
    2. YAML configuration file
    3. Built-in defaults
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "SCREEN_EVIDENCE_"

DEFAULT_NTP_SERVERS: List[str] = [
    "time.apple.com",
    "time.google.com",
    "time.nist.gov",
    "pool.ntp.org",
]

DEFAULT_TSA_URLS: List[str] = [
    "http://timestamp.digicert.com",
    "http://timestamp.apple.com/ts01",
    "http://timestamp.sectigo.com",
]


class ConfigurationError(Exception):
    """Raised when the configuration file or environment is invalid."""

    def __init__(self, message: str = "Invalid screen-evidence configuration"):
        self.message = message
        super().__init__(self.message)


class EvidenceSettings(BaseModel):
    """Runtime settings for the forensic evidence subsystem."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    ntp_servers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_NTP_SERVERS),
        description="NTP servers queried in order (host or host:port)",
    )
    tsa_urls: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TSA_URLS),
        description="Timestamp authority endpoints queried in order",
    )
    ntp_timeout: float = Field(default=5.0, gt=0, description="Deadline per NTP server (s)")
    tsa_timeout: float = Field(default=10.0, gt=0, description="Deadline per TSA request (s)")
    tsa_request_format: Literal["raw", "rfc3161"] = Field(
        default="raw", description="TSA request body encoding"
    )
    hash_chunk_size: int = Field(default=4 * 1024 * 1024, gt=0, description="Read size for hashing")
    max_time_gap_seconds: float = Field(
        default=3600.0, gt=0, description="Largest gap between custody events before flagging"
    )
    persist_workers: int = Field(default=2, ge=1, description="Custody log persistence threads")

    @field_validator("ntp_servers", "tsa_urls")
    @classmethod
    def _require_endpoints(cls, value: List[str]) -> List[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("at least one endpoint is required")
        return cleaned

    @field_validator("tsa_urls")
    @classmethod
    def _require_http_urls(cls, value: List[str]) -> List[str]:
        for url in value:
            if not url.startswith(("http://", "https://")):
                raise ValueError(f"timestamp authority URL must be http(s): {url}")
        return value


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_overrides() -> Dict[str, Any]:
    """Collect overrides from SCREEN_EVIDENCE_* environment variables."""
    overrides: Dict[str, Any] = {}

    ntp_servers = os.getenv(f"{ENV_PREFIX}NTP_SERVERS")
    if ntp_servers:
        overrides["ntp_servers"] = _split_list(ntp_servers)

    tsa_urls = os.getenv(f"{ENV_PREFIX}TSA_URLS")
    if tsa_urls:
        overrides["tsa_urls"] = _split_list(tsa_urls)

    for key in ("ntp_timeout", "tsa_timeout"):
        raw = os.getenv(f"{ENV_PREFIX}{key.upper()}")
        if raw:
            overrides[key] = raw

    tsa_format = os.getenv(f"{ENV_PREFIX}TSA_FORMAT")
    if tsa_format:
        overrides["tsa_request_format"] = tsa_format.strip().lower()

    return overrides


def load_settings(config_path: Optional[Path] = None) -> EvidenceSettings:
    """
    Load evidence settings from YAML with environment overrides.

    Args:
        config_path: Optional path to a YAML file. A missing file falls back
            to defaults.

    Returns:
        EvidenceSettings instance

    Raises:
        ConfigurationError: If the file is unparsable or values are invalid
    """
    data: Dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e
            if not isinstance(loaded, dict):
                raise ConfigurationError(f"{config_path} must contain a mapping")
            data.update(loaded)
        else:
            logger.warning(f"Config file {config_path} not found, using defaults")

    data.update(_env_overrides())

    try:
        settings = EvidenceSettings(**data)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e

    logger.debug(
        f"Evidence settings loaded: {len(settings.ntp_servers)} NTP servers, "
        f"{len(settings.tsa_urls)} TSA endpoints"
    )
    return settings
