"""
Screen Evidence configuration module.
"""

from pathlib import Path
from typing import Optional

from screen_evidence.config.evidence_config import (
    DEFAULT_NTP_SERVERS,
    DEFAULT_TSA_URLS,
    ConfigurationError,
    EvidenceSettings,
    load_settings,
)

__all__ = [
    "DEFAULT_NTP_SERVERS",
    "DEFAULT_TSA_URLS",
    "ConfigurationError",
    "EvidenceSettings",
    "load_settings",
    "get_settings",
]


# Global configuration instance
_settings: Optional[EvidenceSettings] = None


def get_settings(config_path: Optional[Path] = None) -> EvidenceSettings:
    """
    Get global evidence settings instance

    Args:
        config_path: Optional path to configuration file

    Returns:
        EvidenceSettings instance
    """
    global _settings

    if _settings is None:
        _settings = load_settings(config_path)

    return _settings
