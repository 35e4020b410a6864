"""Configuration for the Kappa Score Collector."""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv()

APP_NAME = "Kappa Score Collector"
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

# Base data directory - configurable via environment
DATA_BASE_DIR = os.getenv("KAPPA_DATA_DIR", "data")

# One JSON file per project lives here
PROJECTS_DIR = os.path.join(DATA_BASE_DIR, "projects")

# Runtime-editable analysis settings
ANALYSIS_CONFIG_FILE = os.path.join(DATA_BASE_DIR, "analysis_config.json")

# Upload limit for scale documents
MAX_UPLOAD_MB = int(os.getenv("KAPPA_MAX_UPLOAD_MB", "20"))

# Item count a parsed scale document is checked against
EXPECTED_ITEM_COUNT = int(os.getenv("KAPPA_EXPECTED_ITEM_COUNT", "12"))

PROJECT_TYPE_DELPHI = "delphi"
PROJECT_TYPE_FACE_VALIDITY = "face-validity"
PROJECT_TYPES = (PROJECT_TYPE_DELPHI, PROJECT_TYPE_FACE_VALIDITY)

# Face validity rubric - every translated item is rated Yes/No on each
FACE_VALIDITY_CRITERIA = [
    "Appropriateness of grammar.",
    "The clarity and unambiguity of items.",
    "The correct spelling of words.",
    "The correct structuring of the sentences.",
    "Appropriateness of font size and space.",
    "Legible printout.",
    "Adequacy of instruction on the instrument.",
    "The structure of the instrument in terms of construction and well-thought out format.",
    "Appropriateness of difficulty level of the instrument for the participants.",
    "Reasonableness of items in relation to the supposed purpose of the instrument.",
]

# Delphi rubric - every translated item is rated 1-9 on each
DELPHI_CRITERIA = [
    "Relevance of the item to the construct.",
    "Clarity of the wording.",
    "Simplicity of the wording.",
    "Freedom from ambiguity.",
    "Cultural appropriateness of the translation.",
]

DELPHI_MIN_RATING = 1
DELPHI_MAX_RATING = 9
# A Delphi cell holding this value was deliberately left unrated
DELPHI_UNANSWERED = 0


@dataclass(frozen=True)
class AnalysisSettings:
    """Thresholds used by the agreement calculator.

    Defaults reproduce the published cut-offs (Lynn 1986; Polit & Beck 2006).
    """

    retention_threshold: int = 8
    delphi_low_max: int = 3
    delphi_medium_max: int = 6
    relevance_threshold: int = 7
    consensus_min_mean: float = 6.0
    consensus_max_sd: float = 2.0

    def validate(self) -> None:
        """Raise ValueError if the thresholds are inconsistent."""
        if not 1 <= self.retention_threshold <= len(FACE_VALIDITY_CRITERIA):
            raise ValueError(
                f"retention_threshold must be between 1 and {len(FACE_VALIDITY_CRITERIA)}"
            )
        if not (
            DELPHI_MIN_RATING
            <= self.delphi_low_max
            < self.delphi_medium_max
            < DELPHI_MAX_RATING
        ):
            raise ValueError("Delphi bands must satisfy 1 <= low_max < medium_max < 9")
        if not DELPHI_MIN_RATING <= self.relevance_threshold <= DELPHI_MAX_RATING:
            raise ValueError("relevance_threshold must be a valid Delphi rating")
        if self.consensus_max_sd < 0:
            raise ValueError("consensus_max_sd cannot be negative")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnalysisSettings":
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def criteria_for(project_type: str) -> list[str]:
    """Get the rubric used by a project type."""
    if project_type == PROJECT_TYPE_FACE_VALIDITY:
        return FACE_VALIDITY_CRITERIA
    return DELPHI_CRITERIA


def load_analysis_config() -> dict[str, Any]:
    """
    Load saved analysis settings from file.

    Returns:
        Dict with saved settings or empty dict if not found
    """
    config_path = Path(ANALYSIS_CONFIG_FILE)
    if config_path.exists():
        try:
            with open(config_path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError):
            logger.warning("Ignoring unreadable analysis config at %s", config_path)
            return {}
    return {}


def save_analysis_config(config: dict[str, Any]) -> None:
    """
    Save analysis settings to file.

    Args:
        config: Settings dict to save
    """
    config_path = Path(ANALYSIS_CONFIG_FILE)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2)


def get_analysis_settings() -> AnalysisSettings:
    """
    Get effective analysis settings (saved overrides or defaults).

    Falls back to defaults when the saved file holds inconsistent values.
    """
    settings = AnalysisSettings.from_dict(load_analysis_config())
    try:
        settings.validate()
    except ValueError as e:
        logger.warning("Saved analysis settings rejected (%s); using defaults", e)
        return AnalysisSettings()
    return settings


def update_analysis_settings(**overrides: Any) -> AnalysisSettings:
    """
    Update analysis settings.

    Args:
        **overrides: Field values to change; None keeps the current value

    Returns:
        The new effective settings

    Raises:
        ValueError: If the resulting settings are inconsistent
    """
    current = get_analysis_settings().to_dict()
    current.update({k: v for k, v in overrides.items() if v is not None})
    settings = AnalysisSettings.from_dict(current)
    settings.validate()

    save_analysis_config(settings.to_dict())
    logger.info("Analysis settings updated: %s", settings.to_dict())
    return settings


def reload_config() -> dict[str, Any]:
    """
    Reload configuration from .env and the analysis settings file.

    Returns:
        Dict with reload status and current settings
    """
    global MAX_UPLOAD_MB, EXPECTED_ITEM_COUNT

    load_dotenv(override=True)

    MAX_UPLOAD_MB = int(os.getenv("KAPPA_MAX_UPLOAD_MB", "20"))
    EXPECTED_ITEM_COUNT = int(os.getenv("KAPPA_EXPECTED_ITEM_COUNT", "12"))

    logger.info("Configuration reloaded")

    return {
        "status": "reloaded",
        "max_upload_mb": MAX_UPLOAD_MB,
        "expected_item_count": EXPECTED_ITEM_COUNT,
        "analysis": get_analysis_settings().to_dict(),
    }
