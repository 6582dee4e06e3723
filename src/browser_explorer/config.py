from dotenv import load_dotenv
from pathlib import Path
from typing import Any
import json
import logging
import os

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

load_dotenv()  # Loads variables from .env file

logger = logging.getLogger(__name__)


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    LLM_API_KEY = os.getenv("LLM_API_KEY")
    LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")


settings = Settings()


class DetectorConfig(BaseModel):
    """
    Tuning knobs for detection, caching and adaptation.

    All fields are validated by Pydantic so thresholds stay in range.
    """

    enable_ai: bool = Field(
        default=True,
        description="Use the AI observer when one is injected and initializes"
    )

    min_ai_results: int = Field(
        default=3,
        description="Run the fallback sweep when the AI path finds fewer elements",
        ge=0,
    )

    max_elements: int = Field(
        default=50,
        description="Cap on elements kept from the AI path",
        ge=1,
    )

    enable_selector_fallback: bool = Field(
        default=True,
        description="Allow the deterministic DOM sweep"
    )

    classification_threshold: float = Field(
        default=0.7,
        description="AI reclassification must strictly exceed this confidence",
        ge=0.0,
        le=1.0,
    )

    ai_classification_confidence: float = Field(
        default=0.9,
        description="Confidence assigned when the observer answers a classification query",
        ge=0.0,
        le=1.0,
    )

    cache_ttl_ms: int = Field(
        default=300_000,
        description="Snapshot lifetime in milliseconds",
        ge=1,
    )

    max_adaptation_attempts: int = Field(
        default=3,
        description="Attempts recorded per (selector, page URL) before giving up",
        ge=1,
    )

    structural_min_score: float = Field(
        default=3,
        description="Structural candidates must strictly exceed this score",
        ge=0,
    )

    fuzzy_min_score: float = Field(
        default=0.6,
        description="Fuzzy text candidates must strictly exceed this score",
        ge=0.0,
        le=1.0,
    )

    ai_match_min_text_similarity: float = Field(
        default=0.7,
        description="Minimum word similarity between original and AI re-acquired text",
        ge=0.0,
        le=1.0,
    )

    ai_match_max_distance_px: float = Field(
        default=200,
        description="Maximum movement allowed for an AI re-acquired element",
        ge=0,
    )

    max_snapshot_nodes: int = Field(
        default=5000,
        description="Upper bound on nodes returned by one DOM snapshot",
        ge=1,
    )

    model_config = ConfigDict(validate_assignment=True)

    @classmethod
    def from_env(cls, prefix: str = "EXPLORER_") -> "DetectorConfig":
        """Load configuration from environment variables.

        Environment variables are prefixed, e.g. EXPLORER_CACHE_TTL_MS=60000

        Returns:
            DetectorConfig with values from environment
        """
        values: dict[str, Any] = {}
        for field_name, field_info in cls.model_fields.items():
            env_value = os.getenv(f"{prefix}{field_name.upper()}")
            if env_value is None:
                continue
            if field_info.annotation is bool:
                values[field_name] = env_value.strip().lower() in ("1", "true", "yes", "on")
            else:
                values[field_name] = env_value  # Pydantic coerces numeric strings

        try:
            return cls(**values)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid detector settings from environment: {e}")
            return cls()

    @classmethod
    def from_file(cls, path: str | Path) -> "DetectorConfig":
        """Load configuration from a YAML or JSON file.

        The values may sit at the top level or under a ``detector`` key.
        A missing file yields the defaults.

        Args:
            path: Path to .yaml, .yml or .json configuration file

        Returns:
            DetectorConfig with values from file
        """
        file_path = Path(path)
        if not file_path.exists():
            return cls()

        with open(file_path, 'r') as f:
            if file_path.suffix.lower() in ('.yaml', '.yml'):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        section = data.get('detector', data)
        known = {k: v for k, v in section.items() if k in cls.model_fields}
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump()
