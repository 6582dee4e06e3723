"""Self-healing interactive element detection for browser automation."""

__version__ = "0.1.0"

from browser_explorer.models import (
    ElementType,
    BoundingBox,
    ElementMetadata,
    InteractiveElement,
    ElementClassification,
    DetectionError,
    DetectionResult,
    AdaptationAttempt,
    ElementSnapshot,
    AdaptationStats,
)
from browser_explorer.config import settings, DetectorConfig
from browser_explorer.exceptions import (
    ExplorerError,
    ObserverUnavailableError,
    PageUnavailableError,
    ObservationParseError,
)
from browser_explorer.detection import (
    ElementObserver,
    Observation,
    PrimaryDetector,
    AdaptiveCache,
    AdaptationEngine,
)
from browser_explorer.llm import LLMElementObserver
from browser_explorer.logging_config import setup_logging, get_logger

__all__ = [
    "ElementType",
    "BoundingBox",
    "ElementMetadata",
    "InteractiveElement",
    "ElementClassification",
    "DetectionError",
    "DetectionResult",
    "AdaptationAttempt",
    "ElementSnapshot",
    "AdaptationStats",
    "settings",
    "DetectorConfig",
    "ExplorerError",
    "ObserverUnavailableError",
    "PageUnavailableError",
    "ObservationParseError",
    "ElementObserver",
    "Observation",
    "PrimaryDetector",
    "AdaptiveCache",
    "AdaptationEngine",
    "LLMElementObserver",
    "setup_logging",
    "get_logger",
]
