"""
Interactive Element Detection Package.

Provides AI-assisted detection with self-healing re-location:
- Primary detection (AI queries plus deterministic DOM sweep)
- TTL-bounded snapshot cache
- Adaptation engine with AI, structural and fuzzy strategies
"""

from .observer import ElementObserver, Observation, parse_observations
from .type_inference import (
    infer_type_from_description,
    infer_type_from_tag,
    is_type_compatible,
    DESCRIPTION_TYPE_PATTERNS,
)
from .selectors import (
    DomNode,
    synthesize_selector,
    interactivity_score,
    is_interactive,
)
from .cache import AdaptiveCache
from .primary_detector import PrimaryDetector, DETECTION_QUERIES
from .strategies import (
    AdaptationStrategy,
    StrategyMatch,
    AIReacquisitionStrategy,
    StructuralSimilarityStrategy,
    FuzzyTextStrategy,
    default_strategies,
    fuzzy_text_score,
    structural_score,
    text_similarity,
)
from .adaptation import AdaptationEngine

__all__ = [
    # Observer boundary
    "ElementObserver",
    "Observation",
    "parse_observations",
    # Type inference
    "infer_type_from_description",
    "infer_type_from_tag",
    "is_type_compatible",
    "DESCRIPTION_TYPE_PATTERNS",
    # Selectors
    "DomNode",
    "synthesize_selector",
    "interactivity_score",
    "is_interactive",
    # Detection and caching
    "AdaptiveCache",
    "PrimaryDetector",
    "DETECTION_QUERIES",
    # Adaptation
    "AdaptationStrategy",
    "StrategyMatch",
    "AIReacquisitionStrategy",
    "StructuralSimilarityStrategy",
    "FuzzyTextStrategy",
    "default_strategies",
    "fuzzy_text_score",
    "structural_score",
    "text_similarity",
    "AdaptationEngine",
]
