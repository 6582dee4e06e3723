"""
Element Adaptation Strategies.

Each strategy tries to re-locate an element whose selector no longer
resolves. The engine runs them in a fixed order and stops at the first hit:

1. AIReacquisitionStrategy ("ai-reacquisition")
2. StructuralSimilarityStrategy ("structural-similarity")
3. FuzzyTextStrategy ("fuzzy-text-matching")

Scoring helpers are plain functions so the thresholds can be tested
without a browser.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Protocol, TYPE_CHECKING

from playwright.async_api import Page

from browser_explorer.config import DetectorConfig
from browser_explorer.detection.dom import (
    build_element,
    complete_selectors,
    resolve_unique,
    snapshot_dom,
)
from browser_explorer.detection.selectors import DomNode, synthesize_selector
from browser_explorer.detection.type_inference import (
    TYPE_INSTRUCTION_HINTS,
    is_type_compatible,
)
from browser_explorer.models import ElementType, InteractiveElement

if TYPE_CHECKING:
    from browser_explorer.detection.primary_detector import PrimaryDetector

logger = logging.getLogger(__name__)

AI_REACQUISITION = "ai-reacquisition"
STRUCTURAL_SIMILARITY = "structural-similarity"
FUZZY_TEXT_MATCHING = "fuzzy-text-matching"

FUZZY_CANDIDATE_TAGS = {"button", "a", "input", "select", "textarea"}
FUZZY_CANDIDATE_ROLES = {"button", "link"}
# Word overlap alone never scores above containment
WORD_SIMILARITY_CAP = 0.8


@dataclass
class StrategyMatch:
    """A replacement element plus the score that justified it."""
    element: InteractiveElement
    score: float


class AdaptationStrategy(Protocol):
    name: str

    async def find(self, page: Page, element: InteractiveElement) -> Optional[StrategyMatch]:
        ...


# =============================================================================
# Scoring helpers
# =============================================================================

def text_similarity(text1: Optional[str], text2: Optional[str]) -> float:
    """Word-set Jaccard similarity, 1.0 for equal strings."""
    if not text1 or not text2:
        return 0.0
    s1 = text1.lower().strip()
    s2 = text2.lower().strip()
    if s1 == s2:
        return 1.0

    words1 = set(s1.split())
    words2 = set(s2.split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def fuzzy_text_score(original: str, candidate: str) -> float:
    """
    Score how closely a candidate's text matches the original's.

    Returns:
        1.0 for an exact match, 0.8 when one contains the other, otherwise
        the better of position-aligned character equality over the longer
        length and word-set similarity capped at 0.8 (reordered words are
        not an exact match)
    """
    t1 = (original or "").lower().strip()
    t2 = (candidate or "").lower().strip()
    if not t1 or not t2:
        return 0.0
    if t1 == t2:
        return 1.0
    if t1 in t2 or t2 in t1:
        return 0.8

    aligned = sum(1 for a, b in zip(t1, t2) if a == b)
    char_ratio = aligned / max(len(t1), len(t2))
    return max(char_ratio, min(text_similarity(t1, t2), WORD_SIMILARITY_CAP))


def _context_parts(context: Optional[str]) -> list[str]:
    if not context:
        return []
    return [part.strip().lower() for part in context.split(",") if part.strip()]


def structural_score(original: InteractiveElement, node: DomNode) -> float:
    """
    Score a DOM node's structural resemblance to the original element.

    +3 tag/role compatible with the original type, +2 per attribute with the
    same value, +1 per shared class, +1 per ancestor-context part that also
    appears in the node's context trail.
    """
    score = 0.0

    if is_type_compatible(original.type, node.tag, node.role, node.attributes.get("type")):
        score += 3

    for name, value in original.attributes.items():
        if node.attributes.get(name) == value:
            score += 2

    original_classes = set(original.attributes.get("class", "").split())
    if original_classes:
        score += len(original_classes & set(node.classes))

    candidate_context = node.context.lower()
    if candidate_context:
        score += sum(1 for part in _context_parts(original.metadata.context) if part in candidate_context)

    return score


def distance_moved(original: InteractiveElement, candidate: InteractiveElement) -> Optional[float]:
    """Euclidean distance between top-left corners, None without geometry."""
    if original.bounding_box is None or candidate.bounding_box is None:
        return None
    return math.hypot(
        original.bounding_box.x - candidate.bounding_box.x,
        original.bounding_box.y - candidate.bounding_box.y,
    )


def build_reacquisition_instruction(element: InteractiveElement) -> str:
    """Describe the lost element to the observer."""
    parts = [f"Find a {element.type.value.replace('-', ' ')} element"]
    if element.text:
        parts.append(f'with text similar to "{element.text}"')
    role = element.attributes.get("role")
    if role:
        parts.append(f'with role "{role}"')
    if element.metadata.context:
        parts.append(f"in the context of {element.metadata.context}")
    hint = TYPE_INSTRUCTION_HINTS.get(element.type)
    if hint:
        parts.append(hint)
    return " ".join(parts)


async def _materialize(page: Page, selector: str, original: InteractiveElement) -> Optional[InteractiveElement]:
    """Build a fresh element at ``selector`` that keeps the original's type."""
    handle = await resolve_unique(page, selector)
    if handle is None:
        return None
    return await build_element(handle, selector, original.type)


# =============================================================================
# Strategies
# =============================================================================

class AIReacquisitionStrategy:
    """Ask the observer to find the element again from its description."""

    name = AI_REACQUISITION

    def __init__(self, detector: "PrimaryDetector", config: Optional[DetectorConfig] = None):
        self.detector = detector
        self.config = config or detector.config

    def is_similar(self, original: InteractiveElement, candidate: InteractiveElement) -> bool:
        if candidate.type not in (original.type, ElementType.UNKNOWN):
            return False

        if original.text and candidate.text:
            if text_similarity(original.text, candidate.text) < self.config.ai_match_min_text_similarity:
                return False

        moved = distance_moved(original, candidate)
        if moved is not None and moved > self.config.ai_match_max_distance_px:
            return False
        return True

    async def find(self, page: Page, element: InteractiveElement) -> Optional[StrategyMatch]:
        if not self.detector.ai_available:
            return None

        instruction = build_reacquisition_instruction(element)
        observations = await self.detector.observe(instruction)
        if not observations:
            return None

        candidate = await self.detector.element_from_observation(page, observations[0])
        if candidate is None or not candidate.is_visible:
            return None
        if not self.is_similar(element, candidate):
            logger.debug(f"AI re-acquisition candidate {candidate.selector} rejected as dissimilar")
            return None

        candidate.type = element.type
        score = text_similarity(element.text, candidate.text) if element.text else 1.0
        return StrategyMatch(element=candidate, score=score)


class StructuralSimilarityStrategy:
    """Pick the visible node that best resembles the original structurally."""

    name = STRUCTURAL_SIMILARITY

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()

    async def find(self, page: Page, element: InteractiveElement) -> Optional[StrategyMatch]:
        nodes = await snapshot_dom(page, self.config.max_snapshot_nodes)

        best: Optional[DomNode] = None
        best_score = 0.0
        for node in nodes:
            if not node.visible:
                continue
            score = structural_score(element, node)
            if score > self.config.structural_min_score and score > best_score:
                best, best_score = node, score

        if best is None:
            return None

        await complete_selectors(page, [best])
        selector = synthesize_selector(best)
        if not selector:
            return None
        candidate = await _materialize(page, selector, element)
        if candidate is None:
            return None
        return StrategyMatch(element=candidate, score=best_score)


class FuzzyTextStrategy:
    """Find the interactive node whose text best matches the original's."""

    name = FUZZY_TEXT_MATCHING

    def __init__(self, config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()

    @staticmethod
    def is_candidate(node: DomNode) -> bool:
        return node.visible and (
            node.tag in FUZZY_CANDIDATE_TAGS
            or (node.role or "").lower() in FUZZY_CANDIDATE_ROLES
        )

    async def find(self, page: Page, element: InteractiveElement) -> Optional[StrategyMatch]:
        if not element.text:
            return None

        nodes = await snapshot_dom(page, self.config.max_snapshot_nodes)

        best: Optional[DomNode] = None
        best_score = 0.0
        for node in nodes:
            if not self.is_candidate(node):
                continue
            score = fuzzy_text_score(element.text, node.text)
            if score > self.config.fuzzy_min_score and score > best_score:
                best, best_score = node, score

        if best is None:
            return None

        await complete_selectors(page, [best])
        selector = synthesize_selector(best)
        if not selector:
            return None
        candidate = await _materialize(page, selector, element)
        if candidate is None:
            return None
        return StrategyMatch(element=candidate, score=best_score)


def default_strategies(
    detector: "PrimaryDetector",
    config: Optional[DetectorConfig] = None,
) -> list[AdaptationStrategy]:
    """The fixed AI -> structural -> fuzzy chain."""
    config = config or detector.config
    return [
        AIReacquisitionStrategy(detector, config),
        StructuralSimilarityStrategy(config),
        FuzzyTextStrategy(config),
    ]
