"""
Primary Interactive Element Detector.

Finds actionable elements on a page:
- Fans out natural-language queries to the injected AI observer
- Resolves observations to live handles and infers their types
- Falls back to a targeted AI re-query and a deterministic DOM sweep when
  the AI path finds too little
- Merges and deduplicates both paths (AI wins on conflict)
- Asks the observer to reclassify elements that are still unknown

Any single query or resolution failure is swallowed and logged. A
page-level failure raises PageUnavailableError with no partial result.
"""

import asyncio
import logging
import time
from typing import Optional

from playwright.async_api import Page

from browser_explorer.config import DetectorConfig
from browser_explorer.detection.dom import (
    build_element,
    complete_selectors,
    current_url,
    resolve_unique,
    snapshot_dom,
)
from browser_explorer.detection.observer import ElementObserver, Observation, parse_observations
from browser_explorer.detection.selectors import is_interactive, synthesize_selector
from browser_explorer.detection.type_inference import (
    infer_type_from_description,
    infer_type_from_tag,
)
from browser_explorer.exceptions import PageUnavailableError, raise_if_page_fatal
from browser_explorer.models import (
    DetectionError,
    DetectionResult,
    ElementClassification,
    ElementMetadata,
    ElementType,
    InteractiveElement,
)

logger = logging.getLogger(__name__)


DETECTION_QUERIES = [
    "Find all interactive elements that users can click or interact with",
    "Find all form inputs where users can enter data",
    "Find all navigation links and menu items",
    "Find all toggles, switches, and selection controls",
    "Find all buttons for submitting forms or triggering actions",
    "Find all dropdown menus and selection lists",
    "Find all buttons, inputs and controls inside modals and dialogs",
    "Find all controls inside tables such as sort headers, row actions and pagination",
]

FALLBACK_QUERY = (
    "Find every element on this page that a user could click, type into or select, "
    "including custom controls built from div or span elements"
)

UNAVAILABLE_CONFIDENCE = 0.5


class PrimaryDetector:
    """
    AI-first interactive element detector with a deterministic fallback.

    The observer is optional. Without one, or when its initialization fails,
    the detector runs in deterministic-only mode for its whole lifetime.
    """

    def __init__(
        self,
        observer: Optional[ElementObserver] = None,
        config: Optional[DetectorConfig] = None,
    ):
        """
        Initialize the detector.

        Args:
            observer: AI observation capability (optional)
            config: Detection settings, defaults if omitted
        """
        self.observer = observer
        self.config = config or DetectorConfig()
        self._ai_available = False
        self._ai_failed = False

    @property
    def ai_available(self) -> bool:
        return self._ai_available

    async def initialize(self, page: Page) -> None:
        """
        Bind the observer to the page's session.

        Failure is non-fatal: it is logged and the detector stays in
        deterministic-only mode.
        """
        if self.observer is None or not self.config.enable_ai:
            logger.info("No AI observer configured, using deterministic detection only")
            return
        if self._ai_failed:
            return

        try:
            await self.observer.init(page)
            self._ai_available = True
            logger.info("AI observer initialized")
        except Exception as e:
            self._ai_failed = True
            self._ai_available = False
            logger.warning(f"AI observer unavailable, falling back to deterministic detection: {e}")

    async def observe(self, instruction: str) -> list[Observation]:
        """
        Run one observer query and validate its output.

        Raises whatever the observer raises; returns [] when AI is unavailable.
        """
        if not self._ai_available or self.observer is None:
            return []
        raw = await self.observer.observe(instruction)
        return parse_observations(raw)

    async def _safe_observe(self, instruction: str) -> list[Observation]:
        try:
            return await self.observe(instruction)
        except Exception as e:
            logger.debug(f"AI query failed ({instruction!r}): {e}")
            return []

    async def element_from_observation(
        self,
        page: Page,
        observation: Observation,
    ) -> Optional[InteractiveElement]:
        """
        Resolve an observation to a live element.

        Returns None when the selector does not resolve to exactly one node.
        Probe failures other than page-level ones propagate to the caller.
        """
        handle = await resolve_unique(page, observation.selector)
        if handle is None:
            return None

        element_type = infer_type_from_description(observation.description)
        element = await build_element(handle, observation.selector, element_type)
        element.metadata = element.metadata.merged_with(ElementMetadata(
            description=observation.description or None,
            ai_detected=True,
        ))
        return element

    async def detect_interactive_elements(self, page: Page) -> DetectionResult:
        """
        Detect interactive elements on the page.

        Args:
            page: Playwright page

        Returns:
            DetectionResult with merged elements and per-element errors

        Raises:
            PageUnavailableError: if the page went away during detection
        """
        start = time.perf_counter()
        errors: list[DetectionError] = []

        ai_elements: list[InteractiveElement] = []
        if self._ai_available:
            ai_elements = self._merge_and_deduplicate(
                await self._detect_with_ai(page, DETECTION_QUERIES, errors), []
            )
            logger.info(f"AI path found {len(ai_elements)} element(s)")

        fallback_elements: list[InteractiveElement] = []
        if len(ai_elements) < self.config.min_ai_results:
            if self._ai_available:
                logger.info("Too few AI results, issuing targeted re-query")
                ai_elements = self._merge_and_deduplicate(
                    ai_elements, await self._detect_with_ai(page, [FALLBACK_QUERY], errors)
                )

            if len(ai_elements) < self.config.min_ai_results and self.config.enable_selector_fallback:
                logger.info("Running deterministic DOM sweep")
                fallback_elements = await self._sweep_dom(page, errors)

        elements = self._merge_and_deduplicate(ai_elements, fallback_elements)

        if self._ai_available:
            for element in elements:
                if element.type != ElementType.UNKNOWN:
                    continue
                classification = await self.classify_element(element)
                self._apply_classification(element, classification)

        detection_time = (time.perf_counter() - start) * 1000
        logger.info(f"Detected {len(elements)} interactive element(s) in {detection_time:.0f}ms")
        return DetectionResult(
            elements=elements,
            total_found=len(elements),
            detection_time=detection_time,
            errors=errors,
        )

    async def _detect_with_ai(
        self,
        page: Page,
        queries: list[str],
        errors: list[DetectionError],
    ) -> list[InteractiveElement]:
        """Fan out queries concurrently, then resolve hits one by one."""
        results = await asyncio.gather(*(self._safe_observe(q) for q in queries))
        observations = [obs for batch in results for obs in batch]
        logger.debug(f"{len(queries)} AI quer(ies) returned {len(observations)} observation(s)")

        elements: list[InteractiveElement] = []
        for observation in observations:
            if len(elements) >= self.config.max_elements:
                break
            try:
                element = await self.element_from_observation(page, observation)
            except PageUnavailableError:
                raise
            except Exception as e:
                raise_if_page_fatal(e, current_url(page))
                errors.append(DetectionError(selector=observation.selector, error=str(e)))
                logger.debug(f"Dropped observation {observation.selector}: {e}")
                continue

            if element is not None and element.is_visible:
                elements.append(element)
        return elements

    async def _sweep_dom(self, page: Page, errors: list[DetectionError]) -> list[InteractiveElement]:
        """Score every node for interactivity and keep the visible, resolvable ones."""
        try:
            nodes = await snapshot_dom(page, self.config.max_snapshot_nodes)
        except PageUnavailableError:
            raise
        except Exception as e:
            logger.warning(f"DOM snapshot failed, skipping deterministic sweep: {e}")
            return []

        candidates = [node for node in nodes if is_interactive(node)]
        await complete_selectors(page, candidates)

        elements: list[InteractiveElement] = []
        for node in candidates:
            selector = synthesize_selector(node)
            if not selector:
                continue

            handle = await resolve_unique(page, selector)
            if handle is None:
                continue

            try:
                element = await build_element(
                    handle, selector, infer_type_from_tag(node.tag, node.attributes)
                )
            except PageUnavailableError:
                raise
            except Exception as e:
                raise_if_page_fatal(e, current_url(page))
                errors.append(DetectionError(selector=selector, error=str(e)))
                continue

            if element.is_visible:
                elements.append(element)

        logger.debug(f"DOM sweep kept {len(elements)} of {len(nodes)} node(s)")
        return elements

    @staticmethod
    def _merge_and_deduplicate(
        ai_elements: list[InteractiveElement],
        fallback_elements: list[InteractiveElement],
    ) -> list[InteractiveElement]:
        """Collapse equal (selector, type, text, position) keys; AI entries win."""
        merged: dict[tuple, InteractiveElement] = {}
        for element in ai_elements:
            merged.setdefault(element.dedup_key(), element)
        for element in fallback_elements:
            merged.setdefault(element.dedup_key(), element)
        return list(merged.values())

    async def classify_element(self, element: InteractiveElement) -> ElementClassification:
        """
        Ask the observer what an element is.

        Returns:
            ElementClassification; confidence is high only when the observer
            actually answered
        """
        if not self._ai_available:
            return ElementClassification(
                element=element,
                confidence=UNAVAILABLE_CONFIDENCE,
                suggested_type=ElementType.UNKNOWN,
                reasoning="AI observer not available for classification",
            )

        context = element.metadata.context
        context_info = f" in the context of {context}" if context else ""
        instruction = (
            f'Analyze the element at selector "{element.selector}"{context_info}. '
            "What type of interactive element is this? "
            "Consider its tag, attributes, and surrounding context."
        )

        try:
            observations = await self.observe(instruction)
        except Exception as e:
            logger.debug(f"AI classification failed for {element.selector}: {e}")
            return ElementClassification(
                element=element,
                confidence=UNAVAILABLE_CONFIDENCE,
                suggested_type=ElementType.UNKNOWN,
                reasoning="AI classification error",
            )

        if not observations:
            return ElementClassification(
                element=element,
                confidence=UNAVAILABLE_CONFIDENCE,
                suggested_type=ElementType.UNKNOWN,
                reasoning="Could not analyze element with AI",
            )

        description = observations[0].description
        return ElementClassification(
            element=element,
            confidence=self.config.ai_classification_confidence,
            suggested_type=infer_type_from_description(description),
            reasoning=description or "AI analysis completed",
        )

    def _apply_classification(
        self,
        element: InteractiveElement,
        classification: ElementClassification,
    ) -> None:
        if classification.suggested_type == ElementType.UNKNOWN:
            return
        if classification.confidence <= self.config.classification_threshold:
            logger.debug(
                f"Kept {element.selector} as unknown "
                f"(confidence {classification.confidence:.2f} too low)"
            )
            return
        element.type = classification.suggested_type
        element.metadata.ai_confidence = classification.confidence
        logger.debug(f"Reclassified {element.selector} as {element.type.value}")

    async def cleanup(self) -> None:
        """Close the observer session. Safe to call more than once."""
        if self._ai_available and self.observer is not None:
            try:
                await self.observer.close()
            except Exception as e:
                logger.warning(f"Error closing AI observer: {e}")
        self._ai_available = False
