"""
Self-Healing Adaptation Engine.

Wraps PrimaryDetector with a TTL cache and a bounded re-location pipeline:
- Every detected element is cached, then revalidated against the live DOM
- Elements whose selector no longer resolves to a visible node are adapted
  (AI re-acquisition, then structural similarity, then fuzzy text)
- Each (selector, page URL) pair gets a fixed attempt budget; every attempt
  is recorded, successful or not
- Adapted elements replace the originals and re-enter the cache
- Expired snapshots are dropped at the start of every detection run
- An optional background monitor re-validates elements after DOM mutations

Elements are processed one at a time against the shared page.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Optional

from playwright.async_api import Page

from browser_explorer.config import DetectorConfig
from browser_explorer.detection.cache import AdaptiveCache
from browser_explorer.detection.dom import current_url, probe_selector
from browser_explorer.detection.primary_detector import PrimaryDetector
from browser_explorer.detection.strategies import (
    AdaptationStrategy,
    StrategyMatch,
    default_strategies,
)
from browser_explorer.exceptions import (
    PageUnavailableError,
    is_page_fatal,
    raise_if_page_fatal,
)
from browser_explorer.models import (
    AdaptationAttempt,
    AdaptationStats,
    DetectionResult,
    ElementMetadata,
    InteractiveElement,
    now_ms,
)

logger = logging.getLogger(__name__)

FAILED_STRATEGY = "All strategies failed"
FAILED_ERROR = "Could not adapt element"

DEFAULT_MONITOR_INTERVAL = 2.0

# Sets window.__explorerUiChanged on structural changes or on class, id or
# data-testid edits anywhere under <body>. Returns False if already installed.
INSTALL_UI_MONITOR_JS = r"""() => {
  if (window.__explorerUiMonitor) return false;
  window.__explorerUiChanged = false;
  const observer = new MutationObserver((mutations) => {
    const relevant = mutations.some((m) =>
      m.type === 'attributes' ||
      (m.type === 'childList' && (m.addedNodes.length > 0 || m.removedNodes.length > 0)));
    if (relevant) window.__explorerUiChanged = true;
  });
  observer.observe(document.body, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: ['class', 'id', 'data-testid'],
  });
  window.__explorerUiMonitor = observer;
  return true;
}"""

# Read and reset the change flag
POLL_UI_CHANGES_JS = r"""() => {
  const changed = Boolean(window.__explorerUiChanged);
  window.__explorerUiChanged = false;
  return changed;
}"""

STOP_UI_MONITOR_JS = r"""() => {
  if (window.__explorerUiMonitor) {
    window.__explorerUiMonitor.disconnect();
    delete window.__explorerUiMonitor;
  }
  delete window.__explorerUiChanged;
}"""


class AdaptationEngine:
    """
    Detection front-end that keeps elements usable across UI changes.

    Example:
        engine = AdaptationEngine(PrimaryDetector(observer))
        await engine.initialize(page)
        result = await engine.detect_interactive_elements(page)
        element = await engine.get_adaptive_element(page, result.elements[0])
        await engine.cleanup()
    """

    def __init__(
        self,
        detector: Optional[PrimaryDetector] = None,
        config: Optional[DetectorConfig] = None,
        cache: Optional[AdaptiveCache] = None,
        strategies: Optional[list[AdaptationStrategy]] = None,
    ):
        """
        Initialize the engine.

        Args:
            detector: Primary detector (a deterministic-only one if omitted)
            config: Settings shared with the detector and strategies
            cache: Snapshot cache (built from config.cache_ttl_ms if omitted)
            strategies: Ordered adaptation strategies (AI, structural, fuzzy
                if omitted)
        """
        self.config = config or (detector.config if detector else DetectorConfig())
        self.detector = detector or PrimaryDetector(config=self.config)
        # An injected cache may be empty, and an empty cache is falsy
        self.cache = cache if cache is not None else AdaptiveCache(ttl_ms=self.config.cache_ttl_ms)
        self.strategies = (
            strategies if strategies is not None
            else default_strategies(self.detector, self.config)
        )
        self._history: dict[str, list[AdaptationAttempt]] = {}
        self._monitor_task: Optional[asyncio.Task] = None
        self._monitored_page: Optional[Page] = None

    async def initialize(self, page: Page) -> None:
        await self.detector.initialize(page)

    async def detect_interactive_elements(self, page: Page) -> DetectionResult:
        """
        Detect elements, cache them, and return only live or adapted ones.

        Raises:
            PageUnavailableError: if the page went away during detection
        """
        start = time.perf_counter()
        self.cache.cleanup_expired()
        result = await self.detector.detect_interactive_elements(page)
        page_url = current_url(page)
        self.cache.put_many(result.elements, page_url)

        elements: list[InteractiveElement] = []
        for element in result.elements:
            live = await self.get_adaptive_element(page, element)
            if live is not None:
                elements.append(live)
            else:
                logger.info(f"Element lost and excluded: {element.selector}")

        return DetectionResult(
            elements=elements,
            total_found=len(elements),
            detection_time=(time.perf_counter() - start) * 1000,
            errors=list(result.errors),
        )

    async def get_adaptive_element(
        self,
        page: Page,
        element: InteractiveElement,
    ) -> Optional[InteractiveElement]:
        """
        Return a usable version of an element.

        The original selector is probed first; if it still resolves to a
        visible node the element is returned unchanged. Otherwise the
        strategies run in order until one succeeds.

        Args:
            page: Playwright page
            element: Element as previously detected

        Returns:
            The element, an adapted replacement, or None once every strategy
            failed or the attempt budget is used up
        """
        page_url = current_url(page)

        if await probe_selector(page, element.selector):
            if self.cache.lookup(element, page_url) is None:
                self.cache.put(element, page_url)
            return element

        return await self._adapt(page, element, page_url)

    @staticmethod
    def _attempt_key(selector: str, page_url: str) -> str:
        return f"{selector}_{page_url}"

    async def _adapt(
        self,
        page: Page,
        element: InteractiveElement,
        page_url: str,
    ) -> Optional[InteractiveElement]:
        attempt_key = self._attempt_key(element.selector, page_url)
        previous = self._history.get(attempt_key, [])

        if len(previous) >= self.config.max_adaptation_attempts:
            logger.warning(
                f"Max adaptation attempts reached for {element.selector} "
                f"({len(previous)} attempts)"
            )
            return None

        logger.info(f"Attempting adaptation of {element.selector} (attempt {len(previous) + 1})")

        for strategy in self.strategies:
            try:
                match = await strategy.find(page, element)
            except PageUnavailableError:
                raise
            except Exception as e:
                raise_if_page_fatal(e, page_url)
                logger.debug(f"Strategy {strategy.name} failed for {element.selector}: {e}")
                continue

            if match is None:
                continue

            adapted = self._adapted_element(element, match, strategy.name)
            attempt = AdaptationAttempt(
                timestamp=adapted.metadata.adaptation_timestamp or now_ms(),
                original_selector=element.selector,
                new_selector=adapted.selector,
                strategy=strategy.name,
                success=True,
            )
            self._record_attempt(attempt_key, attempt)
            self.cache.put(adapted, page_url, history=[attempt])
            logger.info(
                f"Adapted {element.selector} -> {adapted.selector} "
                f"via {strategy.name} (score {match.score:.2f})"
            )
            return adapted

        self._record_attempt(attempt_key, AdaptationAttempt(
            timestamp=now_ms(),
            original_selector=element.selector,
            new_selector="",
            strategy=FAILED_STRATEGY,
            success=False,
            error=FAILED_ERROR,
        ))
        logger.info(f"Could not adapt {element.selector}")
        return None

    @staticmethod
    def _adapted_element(
        original: InteractiveElement,
        match: StrategyMatch,
        strategy_name: str,
    ) -> InteractiveElement:
        adapted = match.element
        adapted.id = original.id
        adapted.type = original.type
        adapted.metadata = original.metadata.merged_with(adapted.metadata).merged_with(
            ElementMetadata(
                adapted_from=original.selector,
                adaptation_strategy=strategy_name,
                adaptation_score=match.score,
                adaptation_timestamp=now_ms(),
            )
        )
        return adapted

    def _record_attempt(self, attempt_key: str, attempt: AdaptationAttempt) -> None:
        self._history.setdefault(attempt_key, []).append(attempt)

    def get_adaptation_history(self, selector: str, page_url: str) -> list[AdaptationAttempt]:
        """Attempts recorded for one (selector, page URL) pair, oldest first."""
        return list(self._history.get(self._attempt_key(selector, page_url), []))

    def get_adaptation_stats(self) -> AdaptationStats:
        """Aggregate every recorded attempt."""
        stats = AdaptationStats()
        for attempts in self._history.values():
            for attempt in attempts:
                stats.total_attempts += 1
                if attempt.success:
                    stats.successful_adaptations += 1
                else:
                    stats.failed_adaptations += 1
                stats.strategies_used[attempt.strategy] = stats.strategies_used.get(attempt.strategy, 0) + 1
        return stats

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    async def monitor_for_ui_changes(
        self,
        page: Page,
        elements: list[InteractiveElement],
        callback: Callable[[list[InteractiveElement]], Any],
        interval: float = DEFAULT_MONITOR_INTERVAL,
    ) -> Optional[asyncio.Task]:
        """
        Re-validate elements in the background whenever the DOM changes.

        A MutationObserver in the page raises a flag; a background task polls
        it every ``interval`` seconds. On a change every tracked element goes
        through get_adaptive_element, lost ones are dropped, and ``callback``
        (plain or async) receives the surviving list, which is tracked from
        then on. The task ends when the page goes away or on
        stop_monitoring(). Starting a new monitor stops the previous one.

        Args:
            page: Playwright page
            elements: Elements to keep usable
            callback: Called with the re-validated elements after each change
            interval: Seconds between polls

        Returns:
            The polling task, or None if there was nothing to monitor or the
            observer could not be installed

        Raises:
            PageUnavailableError: if the page is already gone
        """
        if not elements:
            logger.debug("No elements to monitor")
            return None

        await self.stop_monitoring()

        try:
            await page.evaluate(INSTALL_UI_MONITOR_JS)
        except Exception as e:
            raise_if_page_fatal(e, current_url(page))
            logger.error(f"Could not install UI change monitor: {e}")
            return None

        self._monitored_page = page
        self._monitor_task = asyncio.create_task(
            self._ui_change_loop(page, list(elements), callback, interval)
        )
        logger.info(f"Monitoring {len(elements)} element(s) for UI changes every {interval}s")
        return self._monitor_task

    async def _ui_change_loop(
        self,
        page: Page,
        elements: list[InteractiveElement],
        callback: Callable[[list[InteractiveElement]], Any],
        interval: float,
    ) -> None:
        tracked = elements
        while True:
            try:
                await asyncio.sleep(interval)
                if not await page.evaluate(POLL_UI_CHANGES_JS):
                    continue

                logger.info(f"UI change detected, re-validating {len(tracked)} element(s)")
                tracked = await self._revalidate(page, tracked)
                await self._notify(callback, tracked)
            except asyncio.CancelledError:
                break
            except Exception as e:
                if is_page_fatal(e):
                    logger.info(f"Page gone, UI change monitor stopped: {e}")
                    return
                logger.debug(f"UI change poll failed: {e}")

    async def _revalidate(
        self,
        page: Page,
        elements: list[InteractiveElement],
    ) -> list[InteractiveElement]:
        survivors = []
        for element in elements:
            live = await self.get_adaptive_element(page, element)
            if live is not None:
                survivors.append(live)
            else:
                logger.info(f"Element lost and excluded: {element.selector}")
        return survivors

    @staticmethod
    async def _notify(
        callback: Callable[[list[InteractiveElement]], Any],
        elements: list[InteractiveElement],
    ) -> None:
        try:
            result = callback(elements)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning(f"UI change callback failed: {e}")

    async def stop_monitoring(self) -> None:
        """Cancel the UI change monitor, if one is running. Idempotent."""
        task, self._monitor_task = self._monitor_task, None
        page, self._monitored_page = self._monitored_page, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        # The task may be cancelled before its first step, so disconnect here
        try:
            await page.evaluate(STOP_UI_MONITOR_JS)
        except Exception as e:
            logger.debug(f"Could not disconnect UI change monitor: {e}")
        logger.debug("UI change monitor stopped")

    async def cleanup(self) -> None:
        """Stop monitoring, release the AI session and forget all cached state. Idempotent."""
        await self.stop_monitoring()
        await self.detector.cleanup()
        self.cache.clear()
        self._history.clear()
        logger.debug("Adaptation engine cleaned up")
