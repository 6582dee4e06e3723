"""
Live DOM probes shared by detection and adaptation.

All probes are awaited one after another against the single page context.
Page-level failures surface as PageUnavailableError; anything else is left
to the caller.
"""

import logging
from typing import Optional

from playwright.async_api import ElementHandle, Page

from browser_explorer.detection.selectors import (
    DESCRIBE_ELEMENT_JS,
    SELECTORS_FOR_NODES_JS,
    SNAPSHOT_NODES_JS,
    DomNode,
    apply_selector_search,
    needs_selector_search,
    parse_snapshot,
)
from browser_explorer.detection.type_inference import infer_type_from_tag
from browser_explorer.exceptions import raise_if_page_fatal
from browser_explorer.models import (
    BoundingBox,
    ElementMetadata,
    ElementType,
    InteractiveElement,
)

logger = logging.getLogger(__name__)

# Inputs whose value attribute is their visible caption
CAPTIONED_INPUT_TYPES = {"submit", "button", "reset"}


def current_url(page: Page) -> str:
    """Read the page URL (a property on Playwright pages)."""
    url = getattr(page, "url", "")
    return url() if callable(url) else (url or "")


async def resolve_unique(page: Page, selector: str) -> Optional[ElementHandle]:
    """
    Resolve a selector to exactly one live handle.

    Returns None when nothing matches, when several nodes match, or when
    the selector itself is rejected by the browser.
    """
    try:
        handles = await page.query_selector_all(selector)
    except Exception as e:
        raise_if_page_fatal(e, current_url(page))
        logger.debug(f"Selector did not resolve: {selector} ({e})")
        return None

    if len(handles) != 1:
        if handles:
            logger.debug(f"Selector is ambiguous ({len(handles)} matches): {selector}")
        return None
    return handles[0]


async def probe_selector(page: Page, selector: str) -> bool:
    """Check that a selector still points at a visible node."""
    try:
        handle = await page.query_selector(selector)
        if handle is None:
            return False
        return bool(await handle.is_visible())
    except Exception as e:
        raise_if_page_fatal(e, current_url(page))
        logger.debug(f"Live probe failed for {selector}: {e}")
        return False


async def snapshot_dom(page: Page, limit: int) -> list[DomNode]:
    """Collect node descriptors for the whole document in one evaluate call."""
    try:
        raw = await page.evaluate(SNAPSHOT_NODES_JS, {"limit": limit})
    except Exception as e:
        raise_if_page_fatal(e, current_url(page))
        raise
    return parse_snapshot(raw)


async def complete_selectors(page: Page, nodes: list[DomNode]) -> None:
    """
    Fill in class and path selectors for nodes without a stable id.

    One evaluate call covers every node that needs it; nodes with a unique
    id or data-testid are skipped. A failed search leaves the nodes without
    a selector, so callers skip them.
    """
    pending = [node for node in nodes if needs_selector_search(node)]
    if not pending:
        return

    payload = [{"index": node.index, "tag": node.tag} for node in pending]
    try:
        raw = await page.evaluate(SELECTORS_FOR_NODES_JS, {"nodes": payload})
    except Exception as e:
        raise_if_page_fatal(e, current_url(page))
        logger.debug(f"Selector search failed for {len(pending)} node(s): {e}")
        return
    apply_selector_search(pending, raw)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    text = " ".join(value.split())
    return text or None


async def build_element(
    handle: ElementHandle,
    selector: str,
    element_type: ElementType = ElementType.UNKNOWN,
) -> InteractiveElement:
    """
    Build an InteractiveElement from a live handle.

    One evaluate call gathers tag, attributes, label, options and ancestor
    context; visibility, enabled state, geometry and text follow one by one.
    An UNKNOWN type hint falls back to tag and attribute inference.

    Raises:
        PageUnavailableError: if the page went away mid-probe
        Exception: any other probe failure, for the caller to report
    """
    try:
        info = await handle.evaluate(DESCRIBE_ELEMENT_JS) or {}
        is_visible = await handle.is_visible()
        is_enabled = await handle.is_enabled()
        box = await handle.bounding_box()
        text = await handle.text_content()
    except Exception as e:
        raise_if_page_fatal(e)
        raise

    tag = (info.get("tag") or "").lower()
    attributes = {str(k): str(v) for k, v in (info.get("attributes") or {}).items()}

    if element_type == ElementType.UNKNOWN:
        element_type = infer_type_from_tag(tag, attributes)

    text = _clean_text(text)
    if text is None and tag == "input" and attributes.get("type", "").lower() in CAPTIONED_INPUT_TYPES:
        text = _clean_text(attributes.get("value"))

    required = "required" in attributes or attributes.get("aria-required") == "true"
    metadata = ElementMetadata(
        label=info.get("label"),
        placeholder=attributes.get("placeholder"),
        required=required or None,
        options=info.get("options"),
        name=attributes.get("name"),
        context=info.get("context"),
    )

    return InteractiveElement(
        type=element_type,
        selector=selector,
        attributes=attributes,
        text=text,
        xpath=info.get("xpath"),
        is_visible=bool(is_visible),
        is_enabled=bool(is_enabled),
        bounding_box=BoundingBox.from_dict(box),
        metadata=metadata,
    )
