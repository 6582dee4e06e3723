"""
Selector Synthesis and DOM Snapshots.

The browser-side scripts in this module gather plain data about DOM nodes
(tag, attributes, classes, text, ancestor context). Scoring and selector
choice then happen in Python on DomNode objects, which keeps every
heuristic testable without a browser.

Class and path selectors need one uniqueness query per class combination,
so they are searched in a second call (SELECTORS_FOR_NODES_JS) and only for
the nodes a caller is about to use.

Selector preference, most stable first:
1. id (when unique on the page)
2. data-testid (when unique on the page)
3. a verified-unique class combination
4. a structural nth-child path
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from browser_explorer.models import BoundingBox

logger = logging.getLogger(__name__)


# Browser-side helpers shared by the scripts below
_CONTEXT_HELPERS_JS = r"""
  const describeContext = (elem) => {
    const parts = [];
    const form = elem.closest('form');
    if (form) {
      const formName = form.getAttribute('name') || form.getAttribute('id');
      if (formName) parts.push(`Form: ${formName}`);
    }
    const fieldset = elem.closest('fieldset');
    if (fieldset) {
      const legend = fieldset.querySelector('legend');
      const legendText = legend ? (legend.textContent || '').trim() : '';
      if (legendText) parts.push(`Fieldset: ${legendText}`);
    }
    const section = elem.closest('section, article, [role="region"]');
    if (section) {
      const heading = section.querySelector('h1, h2, h3, h4, h5, h6');
      const headingText = heading ? (heading.textContent || '').trim() : '';
      if (headingText) parts.push(`Section: ${headingText}`);
    }
    if (elem.closest('nav, [role="navigation"]')) parts.push('Navigation area');
    if (elem.closest('dialog, [role="dialog"], [role="alertdialog"], .modal, .dialog')) {
      parts.push('Modal/Dialog');
    }
    const table = elem.closest('table');
    if (table) {
      const caption = table.querySelector('caption');
      const captionText = caption ? (caption.textContent || '').trim() : '';
      if (captionText) parts.push(`Table: ${captionText}`);
    }
    const list = elem.closest('ul, ol, dl');
    if (list) {
      const listTag = list.tagName.toLowerCase();
      const kind = listTag === 'ul' ? 'unordered' : listTag === 'ol' ? 'ordered' : 'description';
      parts.push(`In ${kind} list`);
    }
    return parts.join(', ');
  };

  const collectAttributes = (elem) => {
    const attrs = {};
    for (const attr of Array.from(elem.attributes)) attrs[attr.name] = attr.value;
    return attrs;
  };

  const xpathOf = (elem) => {
    const parts = [];
    let node = elem;
    while (node && node.nodeType === 1) {
      let index = 1;
      let sibling = node.previousElementSibling;
      while (sibling) {
        if (sibling.tagName === node.tagName) index++;
        sibling = sibling.previousElementSibling;
      }
      parts.unshift(`${node.tagName.toLowerCase()}[${index}]`);
      node = node.parentElement;
    }
    return '/' + parts.join('/');
  };
"""

# Evaluated on an ElementHandle: everything build_element needs in one call
DESCRIBE_ELEMENT_JS = "(el) => {" + _CONTEXT_HELPERS_JS + r"""
  const tag = el.tagName.toLowerCase();
  let label = null;
  if (el.id) {
    const labelEl = document.querySelector(`label[for="${CSS.escape(el.id)}"]`);
    if (labelEl) label = (labelEl.textContent || '').trim() || null;
  }
  if (!label) {
    const closestLabel = el.closest('label');
    if (closestLabel) label = (closestLabel.textContent || '').trim() || null;
  }
  let options = null;
  if (tag === 'select') {
    options = Array.from(el.options).map((opt) => ({ value: opt.value, text: opt.text }));
  }
  return {
    tag,
    attributes: collectAttributes(el),
    label,
    options,
    context: describeContext(el) || null,
    xpath: xpathOf(el),
  };
}"""

# Browser-side selector search, run only for nodes that need it
_SELECTOR_HELPERS_JS = r"""
  const isUnique = (selector) => {
    try {
      return document.querySelectorAll(selector).length === 1;
    } catch (e) {
      return false;
    }
  };

  const uniqueClassSelector = (elem) => {
    const tag = elem.tagName.toLowerCase();
    const classes = Array.from(elem.classList).filter(Boolean);
    if (!classes.length) return null;
    const combos = classes.map((c) => [c]);
    for (let i = 0; i < classes.length; i++) {
      for (let j = i + 1; j < classes.length; j++) combos.push([classes[i], classes[j]]);
    }
    if (classes.length > 2) combos.push(classes);
    for (const combo of combos) {
      const selector = tag + combo.map((c) => '.' + CSS.escape(c)).join('');
      if (isUnique(selector)) return selector;
    }
    return null;
  };

  const structuralPath = (elem) => {
    const segments = [];
    let node = elem;
    while (node && node.nodeType === 1 && node !== document.body && node !== document.documentElement) {
      if (node !== elem && node.id && isUnique('#' + CSS.escape(node.id))) {
        segments.unshift('#' + CSS.escape(node.id));
        return segments.join(' > ');
      }
      const parent = node.parentElement;
      const index = parent ? Array.from(parent.children).indexOf(node) + 1 : 1;
      segments.unshift(`${node.tagName.toLowerCase()}:nth-child(${index})`);
      node = parent;
    }
    segments.unshift('body');
    return segments.join(' > ');
  };
"""

# Evaluated on the Page: a flat, document-ordered list of node descriptors.
# ``index`` is the node's position in body.querySelectorAll('*'); class and
# path selectors are left to SELECTORS_FOR_NODES_JS.
SNAPSHOT_NODES_JS = "({ limit }) => {" + _CONTEXT_HELPERS_JS + _SELECTOR_HELPERS_JS + r"""
  const SKIP_TAGS = new Set(['script', 'style', 'noscript', 'template', 'meta', 'link', 'head', 'title']);

  const nodes = [];
  const all = document.body ? document.body.querySelectorAll('*') : [];
  for (let index = 0; index < all.length; index++) {
    if (nodes.length >= limit) break;
    const el = all[index];
    const tag = el.tagName.toLowerCase();
    if (SKIP_TAGS.has(tag)) continue;

    const style = window.getComputedStyle(el);
    const rect = el.getBoundingClientRect();
    const visible = rect.width > 0 && rect.height > 0 &&
      style.visibility !== 'hidden' && style.display !== 'none' && style.opacity !== '0';
    const rawText = tag === 'input'
      ? (el.value || el.getAttribute('aria-label') || el.getAttribute('placeholder') || '')
      : (el.textContent || '');
    const id = el.id || null;
    const testId = el.getAttribute('data-testid');

    nodes.push({
      index,
      tag,
      role: el.getAttribute('role'),
      attributes: collectAttributes(el),
      classes: Array.from(el.classList),
      text: rawText.trim().replace(/\s+/g, ' ').slice(0, 200),
      visible,
      cursorPointer: style.cursor === 'pointer',
      context: describeContext(el),
      id,
      idUnique: id ? isUnique('#' + CSS.escape(id)) : false,
      testId,
      testIdUnique: testId ? isUnique(`[data-testid="${CSS.escape(testId)}"]`) : false,
      box: { x: rect.x, y: rect.y, width: rect.width, height: rect.height },
    });
  }
  return nodes;
}"""

# Evaluated on the Page: class and path selectors for snapshot indices.
# A node whose tag no longer matches (the DOM moved on) gets nulls.
SELECTORS_FOR_NODES_JS = "({ nodes }) => {" + _SELECTOR_HELPERS_JS + r"""
  const all = document.body ? document.body.querySelectorAll('*') : [];
  return nodes.map(({ index, tag }) => {
    const el = all[index];
    if (!el || el.tagName.toLowerCase() !== tag) {
      return { index, classSelector: null, pathSelector: null };
    }
    return { index, classSelector: uniqueClassSelector(el), pathSelector: structuralPath(el) };
  });
}"""


# Interactivity signals for the deterministic sweep
NATIVE_INTERACTIVE_TAGS = {"button", "a", "input", "select", "textarea", "summary"}
INTERACTIVE_ROLES = {"button", "link", "tab", "menuitem", "option", "checkbox", "radio"}
CLICK_HANDLER_ATTRIBUTES = {
    "onclick", "ng-click", "@click", "v-on:click", "(click)", "jsaction", "data-action",
}
CLICK_CLASS_HINTS = ("btn", "button", "clickable", "link")
INTERACTIVITY_THRESHOLD = 2

_CSS_IDENTIFIER = re.compile(r'^-?[A-Za-z_][A-Za-z0-9_-]*$')


@dataclass
class DomNode:
    """Plain-data view of one DOM node from SNAPSHOT_NODES_JS."""
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    classes: List[str] = field(default_factory=list)
    text: str = ""
    role: Optional[str] = None
    visible: bool = True
    cursor_pointer: bool = False
    context: str = ""
    id: Optional[str] = None
    id_unique: bool = False
    test_id: Optional[str] = None
    test_id_unique: bool = False
    class_selector: Optional[str] = None
    path_selector: Optional[str] = None
    bounding_box: Optional[BoundingBox] = None
    index: Optional[int] = None  # Position in body.querySelectorAll("*")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DomNode":
        """Build from the browser-side descriptor (camelCase keys)."""
        attributes = {str(k): str(v) for k, v in (data.get('attributes') or {}).items()}
        return cls(
            tag=(data.get('tag') or 'div').lower(),
            attributes=attributes,
            classes=list(data.get('classes') or attributes.get('class', '').split()),
            text=data.get('text') or '',
            role=data.get('role') or attributes.get('role'),
            visible=bool(data.get('visible', True)),
            cursor_pointer=bool(data.get('cursorPointer', False)),
            context=data.get('context') or '',
            id=data.get('id') or attributes.get('id'),
            id_unique=bool(data.get('idUnique', False)),
            test_id=data.get('testId') or attributes.get('data-testid'),
            test_id_unique=bool(data.get('testIdUnique', False)),
            class_selector=data.get('classSelector'),
            path_selector=data.get('pathSelector'),
            bounding_box=BoundingBox.from_dict(data.get('box')),
            index=data.get('index'),
        )


def css_attribute_value(value: str) -> str:
    """Quote a value for use inside a CSS attribute selector."""
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def id_selector(element_id: str) -> str:
    """Build an id selector, falling back to attribute form for odd ids."""
    if _CSS_IDENTIFIER.match(element_id):
        return f"#{element_id}"
    return f"[id={css_attribute_value(element_id)}]"


def data_testid_selector(test_id: str) -> str:
    return f"[data-testid={css_attribute_value(test_id)}]"


def synthesize_selector(node: DomNode) -> Optional[str]:
    """
    Pick the most stable selector available for a node.

    Args:
        node: Snapshot node

    Returns:
        Selector string, or None if the node offers nothing usable
    """
    if node.id and node.id_unique:
        return id_selector(node.id)
    if node.test_id and node.test_id_unique:
        return data_testid_selector(node.test_id)
    if node.class_selector:
        return node.class_selector
    return node.path_selector


def needs_selector_search(node: DomNode) -> bool:
    """True when only a class or path selector could identify the node."""
    if (node.id and node.id_unique) or (node.test_id and node.test_id_unique):
        return False
    return (
        node.visible
        and node.index is not None
        and node.class_selector is None
        and node.path_selector is None
    )


def apply_selector_search(nodes: List[DomNode], raw_results: Any) -> None:
    """Copy SELECTORS_FOR_NODES_JS results onto the nodes with matching indices."""
    if not isinstance(raw_results, list):
        logger.debug(f"Unexpected selector search payload: {type(raw_results).__name__}")
        return

    by_index = {node.index: node for node in nodes}
    for raw in raw_results:
        if not isinstance(raw, dict):
            continue
        node = by_index.get(raw.get('index'))
        if node is None:
            continue
        node.class_selector = raw.get('classSelector') or None
        node.path_selector = raw.get('pathSelector') or None


def interactivity_score(node: DomNode) -> int:
    """
    Score how likely a node is to be user-actionable.

    Signals: native interactive tags, interactive ARIA roles, a tabindex
    other than -1, click-handler attributes or classes, and cursor:pointer.
    """
    score = 0
    tag = node.tag
    attrs = node.attributes

    if tag in NATIVE_INTERACTIVE_TAGS:
        if tag == 'a' and 'href' not in attrs:
            pass
        elif tag == 'input' and attrs.get('type', '').lower() == 'hidden':
            return 0
        else:
            score += 3

    if (node.role or '').lower() in INTERACTIVE_ROLES:
        score += 3

    tabindex = attrs.get('tabindex')
    if tabindex is not None and tabindex.strip() != '-1':
        score += 1

    if any(name in attrs for name in CLICK_HANDLER_ATTRIBUTES):
        score += 2

    if any(hint in cls.lower() for cls in node.classes for hint in CLICK_CLASS_HINTS):
        score += 1

    if node.cursor_pointer:
        score += 1

    return score


def is_interactive(node: DomNode, threshold: int = INTERACTIVITY_THRESHOLD) -> bool:
    return node.visible and interactivity_score(node) >= threshold


def parse_snapshot(raw_nodes: Any) -> List[DomNode]:
    """Turn the raw snapshot payload into DomNodes, skipping junk entries."""
    if not isinstance(raw_nodes, list):
        logger.debug(f"Unexpected DOM snapshot payload: {type(raw_nodes).__name__}")
        return []

    nodes = []
    for raw in raw_nodes:
        if not isinstance(raw, dict) or not raw.get('tag'):
            continue
        nodes.append(DomNode.from_dict(raw))
    return nodes
