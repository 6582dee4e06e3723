"""
Element Type Inference.

Maps free-text AI descriptions and raw tag/attribute data onto the
ElementType taxonomy. Both mappings are plain ordered tables so they can be
tested and extended without touching control flow.
"""

from typing import Mapping

from browser_explorer.models import ElementType


# Ordered (keywords, type) table for AI descriptions. First match wins.
DESCRIPTION_TYPE_PATTERNS: list[tuple[tuple[str, ...], ElementType]] = [
    (("button", "click"), ElementType.BUTTON),
    (("password",), ElementType.PASSWORD_INPUT),
    (("email",), ElementType.EMAIL_INPUT),
    (("number",), ElementType.NUMBER_INPUT),
    (("text", "field"), ElementType.TEXT_INPUT),
    (("link", "navigate"), ElementType.LINK),
    (("checkbox",), ElementType.CHECKBOX),
    (("radio",), ElementType.RADIO),
    (("select", "dropdown"), ElementType.SELECT),
    (("toggle", "switch"), ElementType.TOGGLE),
]

# <input type="..."> to element type; anything unlisted is a text input
INPUT_TYPE_MAP: dict[str, ElementType] = {
    "text": ElementType.TEXT_INPUT,
    "search": ElementType.TEXT_INPUT,
    "url": ElementType.TEXT_INPUT,
    "password": ElementType.PASSWORD_INPUT,
    "email": ElementType.EMAIL_INPUT,
    "number": ElementType.NUMBER_INPUT,
    "tel": ElementType.TEL_INPUT,
    "checkbox": ElementType.CHECKBOX,
    "radio": ElementType.RADIO,
    "date": ElementType.DATE_PICKER,
    "datetime-local": ElementType.DATE_PICKER,
    "time": ElementType.TIME_PICKER,
    "color": ElementType.COLOR_PICKER,
    "range": ElementType.RANGE_SLIDER,
    "file": ElementType.FILE_UPLOAD,
    "submit": ElementType.BUTTON,
    "button": ElementType.BUTTON,
    "reset": ElementType.BUTTON,
    "image": ElementType.BUTTON,
}

ROLE_TYPE_MAP: dict[str, ElementType] = {
    "button": ElementType.BUTTON,
    "link": ElementType.LINK,
    "checkbox": ElementType.CHECKBOX,
    "radio": ElementType.RADIO,
    "tab": ElementType.TAB,
    "switch": ElementType.TOGGLE,
    "combobox": ElementType.SELECT,
    "listbox": ElementType.SELECT,
    "slider": ElementType.RANGE_SLIDER,
    "textbox": ElementType.TEXT_INPUT,
}

# Tags and ARIA roles that are a structural match for each type
TYPE_COMPATIBILITY: dict[ElementType, tuple[frozenset[str], frozenset[str]]] = {
    ElementType.BUTTON: (frozenset({"button"}), frozenset({"button"})),
    ElementType.LINK: (frozenset({"a"}), frozenset({"link"})),
    ElementType.TEXTAREA: (frozenset({"textarea"}), frozenset({"textbox"})),
    ElementType.SELECT: (frozenset({"select"}), frozenset({"combobox", "listbox"})),
    ElementType.MULTI_SELECT: (frozenset({"select"}), frozenset({"listbox"})),
    ElementType.CHECKBOX: (frozenset({"input"}), frozenset({"checkbox"})),
    ElementType.RADIO: (frozenset({"input"}), frozenset({"radio"})),
    ElementType.TOGGLE: (frozenset({"input", "button"}), frozenset({"switch"})),
    ElementType.TAB: (frozenset(), frozenset({"tab"})),
    ElementType.DATE_PICKER: (frozenset({"input"}), frozenset()),
    ElementType.TIME_PICKER: (frozenset({"input"}), frozenset()),
    ElementType.COLOR_PICKER: (frozenset({"input"}), frozenset()),
    ElementType.RANGE_SLIDER: (frozenset({"input"}), frozenset({"slider"})),
    ElementType.FILE_UPLOAD: (frozenset({"input"}), frozenset()),
    ElementType.RICH_TEXT_EDITOR: (frozenset(), frozenset({"textbox"})),
    ElementType.CANVAS: (frozenset({"canvas"}), frozenset()),
    ElementType.VIDEO_PLAYER: (frozenset({"video"}), frozenset()),
    ElementType.AUDIO_PLAYER: (frozenset({"audio"}), frozenset()),
}

# Extra hint appended to AI re-acquisition instructions
TYPE_INSTRUCTION_HINTS: dict[ElementType, str] = {
    ElementType.BUTTON: "that users can click to trigger actions",
    ElementType.TEXT_INPUT: "where users can enter text",
    ElementType.LINK: "that navigates to another page or section",
    ElementType.CHECKBOX: "that can be checked or unchecked",
    ElementType.SELECT: "where users can choose from options",
}


def infer_type_from_description(description: str) -> ElementType:
    """
    Infer an element type from an AI observation description.

    Args:
        description: Free-text description returned by the observer

    Returns:
        First matching ElementType from DESCRIPTION_TYPE_PATTERNS, or UNKNOWN
    """
    lower_desc = (description or "").lower()
    for keywords, element_type in DESCRIPTION_TYPE_PATTERNS:
        if any(keyword in lower_desc for keyword in keywords):
            return element_type
    return ElementType.UNKNOWN


def infer_type_from_tag(tag: str, attributes: Mapping[str, str]) -> ElementType:
    """
    Infer an element type from its tag name and attributes.

    Args:
        tag: Lower-case tag name
        attributes: Element attributes

    Returns:
        Inferred ElementType, UNKNOWN when nothing matches
    """
    tag = (tag or "").lower()

    if tag == "input":
        input_type = (attributes.get("type") or "text").lower()
        return INPUT_TYPE_MAP.get(input_type, ElementType.TEXT_INPUT)
    if tag == "textarea":
        return ElementType.TEXTAREA
    if tag == "select":
        return ElementType.MULTI_SELECT if "multiple" in attributes else ElementType.SELECT
    if tag == "button":
        return ElementType.BUTTON
    if tag == "a":
        return ElementType.LINK
    if tag == "canvas":
        return ElementType.CANVAS
    if tag == "video":
        return ElementType.VIDEO_PLAYER
    if tag == "audio":
        return ElementType.AUDIO_PLAYER

    role = (attributes.get("role") or "").lower()
    if role in ROLE_TYPE_MAP:
        return ROLE_TYPE_MAP[role]

    editable = attributes.get("contenteditable")
    if editable is not None and editable.lower() in ("", "true"):
        return ElementType.RICH_TEXT_EDITOR

    return ElementType.UNKNOWN


def is_type_compatible(
    element_type: ElementType,
    tag: str,
    role: str | None = None,
    input_type: str | None = None,
) -> bool:
    """
    Check whether a DOM node's tag/role fits an element type.

    Inputs are also checked against their ``type`` attribute so a submit
    input counts as a button and a checkbox input is not a text field.
    Text-like types accept each other (a text input may become an email
    input) but nothing else.
    """
    tag = (tag or "").lower()
    role = (role or "").lower()

    actual = None
    if tag == "input":
        actual = INPUT_TYPE_MAP.get((input_type or "text").lower(), ElementType.TEXT_INPUT)
        if actual == element_type:
            return True
        if element_type == ElementType.TOGGLE and actual == ElementType.CHECKBOX:
            return True

    if element_type.is_input:
        if actual is not None:
            return actual.is_input
        return role == "textbox"

    tags, roles = TYPE_COMPATIBILITY.get(element_type, (frozenset(), frozenset()))
    if tag == "input" and tag in tags:
        # Only reached when the input's own type did not match
        return False
    return tag in tags or (bool(role) and role in roles)
