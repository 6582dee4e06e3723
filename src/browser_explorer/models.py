"""
Element Detection Data Model.

Core data structures shared by the detector, the adaptive cache and the
adaptation engine:
- InteractiveElement: a DOM node a user can act on, plus its metadata
- ElementSnapshot: a cached, timestamped element with adaptation history
- AdaptationAttempt: append-only audit record of one re-location attempt
- DetectionResult / AdaptationStats: results returned to callers
"""

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any
import time
import uuid


def now_ms() -> float:
    """Current wall-clock time in epoch milliseconds."""
    return time.time() * 1000


class ElementType(str, Enum):
    """Closed taxonomy of interactive element kinds."""
    TEXT_INPUT = "text-input"
    PASSWORD_INPUT = "password-input"
    EMAIL_INPUT = "email-input"
    NUMBER_INPUT = "number-input"
    TEL_INPUT = "tel-input"
    TEXTAREA = "textarea"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    MULTI_SELECT = "multi-select"
    DATE_PICKER = "date-picker"
    TIME_PICKER = "time-picker"
    COLOR_PICKER = "color-picker"
    RANGE_SLIDER = "range-slider"
    FILE_UPLOAD = "file-upload"
    BUTTON = "button"
    LINK = "link"
    TOGGLE = "toggle"
    TAB = "tab"
    ACCORDION = "accordion"
    MODAL_TRIGGER = "modal-trigger"
    DROPDOWN_MENU = "dropdown-menu"
    CAROUSEL = "carousel"
    DRAG_DROP = "drag-drop"
    CANVAS = "canvas"
    VIDEO_PLAYER = "video-player"
    AUDIO_PLAYER = "audio-player"
    RICH_TEXT_EDITOR = "rich-text-editor"
    UNKNOWN = "unknown"

    @property
    def is_input(self) -> bool:
        """True for the single-line text-like input variants."""
        return self.value.endswith("-input")


@dataclass
class BoundingBox:
    """Element position and size in CSS pixels."""
    x: float
    y: float
    width: float
    height: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BoundingBox | None":
        if not data:
            return None
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", 0)),
            height=float(data.get("height", 0)),
        )


@dataclass
class ElementMetadata:
    """Descriptive and provenance data attached to an element."""
    label: str | None = None
    placeholder: str | None = None
    required: bool | None = None
    options: list[dict[str, str]] | None = None
    name: str | None = None
    context: str | None = None  # Ancestor trail, e.g. "Form: login, Navigation area"
    description: str | None = None  # Observer's natural-language description
    ai_detected: bool | None = None
    ai_confidence: float | None = None
    # Adaptation provenance
    adapted_from: str | None = None
    adaptation_strategy: str | None = None
    adaptation_score: float | None = None
    adaptation_timestamp: float | None = None

    def merged_with(self, other: "ElementMetadata") -> "ElementMetadata":
        """Return a copy where set fields of ``other`` override this one."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        for f in fields(other):
            value = getattr(other, f.name)
            if value is not None:
                values[f.name] = value
        return ElementMetadata(**values)

    def to_dict(self) -> dict[str, Any]:
        """Serialize set fields only."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ElementMetadata":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class InteractiveElement:
    """A DOM node a user can meaningfully act on."""
    type: ElementType
    selector: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: str | None = None
    xpath: str | None = None
    is_visible: bool = True
    is_enabled: bool = True
    bounding_box: BoundingBox | None = None
    parent_selector: str | None = None
    children: list["InteractiveElement"] = field(default_factory=list)
    metadata: ElementMetadata = field(default_factory=ElementMetadata)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def dedup_key(self) -> tuple[str, str, str, float, float]:
        """Identity used when merging detection paths."""
        box = self.bounding_box
        return (
            self.selector,
            self.type.value,
            self.text or "",
            box.x if box else 0,
            box.y if box else 0,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "selector": self.selector,
            "xpath": self.xpath,
            "text": self.text,
            "attributes": dict(self.attributes),
            "is_visible": self.is_visible,
            "is_enabled": self.is_enabled,
            "bounding_box": self.bounding_box.to_dict() if self.bounding_box else None,
            "parent_selector": self.parent_selector,
            "children": [child.to_dict() for child in self.children],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InteractiveElement":
        """Deserialize from dictionary."""
        return cls(
            id=data.get("id") or str(uuid.uuid4()),
            type=ElementType(data.get("type", ElementType.UNKNOWN.value)),
            selector=data["selector"],
            xpath=data.get("xpath"),
            text=data.get("text"),
            attributes=dict(data.get("attributes", {})),
            is_visible=data.get("is_visible", True),
            is_enabled=data.get("is_enabled", True),
            bounding_box=BoundingBox.from_dict(data.get("bounding_box")),
            parent_selector=data.get("parent_selector"),
            children=[cls.from_dict(c) for c in data.get("children", [])],
            metadata=ElementMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class ElementClassification:
    """Outcome of an AI reclassification request."""
    element: InteractiveElement
    confidence: float
    suggested_type: ElementType
    reasoning: str


@dataclass
class DetectionError:
    """A per-element problem reported alongside a detection result."""
    selector: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"selector": self.selector, "error": self.error}


@dataclass
class DetectionResult:
    """Result of one detection pass over a page."""
    elements: list[InteractiveElement] = field(default_factory=list)
    total_found: int = 0
    detection_time: float = 0.0  # milliseconds
    errors: list[DetectionError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "elements": [e.to_dict() for e in self.elements],
            "total_found": self.total_found,
            "detection_time": self.detection_time,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class AdaptationAttempt:
    """Audit record of one attempt to re-locate an element."""
    timestamp: float
    original_selector: str
    new_selector: str
    strategy: str
    success: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "original_selector": self.original_selector,
            "new_selector": self.new_selector,
            "strategy": self.strategy,
            "success": self.success,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdaptationAttempt":
        return cls(
            timestamp=data["timestamp"],
            original_selector=data["original_selector"],
            new_selector=data.get("new_selector", ""),
            strategy=data["strategy"],
            success=data["success"],
            error=data.get("error"),
        )


@dataclass
class ElementSnapshot:
    """A cached element together with where and when it was seen."""
    element: InteractiveElement
    timestamp: float
    page_url: str
    adaptation_history: list[AdaptationAttempt] = field(default_factory=list)

    def age_ms(self, now: float | None = None) -> float:
        return (now if now is not None else now_ms()) - self.timestamp

    def is_expired(self, ttl_ms: float, now: float | None = None) -> bool:
        """Check if this snapshot has outlived its TTL."""
        return self.age_ms(now) >= ttl_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "element": self.element.to_dict(),
            "timestamp": self.timestamp,
            "page_url": self.page_url,
            "adaptation_history": [a.to_dict() for a in self.adaptation_history],
        }


@dataclass
class AdaptationStats:
    """Aggregate view over every recorded adaptation attempt."""
    total_attempts: int = 0
    successful_adaptations: int = 0
    failed_adaptations: int = 0
    strategies_used: dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_attempts == 0:
            return 0.0
        return self.successful_adaptations / self.total_attempts

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_attempts": self.total_attempts,
            "successful_adaptations": self.successful_adaptations,
            "failed_adaptations": self.failed_adaptations,
            "strategies_used": dict(self.strategies_used),
        }
