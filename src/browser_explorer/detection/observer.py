"""
AI Observation Boundary.

The AI capability is an injected object satisfying ElementObserver. Whatever
it returns is validated here into strict Observation models; malformed
entries are dropped with a debug log instead of leaking untyped data into
the detector.
"""

import logging
from typing import Any, Iterable, Protocol, runtime_checkable

from playwright.async_api import Page
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

logger = logging.getLogger(__name__)


class Observation(BaseModel):
    """A selector hint plus natural-language description from the observer."""

    selector: str = Field(min_length=1, description="Selector locating the candidate")
    description: str = Field(default="", description="What the observer thinks the node is")

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True, frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _xpath_as_selector(cls, data: Any) -> Any:
        # Some observers only report an xpath
        if isinstance(data, dict) and not data.get("selector") and data.get("xpath"):
            xpath = str(data["xpath"])
            if not xpath.startswith("xpath="):
                xpath = f"xpath={xpath}"
            data = {**data, "selector": xpath}
        return data


@runtime_checkable
class ElementObserver(Protocol):
    """Natural-language element observation capability."""

    async def init(self, page: Page) -> None:
        """Bind to the page's session. May raise; callers treat that as AI-unavailable."""
        ...

    async def observe(self, instruction: str) -> list[Any]:
        """Return raw ``{selector, description}`` entries for an instruction."""
        ...

    async def close(self) -> None:
        ...


def parse_observations(raw: Any) -> list[Observation]:
    """
    Validate raw observer output.

    Args:
        raw: Whatever the observer returned (ideally a list of dicts)

    Returns:
        Valid Observation objects, in input order
    """
    if raw is None:
        return []
    if isinstance(raw, (dict, Observation)):
        raw = [raw]
    if not isinstance(raw, Iterable) or isinstance(raw, (str, bytes)):
        logger.debug(f"Observer returned non-list payload: {type(raw).__name__}")
        return []

    observations = []
    for entry in raw:
        if isinstance(entry, Observation):
            observations.append(entry)
            continue
        try:
            observations.append(Observation.model_validate(entry))
        except ValidationError as e:
            logger.debug(f"Rejected malformed observation {entry!r}: {e.error_count()} error(s)")
    return observations
