"""LLM-backed element observer."""

from typing import Any, Optional
import asyncio
import json
import logging
import re

from playwright.async_api import Page

from browser_explorer.config import settings
from browser_explorer.detection.dom import complete_selectors, snapshot_dom
from browser_explorer.detection.selectors import DomNode, interactivity_score, synthesize_selector
from browser_explorer.exceptions import ObservationParseError, ObserverUnavailableError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at analyzing web page structure and identifying "
    "interactive UI elements for automated testing."
)

# Errors that retrying will not fix
NON_RETRYABLE_ERRORS = [
    'invalid api key',
    'authentication',
    'unauthorized',
    'invalid_api_key',
    'model not found',
    'invalid model',
]

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class LLMElementObserver:
    """Answers natural-language element queries with a chat model.

    The page is outlined once per query (a snapshot plus one selector search
    for listed nodes without a stable id), the outline and instruction are
    sent to the model, and the model picks candidates by selector.
    Satisfies the ElementObserver protocol.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        max_tokens: int = 2048,
        max_candidates: int = 150,
        snapshot_limit: int = 5000,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        backoff_factor: float = 2.0,
    ):
        """Initialize the observer.

        Args:
            api_key: API key for the LLM provider (default: LLM_API_KEY)
            model: Model name to use (default: LLM_MODEL)
            provider: LLM provider, openai or anthropic (default: LLM_PROVIDER)
            max_tokens: Maximum tokens for the model answer
            max_candidates: Maximum page nodes listed in the outline
            snapshot_limit: Maximum nodes read from the DOM per query
            max_retries: Retries for transient API failures
            retry_delay: Initial delay between retries in seconds
            backoff_factor: Multiplier for delay after each retry
        """
        self.api_key = api_key or settings.LLM_API_KEY
        self.model = model or settings.LLM_MODEL
        self.provider = (provider or settings.LLM_PROVIDER).lower()
        self.max_tokens = max_tokens
        self.max_candidates = max_candidates
        self.snapshot_limit = snapshot_limit
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self._client: Any = None
        self._page: Optional[Page] = None

    async def init(self, page: Page) -> None:
        """Create the API client and bind to the page.

        Raises:
            ObserverUnavailableError: if no API key is set, the provider is
                unsupported or its SDK is not installed
        """
        if not self.api_key:
            raise ObserverUnavailableError(
                "API key must be provided or set in LLM_API_KEY environment variable",
                provider=self.provider,
            )

        if self.provider == "openai":
            try:
                import openai
            except ImportError:
                raise ObserverUnavailableError(
                    "openai package not installed. Install with: pip install 'browser-explorer[openai]'",
                    provider=self.provider,
                )
            self._client = openai.AsyncOpenAI(api_key=self.api_key)
        elif self.provider == "anthropic":
            try:
                import anthropic
            except ImportError:
                raise ObserverUnavailableError(
                    "anthropic package not installed. Install with: pip install 'browser-explorer[anthropic]'",
                    provider=self.provider,
                )
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        else:
            raise ObserverUnavailableError(f"Unsupported provider: {self.provider}", provider=self.provider)

        self._page = page
        logger.info(f"LLM observer ready ({self.provider}/{self.model})")

    async def observe(self, instruction: str) -> list[dict[str, str]]:
        """Answer one instruction with ``{selector, description}`` entries.

        Raises:
            ObserverUnavailableError: if init() has not succeeded
            ObservationParseError: if the model answer is not a JSON list
        """
        if self._client is None or self._page is None:
            raise ObserverUnavailableError("Observer not initialized", provider=self.provider)

        nodes = await snapshot_dom(self._page, self.snapshot_limit)
        candidates = [n for n in nodes if n.visible and interactivity_score(n) > 0][:self.max_candidates]
        await complete_selectors(self._page, candidates)
        outline = self._build_outline(candidates)
        if not outline:
            return []

        prompt = self._build_prompt(instruction, outline)
        response = await self._call_llm(prompt)
        return self._parse_response(response)

    def _build_outline(self, nodes: list[DomNode]) -> list[str]:
        """One line per visible node worth mentioning to the model."""
        lines = []
        seen = set()
        for node in nodes:
            if len(lines) >= self.max_candidates:
                break
            if not node.visible or interactivity_score(node) == 0:
                continue
            selector = synthesize_selector(node)
            if not selector or selector in seen:
                continue
            seen.add(selector)

            details = [selector, f"<{node.tag}>"]
            if node.role:
                details.append(f"role={node.role}")
            for attr in ('type', 'name', 'aria-label', 'placeholder', 'title'):
                if node.attributes.get(attr):
                    details.append(f'{attr}="{node.attributes[attr]}"')
            if node.text:
                details.append(f'text="{node.text[:80]}"')
            if node.context:
                details.append(f"context: {node.context}")
            lines.append(" | ".join(details))
        return lines

    def _build_prompt(self, instruction: str, outline: list[str]) -> str:
        page_lines = "\n".join(outline)
        return f"""Instruction: {instruction}

Candidate elements on the page, one per line (selector | tag | details):
{page_lines}

Reply with ONLY a JSON array. Each item must be an object with:
- "selector": copied exactly from the list above
- "description": a short phrase saying what the element is, naming its kind
  (for example "Submit button", "Email input field", "Navigation link to Pricing")

Include only elements matching the instruction. Reply with [] if none match."""

    async def _call_llm(self, prompt: str) -> str:
        """Call the LLM with the given prompt, with retry logic.

        Implements exponential backoff for transient failures (connection
        errors, rate limits, timeouts). Non-retryable errors (auth, invalid
        model) are raised immediately.
        """
        last_exception: Optional[Exception] = None
        current_delay = self.retry_delay

        for attempt in range(self.max_retries + 1):
            try:
                if self.provider == "openai":
                    return await self._call_openai(prompt)
                return await self._call_anthropic(prompt)

            except Exception as e:
                error_str = str(e).lower()
                last_exception = e

                if any(err in error_str for err in NON_RETRYABLE_ERRORS):
                    logger.error(f"Non-retryable LLM error: {e}")
                    raise

                if attempt < self.max_retries:
                    logger.warning(
                        f"LLM call failed (attempt {attempt + 1}/{self.max_retries + 1}): {e}. "
                        f"Retrying in {current_delay:.1f}s..."
                    )
                    await asyncio.sleep(current_delay)
                    current_delay *= self.backoff_factor
                else:
                    logger.error(f"LLM call failed after {self.max_retries + 1} attempts: {e}")

        raise last_exception

    async def _call_openai(self, prompt: str) -> str:
        response = await self._client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.0,
            max_tokens=self.max_tokens,
        )
        return response.choices[0].message.content or ""

    async def _call_anthropic(self, prompt: str) -> str:
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(getattr(block, "text", "") for block in response.content)

    def _parse_response(self, response: str) -> list[dict[str, str]]:
        """Parse the model answer into raw observation dicts.

        Raises:
            ObservationParseError: if the answer is not a JSON array
        """
        text = _CODE_FENCE.sub("", (response or "").strip()).strip()
        if not text:
            return []

        # Tolerate prose around the array
        start, end = text.find("["), text.rfind("]")
        if start != -1 and end > start:
            text = text[start:end + 1]

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ObservationParseError(f"Model answer is not valid JSON: {e}", raw_response=response[:1000])

        if not isinstance(data, list):
            raise ObservationParseError("Model answer is not a JSON array", raw_response=response[:1000])

        return [item for item in data if isinstance(item, dict)]

    async def close(self) -> None:
        """Close the API client. Safe to call more than once."""
        client, self._client = self._client, None
        self._page = None
        if client is not None:
            await client.close()
