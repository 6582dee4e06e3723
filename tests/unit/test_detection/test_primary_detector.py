"""Unit tests for PrimaryDetector.

Covers the AI query fan-out, the deterministic DOM sweep, merging,
classification and page-level failure handling.
"""

import pytest

from browser_explorer.config import DetectorConfig
from browser_explorer.detection.observer import Observation
from browser_explorer.detection.primary_detector import (
    DETECTION_QUERIES,
    FALLBACK_QUERY,
    PrimaryDetector,
)
from browser_explorer.exceptions import PageUnavailableError
from browser_explorer.models import ElementType, InteractiveElement
from fakes import FakeNode, FakeObserver, FakePage


def login_page() -> FakePage:
    return FakePage([
        FakeNode("h1", text="Sign in"),
        FakeNode("input", {"id": "email", "type": "email", "name": "email", "required": ""},
                 context="Form: login", label="Email"),
        FakeNode("input", {"id": "password", "type": "password"}, context="Form: login"),
        FakeNode("button", {"id": "submit", "type": "submit"}, text="Sign in", context="Form: login"),
        FakeNode("a", {"href": "/forgot", "class": "link-muted"}, text="Forgot password?"),
    ])


async def ready_detector(page, observer=None, **config) -> PrimaryDetector:
    detector = PrimaryDetector(observer=observer, config=DetectorConfig(**config))
    await detector.initialize(page)
    return detector


class TestInitialization:
    """Tests for AI availability handling."""

    @pytest.mark.asyncio
    async def test_without_observer(self, submit_page):
        detector = await ready_detector(submit_page)
        assert detector.ai_available is False

    @pytest.mark.asyncio
    async def test_with_observer(self, submit_page):
        observer = FakeObserver()
        detector = await ready_detector(submit_page, observer)
        assert detector.ai_available is True
        assert observer.initialized

    @pytest.mark.asyncio
    async def test_init_failure_is_not_fatal(self, submit_page):
        observer = FakeObserver(fail_init=True)
        detector = await ready_detector(submit_page, observer)

        result = await detector.detect_interactive_elements(submit_page)

        assert detector.ai_available is False
        assert observer.instructions == []
        assert [e.selector for e in result.elements] == ["#submit"]

    @pytest.mark.asyncio
    async def test_init_failure_lasts_for_lifetime(self, submit_page):
        observer = FakeObserver(fail_init=True)
        detector = await ready_detector(submit_page, observer)
        observer.fail_init = False

        await detector.initialize(submit_page)

        assert detector.ai_available is False

    @pytest.mark.asyncio
    async def test_enable_ai_false_skips_observer(self, submit_page):
        observer = FakeObserver()
        detector = await ready_detector(submit_page, observer, enable_ai=False)
        assert detector.ai_available is False
        assert not observer.initialized


class TestDeterministicSweep:
    """Tests for detection without AI."""

    @pytest.mark.asyncio
    async def test_single_button(self, submit_page):
        """A page with one id'd button yields exactly that button."""
        detector = await ready_detector(submit_page)

        result = await detector.detect_interactive_elements(submit_page)

        assert result.total_found == 1
        element = result.elements[0]
        assert element.type == ElementType.BUTTON
        assert element.selector == "#submit"
        assert element.text == "Submit"
        assert result.errors == []
        assert result.detection_time >= 0

    @pytest.mark.asyncio
    async def test_page_without_interactive_elements(self, make_page):
        page = make_page(FakeNode("div", text="Hello"), FakeNode("p", text="World"))
        detector = await ready_detector(page)

        result = await detector.detect_interactive_elements(page)

        assert result.elements == []
        assert result.total_found == 0
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_login_form(self):
        page = login_page()
        detector = await ready_detector(page)

        result = await detector.detect_interactive_elements(page)

        by_selector = {e.selector: e for e in result.elements}
        assert set(by_selector) == {"#email", "#password", "#submit", "a.link-muted"}
        assert by_selector["#email"].type == ElementType.EMAIL_INPUT
        assert by_selector["#email"].metadata.required is True
        assert by_selector["#email"].metadata.label == "Email"
        assert by_selector["#email"].metadata.context == "Form: login"
        assert by_selector["#password"].type == ElementType.PASSWORD_INPUT
        assert by_selector["a.link-muted"].type == ElementType.LINK

    @pytest.mark.asyncio
    async def test_hidden_nodes_skipped(self, make_page):
        page = make_page(
            FakeNode("button", {"id": "shown"}, text="Shown"),
            FakeNode("button", {"id": "hidden"}, text="Hidden", visible=False),
        )
        detector = await ready_detector(page)

        result = await detector.detect_interactive_elements(page)

        assert [e.selector for e in result.elements] == ["#shown"]

    @pytest.mark.asyncio
    async def test_structural_path_for_anonymous_nodes(self, make_page):
        page = make_page(
            FakeNode("p", text="intro"),
            FakeNode("div", {"onclick": "open()"}, text="Open"),
        )
        detector = await ready_detector(page)

        result = await detector.detect_interactive_elements(page)

        assert [e.selector for e in result.elements] == ["body > div:nth-child(2)"]

    @pytest.mark.asyncio
    async def test_selector_search_only_for_anonymous_interactive_nodes(self):
        page = login_page()
        detector = await ready_detector(page)

        await detector.detect_interactive_elements(page)

        # The heading is not interactive and the inputs have unique ids
        assert page.snapshot_calls == 1
        assert page.selector_calls == 1
        assert page.searched_indices == [4]

    @pytest.mark.asyncio
    async def test_no_selector_search_when_ids_suffice(self, make_page):
        page = make_page(
            FakeNode("div", {"class": "card"}, text="Card"),
            FakeNode("button", {"id": "save"}, text="Save"),
            FakeNode("input", {"data-testid": "query"}),
        )
        detector = await ready_detector(page)

        result = await detector.detect_interactive_elements(page)

        assert {e.selector for e in result.elements} == {"#save", '[data-testid="query"]'}
        assert page.selector_calls == 0

    @pytest.mark.asyncio
    async def test_rerun_yields_same_selectors(self):
        page = login_page()
        detector = await ready_detector(page)

        first = await detector.detect_interactive_elements(page)
        second = await detector.detect_interactive_elements(page)

        assert {e.selector for e in first.elements} == {e.selector for e in second.elements}

    @pytest.mark.asyncio
    async def test_selector_fallback_can_be_disabled(self, submit_page):
        detector = await ready_detector(submit_page, enable_selector_fallback=False)
        result = await detector.detect_interactive_elements(submit_page)
        assert result.elements == []


class TestAIPath:
    """Tests for observer-driven detection."""

    @pytest.mark.asyncio
    async def test_issues_all_queries(self, submit_page):
        observer = FakeObserver()
        detector = await ready_detector(submit_page, observer)

        await detector.detect_interactive_elements(submit_page)

        assert len(DETECTION_QUERIES) == 8
        for query in DETECTION_QUERIES:
            assert query in observer.instructions

    @pytest.mark.asyncio
    async def test_observations_become_elements(self):
        page = login_page()
        observer = FakeObserver(responses={
            "form inputs": [
                {"selector": "#email", "description": "Email input field"},
                {"selector": "#password", "description": "Password input"},
            ],
            "submitting forms": [{"selector": "#submit", "description": "Sign in button"}],
        })
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        by_selector = {e.selector: e for e in result.elements}
        assert set(by_selector) == {"#email", "#password", "#submit"}
        assert by_selector["#submit"].metadata.ai_detected is True
        assert by_selector["#submit"].metadata.description == "Sign in button"
        # Enough AI results: no targeted re-query, no sweep
        assert FALLBACK_QUERY not in observer.instructions
        assert page.snapshot_calls == 0

    @pytest.mark.asyncio
    async def test_unknown_description_falls_back_to_tag(self, submit_page):
        observer = FakeObserver(default=[{"selector": "#submit", "description": "Primary action"}])
        detector = await ready_detector(submit_page, observer)

        result = await detector.detect_interactive_elements(submit_page)

        assert result.elements[0].type == ElementType.BUTTON

    @pytest.mark.asyncio
    async def test_duplicate_observations_collapse(self, submit_page):
        observer = FakeObserver(default=[{"selector": "#submit", "description": "Submit button"}])
        detector = await ready_detector(submit_page, observer)

        result = await detector.detect_interactive_elements(submit_page)

        assert result.total_found == 1

    @pytest.mark.asyncio
    async def test_ai_entry_wins_over_sweep(self, submit_page):
        observer = FakeObserver(default=[{"selector": "#submit", "description": "Submit button"}])
        detector = await ready_detector(submit_page, observer)

        result = await detector.detect_interactive_elements(submit_page)

        assert result.elements[0].metadata.ai_detected is True

    @pytest.mark.asyncio
    async def test_few_results_trigger_requery_then_sweep(self):
        page = login_page()
        observer = FakeObserver(responses={
            "submitting forms": [{"selector": "#submit", "description": "Sign in button"}],
        })
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        assert FALLBACK_QUERY in observer.instructions
        assert page.snapshot_calls == 1
        assert page.selector_calls == 1
        assert len(result.elements) == 4

    @pytest.mark.asyncio
    async def test_requery_can_satisfy_threshold(self):
        page = login_page()
        observer = FakeObserver(responses={
            "custom controls": [
                {"selector": "#email", "description": "Email input"},
                {"selector": "#password", "description": "Password input"},
                {"selector": "#submit", "description": "Sign in button"},
            ],
        })
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        assert page.snapshot_calls == 0
        assert result.total_found == 3

    @pytest.mark.asyncio
    async def test_every_query_failing_still_completes(self, submit_page):
        observer = FakeObserver(fail_all=True)
        detector = await ready_detector(submit_page, observer)

        result = await detector.detect_interactive_elements(submit_page)

        assert [e.selector for e in result.elements] == ["#submit"]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_one_failing_query_does_not_abort_batch(self):
        page = login_page()
        observer = FakeObserver(responses={
            "navigation": RuntimeError("rate limited"),
            "form inputs": [
                {"selector": "#email", "description": "Email input"},
                {"selector": "#password", "description": "Password input"},
                {"selector": "#submit", "description": "Sign in button"},
            ],
        })
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        assert result.total_found == 3

    @pytest.mark.asyncio
    async def test_unresolved_and_invalid_selectors_dropped_silently(self, submit_page):
        observer = FakeObserver(default=[
            {"selector": "#does-not-exist", "description": "Ghost button"},
            {"selector": "div >>> nonsense", "description": "Broken selector"},
            {"selector": "#submit", "description": "Submit button"},
        ])
        detector = await ready_detector(submit_page, observer)

        result = await detector.detect_interactive_elements(submit_page)

        assert [e.selector for e in result.elements] == ["#submit"]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_ambiguous_selector_dropped(self, make_page):
        page = make_page(
            FakeNode("button", {"class": "item"}, text="One"),
            FakeNode("button", {"class": "item"}, text="Two"),
        )
        observer = FakeObserver(default=[{"selector": "button.item", "description": "Item button"}])
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        assert "button.item" not in [e.selector for e in result.elements]

    @pytest.mark.asyncio
    async def test_failed_attribute_evaluation_reported(self, make_page):
        page = make_page(
            FakeNode("button", {"id": "broken"}, text="Broken", fail_describe=True),
            FakeNode("button", {"id": "ok"}, text="OK"),
        )
        observer = FakeObserver(default=[{"selector": "#broken", "description": "Broken button"}])
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        assert "#broken" not in [e.selector for e in result.elements]
        assert any(error.selector == "#broken" for error in result.errors)

    @pytest.mark.asyncio
    async def test_max_elements_caps_ai_path(self, make_page):
        page = make_page(*[FakeNode("button", {"id": f"b{i}"}, text=f"B{i}") for i in range(6)])
        observer = FakeObserver(default=[
            {"selector": f"#b{i}", "description": "Action button"} for i in range(6)
        ])
        detector = await ready_detector(page, observer, max_elements=4)

        result = await detector.detect_interactive_elements(page)

        assert result.total_found == 4


class TestClassification:
    """Tests for reclassifying unknown elements."""

    def widget_page(self) -> FakePage:
        return FakePage([FakeNode("div", {"id": "widget", "onclick": "toggle()"}, text="Dark mode")])

    @pytest.mark.asyncio
    async def test_confident_answer_overwrites_type(self):
        page = self.widget_page()
        observer = FakeObserver(
            responses={"Analyze the element": [{"selector": "#widget", "description": "A toggle switch"}]},
            default=[{"selector": "#widget", "description": "Custom widget"}],
        )
        detector = await ready_detector(page, observer)

        result = await detector.detect_interactive_elements(page)

        assert result.elements[0].type == ElementType.TOGGLE
        assert result.elements[0].metadata.ai_confidence == 0.9

    @pytest.mark.asyncio
    async def test_confidence_must_strictly_exceed_threshold(self):
        page = self.widget_page()
        observer = FakeObserver(
            responses={"Analyze the element": [{"selector": "#widget", "description": "A toggle switch"}]},
            default=[{"selector": "#widget", "description": "Custom widget"}],
        )
        detector = await ready_detector(page, observer, ai_classification_confidence=0.7)

        result = await detector.detect_interactive_elements(page)

        assert result.elements[0].type == ElementType.UNKNOWN

    @pytest.mark.asyncio
    async def test_instruction_mentions_selector_and_context(self):
        observer = FakeObserver()
        page = self.widget_page()
        detector = await ready_detector(page, observer)
        element = InteractiveElement(type=ElementType.UNKNOWN, selector="#widget")
        element.metadata.context = "Navigation area"

        classification = await detector.classify_element(element)

        assert '"#widget"' in observer.instructions[-1]
        assert "Navigation area" in observer.instructions[-1]
        assert classification.confidence == 0.5
        assert classification.suggested_type == ElementType.UNKNOWN

    @pytest.mark.asyncio
    async def test_classification_error_is_low_confidence(self):
        page = self.widget_page()
        observer = FakeObserver(responses={"Analyze the element": RuntimeError("boom")})
        detector = await ready_detector(page, observer)

        classification = await detector.classify_element(
            InteractiveElement(type=ElementType.UNKNOWN, selector="#widget")
        )

        assert classification.confidence == 0.5
        assert classification.reasoning == "AI classification error"

    @pytest.mark.asyncio
    async def test_no_classification_without_ai(self):
        page = self.widget_page()
        detector = await ready_detector(page)

        result = await detector.detect_interactive_elements(page)

        assert result.elements[0].type == ElementType.UNKNOWN


class TestPageFailures:
    """Tests for detection-fatal page errors."""

    @pytest.mark.asyncio
    async def test_closed_page_raises(self, submit_page):
        detector = await ready_detector(submit_page)
        submit_page.closed = True

        with pytest.raises(PageUnavailableError) as exc_info:
            await detector.detect_interactive_elements(submit_page)

        assert exc_info.value.url is not None

    @pytest.mark.asyncio
    async def test_closed_page_during_ai_resolution(self, submit_page):
        observer = FakeObserver(default=[{"selector": "#submit", "description": "Submit button"}])
        detector = await ready_detector(submit_page, observer)
        submit_page.closed = True

        with pytest.raises(PageUnavailableError):
            await detector.detect_interactive_elements(submit_page)


class TestObserveAndCleanup:
    """Tests for the reusable observer helpers."""

    @pytest.mark.asyncio
    async def test_observe_validates_payload(self, submit_page):
        observer = FakeObserver(default=[{"selector": "#submit"}, {"bad": True}])
        detector = await ready_detector(submit_page, observer)

        observations = await detector.observe("anything")

        assert observations == [Observation(selector="#submit")]

    @pytest.mark.asyncio
    async def test_observe_without_ai(self, submit_page):
        detector = await ready_detector(submit_page)
        assert await detector.observe("anything") == []

    @pytest.mark.asyncio
    async def test_element_from_observation(self, submit_page):
        detector = await ready_detector(submit_page, FakeObserver())

        element = await detector.element_from_observation(
            submit_page, Observation(selector="#submit", description="Submit button")
        )

        assert element.type == ElementType.BUTTON
        assert element.bounding_box is not None
        assert element.xpath == "/html[1]/body[1]/button[1]"

    @pytest.mark.asyncio
    async def test_cleanup_is_idempotent(self, submit_page):
        observer = FakeObserver()
        detector = await ready_detector(submit_page, observer)

        await detector.cleanup()
        await detector.cleanup()

        assert observer.close_calls == 1
        assert detector.ai_available is False
