"""Unit tests for adaptation strategies and their scoring helpers."""

import pytest

from browser_explorer.config import DetectorConfig
from browser_explorer.detection.primary_detector import PrimaryDetector
from browser_explorer.detection.selectors import DomNode
from browser_explorer.detection.strategies import (
    AI_REACQUISITION,
    FUZZY_TEXT_MATCHING,
    STRUCTURAL_SIMILARITY,
    AIReacquisitionStrategy,
    FuzzyTextStrategy,
    StructuralSimilarityStrategy,
    build_reacquisition_instruction,
    default_strategies,
    fuzzy_text_score,
    structural_score,
    text_similarity,
)
from browser_explorer.models import BoundingBox, ElementMetadata, ElementType, InteractiveElement
from fakes import FakeNode, FakeObserver, FakePage


def original_button(**overrides) -> InteractiveElement:
    values = dict(
        type=ElementType.BUTTON,
        selector="#submit",
        attributes={"id": "submit", "class": "btn btn-primary", "type": "submit"},
        text="Submit",
        bounding_box=BoundingBox(10, 10, 100, 30),
    )
    values.update(overrides)
    return InteractiveElement(**values)


class TestFuzzyTextScore:
    """Tests for fuzzy text scoring tiers."""

    def test_exact_match_ignores_case_and_whitespace(self):
        assert fuzzy_text_score("  Submit ", "submit") == 1.0

    def test_containment_either_way(self):
        assert fuzzy_text_score("Submit", "Submit order") == 0.8
        assert fuzzy_text_score("Submit order", "Submit") == 0.8

    def test_word_change(self):
        score = fuzzy_text_score("Submit Form", "Submit the Form")
        assert 0.6 < score <= 1.0
        assert score == pytest.approx(2 / 3)

    def test_reordered_words_not_exact(self):
        assert fuzzy_text_score("Submit Form", "Form Submit") == pytest.approx(0.8)
        assert fuzzy_text_score("Submit Form", "Form Submit") < 1.0

    def test_position_aligned_characters(self):
        assert fuzzy_text_score("Submit", "Subnit") == pytest.approx(5 / 6)

    def test_unrelated_text(self):
        assert fuzzy_text_score("Submit", "Cancel") < 0.6

    def test_empty_text_never_matches(self):
        assert fuzzy_text_score("Submit", "") == 0.0
        assert fuzzy_text_score("", "Submit") == 0.0


class TestTextSimilarity:
    """Tests for word-set similarity."""

    def test_identical(self):
        assert text_similarity("Sign in", "sign in") == 1.0

    def test_partial_overlap(self):
        assert text_similarity("Sign in now", "Sign in") == pytest.approx(2 / 3)

    def test_missing_text(self):
        assert text_similarity(None, "x") == 0.0


class TestStructuralScore:
    """Tests for structural resemblance scoring."""

    def test_renamed_button(self):
        candidate = DomNode(
            tag="button",
            attributes={"id": "submit-v2", "class": "btn btn-primary", "type": "submit"},
            classes=["btn", "btn-primary"],
        )
        # 3 (tag) + 2 (class attr) + 2 (type attr) + 2 (shared classes)
        assert structural_score(original_button(), candidate) == 9

    def test_tag_only(self):
        candidate = DomNode(tag="button", attributes={"id": "other"})
        assert structural_score(original_button(attributes={"id": "submit"}), candidate) == 3

    def test_role_compatible(self):
        candidate = DomNode(tag="div", role="button", attributes={"role": "button"})
        assert structural_score(original_button(attributes={}), candidate) == 3

    def test_context_overlap(self):
        original = original_button(
            attributes={},
            metadata=ElementMetadata(context="Form: checkout, Section: Payment, Modal/Dialog"),
        )
        candidate = DomNode(tag="span", context="Form: checkout, Section: Payment")
        assert structural_score(original, candidate) == 2


class TestReacquisitionInstruction:
    """Tests for the AI re-acquisition instruction."""

    def test_includes_type_text_context_and_hint(self):
        element = original_button(metadata=ElementMetadata(context="Form: login"))
        instruction = build_reacquisition_instruction(element)

        assert instruction.startswith("Find a button element")
        assert 'with text similar to "Submit"' in instruction
        assert "in the context of Form: login" in instruction
        assert instruction.endswith("that users can click to trigger actions")

    def test_role_and_hyphenated_type(self):
        element = InteractiveElement(
            type=ElementType.TEXT_INPUT, selector="#q", attributes={"role": "searchbox"}
        )
        instruction = build_reacquisition_instruction(element)

        assert instruction.startswith("Find a text input element")
        assert 'with role "searchbox"' in instruction


class TestStructuralSimilarityStrategy:
    """Tests for the structural strategy on a live page."""

    @pytest.mark.asyncio
    async def test_finds_renamed_element(self, make_page):
        page = make_page(
            FakeNode("button", {"id": "cancel"}, text="Cancel"),
            FakeNode("button", {"id": "submit-v2", "class": "btn btn-primary", "type": "submit"}, text="Submit"),
        )

        match = await StructuralSimilarityStrategy().find(page, original_button())

        assert match.element.selector == "#submit-v2"
        assert match.score == 9
        assert match.element.type == ElementType.BUTTON

    @pytest.mark.asyncio
    async def test_score_of_three_is_rejected(self, make_page):
        page = make_page(FakeNode("button", {"id": "other"}, text="Other"))
        match = await StructuralSimilarityStrategy().find(page, original_button(attributes={"id": "submit"}))
        assert match is None

    @pytest.mark.asyncio
    async def test_hidden_candidates_ignored(self, make_page):
        page = make_page(
            FakeNode("button", {"id": "submit-v2", "class": "btn btn-primary"}, text="Submit", visible=False),
        )
        assert await StructuralSimilarityStrategy().find(page, original_button()) is None


class TestFuzzyTextStrategy:
    """Tests for the fuzzy text strategy on a live page."""

    @pytest.mark.asyncio
    async def test_requires_original_text(self, make_page):
        page = make_page(FakeNode("button", {"id": "x"}, text="Submit"))

        match = await FuzzyTextStrategy().find(page, original_button(text=None))

        assert match is None
        assert page.snapshot_calls == 0

    @pytest.mark.asyncio
    async def test_picks_best_candidate(self, make_page):
        page = make_page(
            FakeNode("a", {"href": "/help", "id": "help"}, text="Submit a ticket for help"),
            FakeNode("button", {"id": "send"}, text="Submit the Form"),
        )

        match = await FuzzyTextStrategy().find(page, original_button(text="Submit Form"))

        assert match.element.selector == "#send"
        assert 0.6 < match.score <= 1.0

    @pytest.mark.asyncio
    async def test_non_interactive_tags_ignored(self, make_page):
        page = make_page(FakeNode("div", {"id": "label"}, text="Submit"))
        assert await FuzzyTextStrategy().find(page, original_button()) is None

    @pytest.mark.asyncio
    async def test_role_button_is_candidate(self, make_page):
        page = make_page(FakeNode("div", {"id": "fake-btn", "role": "button"}, text="Submit"))

        match = await FuzzyTextStrategy().find(page, original_button())

        assert match.element.selector == "#fake-btn"
        assert match.score == 1.0

    @pytest.mark.asyncio
    async def test_threshold_is_strict(self, make_page):
        page = make_page(FakeNode("button", {"id": "b"}, text="Subxxx"))
        # "submit" vs "subxxx": 3/6 aligned characters
        assert await FuzzyTextStrategy().find(page, original_button()) is None


class TestAIReacquisitionStrategy:
    """Tests for observer-driven re-acquisition."""

    async def strategy_for(self, page: FakePage, observer: FakeObserver) -> AIReacquisitionStrategy:
        detector = PrimaryDetector(observer=observer)
        await detector.initialize(page)
        return AIReacquisitionStrategy(detector)

    @pytest.mark.asyncio
    async def test_skipped_without_ai(self, submit_page):
        strategy = AIReacquisitionStrategy(PrimaryDetector())
        assert await strategy.find(submit_page, original_button()) is None

    @pytest.mark.asyncio
    async def test_relocates_element(self, make_page):
        page = make_page(FakeNode("button", {"id": "submit-new"}, text="Submit"))
        observer = FakeObserver(responses={
            "Find a button element": [{"selector": "#submit-new", "description": "Submit button"}],
        })
        strategy = await self.strategy_for(page, observer)

        match = await strategy.find(page, original_button())

        assert match.element.selector == "#submit-new"
        assert match.element.metadata.ai_detected is True
        assert match.score == 1.0

    @pytest.mark.asyncio
    async def test_rejects_far_away_hit(self, make_page):
        page = make_page(FakeNode(
            "button", {"id": "submit-new"}, text="Submit",
            box={"x": 600, "y": 10, "width": 100, "height": 30},
        ))
        observer = FakeObserver(default=[{"selector": "#submit-new", "description": "Submit button"}])
        strategy = await self.strategy_for(page, observer)

        assert await strategy.find(page, original_button()) is None

    @pytest.mark.asyncio
    async def test_rejects_different_text(self, make_page):
        page = make_page(FakeNode("button", {"id": "delete"}, text="Delete account"))
        observer = FakeObserver(default=[{"selector": "#delete", "description": "Delete button"}])
        strategy = await self.strategy_for(page, observer)

        assert await strategy.find(page, original_button()) is None

    @pytest.mark.asyncio
    async def test_rejects_different_type(self, make_page):
        page = make_page(FakeNode("a", {"id": "submit-link", "href": "/submit"}, text="Submit"))
        observer = FakeObserver(default=[{"selector": "#submit-link", "description": "Link to submit page"}])
        strategy = await self.strategy_for(page, observer)

        assert await strategy.find(page, original_button()) is None


class TestDefaultStrategies:
    """Tests for the fixed strategy chain."""

    def test_order(self):
        strategies = default_strategies(PrimaryDetector(), DetectorConfig())
        assert [s.name for s in strategies] == [AI_REACQUISITION, STRUCTURAL_SIMILARITY, FUZZY_TEXT_MATCHING]
