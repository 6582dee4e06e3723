"""Shared fixtures."""

from typing import Callable

import pytest

from fakes import FakeNode, FakePage


@pytest.fixture
def make_page() -> Callable[..., FakePage]:
    def _make(*nodes: FakeNode, url: str = "https://example.com/form") -> FakePage:
        return FakePage(list(nodes), url=url)
    return _make


@pytest.fixture
def submit_page() -> FakePage:
    """A page holding a single <button id="submit">Submit</button>."""
    return FakePage([
        FakeNode("button", {"id": "submit", "class": "btn btn-primary", "type": "submit"}, text="Submit"),
    ])
