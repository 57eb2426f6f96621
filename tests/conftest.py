"""Pytest fixtures for trip assistant tests."""

import asyncio
import os
from typing import List, Optional

import pytest

# Set test environment
os.environ["TESTING"] = "true"
os.environ["OTEL_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "console"

from trip_assistant.models.catalog import TravelProduct
from trip_assistant.services.catalog import CatalogService
from trip_assistant.services.config import Settings, PACKAGE_DIR
from trip_assistant.services.llm import ClassificationResult
from trip_assistant.services.session import ConversationSession


class FakeLLM:
    """Scripted classifier and completion gateway."""

    def __init__(
        self,
        classification: ClassificationResult = ClassificationResult.ACCEPTED,
        fragments: Optional[List[str]] = None,
        classify_error: Optional[Exception] = None,
        stream_error: Optional[Exception] = None,
        error_after: Optional[int] = None,
    ):
        self.classification = classification
        self.fragments = fragments if fragments is not None else []
        self.classify_error = classify_error
        self.stream_error = stream_error
        self.error_after = error_after
        self.classified: List[str] = []
        self.prompts: List[str] = []
        self.streams_closed = 0
        self.fragment_gate: Optional[asyncio.Event] = None

    async def classify(self, query: str) -> ClassificationResult:
        self.classified.append(query)
        if self.classify_error is not None:
            raise self.classify_error
        return self.classification

    async def stream_complete(self, prompt: str):
        self.prompts.append(prompt)
        try:
            for index, fragment in enumerate(self.fragments):
                if self.stream_error is not None and self.error_after == index:
                    raise self.stream_error
                if self.fragment_gate is not None and index > 0:
                    await self.fragment_gate.wait()
                yield fragment
                await asyncio.sleep(0)
            if self.stream_error is not None and self.error_after is None:
                raise self.stream_error
        finally:
            self.streams_closed += 1


@pytest.fixture
def settings():
    """Settings with a fake key and no mock latency."""
    return Settings(
        LLM_API_KEY="test-key",
        LLM_API_BASE="https://llm.test/v4/chat/completions",
        MOCK_STREAM_DELAY=0,
        MOCK_STREAM_INITIAL_DELAY=0,
        OTEL_ENABLED=False,
        LOG_FORMAT="console",
    )


@pytest.fixture
def catalog():
    """Catalog loaded from the bundled data file."""
    return CatalogService.from_file(PACKAGE_DIR / "data" / "tourism_data.json")


@pytest.fixture
def small_catalog():
    """Two-product catalog for rendering tests."""
    return CatalogService([
        TravelProduct(id="ABC-1", name="Tower ticket", description="Observation deck", price=2000, tags=["TOWER_BUILDING"]),
        TravelProduct(id="XYZ_2", name="River cruise", description="Night cruise", price=3000, tags=["CRUISES"]),
    ])


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def make_session(settings, small_catalog):
    """Build a session around a FakeLLM."""
    def _make(llm: FakeLLM, **overrides) -> ConversationSession:
        session_settings = settings.model_copy(update=overrides) if overrides else settings
        return ConversationSession(llm, small_catalog, session_settings, session_id="session-test")
    return _make


async def collect(session: ConversationSession, text: str):
    """Drain one turn."""
    return [event async for event in session.submit(text)]
