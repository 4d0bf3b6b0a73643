"""
Pytest configuration and fixtures for budgeting and chunking tests.

Provides isolated registries, counters and calculators, and keeps tiktoken
from downloading encodings during tests.
"""

import logging
from typing import List
from unittest.mock import patch

import pytest

from token_budget.budget.calculator import BudgetCalculator
from token_budget.budget.counter import TokenCounter, build_default_tokenizers
from token_budget.budget.registry import ModelLimitsRegistry
from token_budget.chunking.processor import BaseChunkSender
from token_budget.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class FakeEncoding:
    """Stand-in for tiktoken.Encoding: one token per whitespace-separated word."""

    def __init__(self, name: str):
        self.name = name

    def encode(self, text: str, **kwargs) -> List[int]:
        return list(range(len(text.split())))


class RecordingSender(BaseChunkSender):
    """Chunk sender that records calls and returns scripted responses."""

    def __init__(self, responses=None, transform=None):
        self.responses = list(responses or [])
        self.transform = transform
        self.calls = []

    async def send(self, chunk: str, max_tokens: int) -> str:
        self.calls.append((chunk, max_tokens))
        if self.transform is not None:
            return self.transform(chunk)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture(autouse=True)
def fake_tiktoken():
    """Replace tiktoken encoding loading with an in-memory encoder."""
    with patch(
        "token_budget.budget.counter.tiktoken.get_encoding",
        side_effect=FakeEncoding,
    ) as mock_get_encoding:
        yield mock_get_encoding


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Drop cached settings and shared objects between tests."""
    from token_budget.core import dependencies

    get_settings.cache_clear()
    dependencies.get_registry.cache_clear()
    dependencies.get_token_counter.cache_clear()
    dependencies.get_budget_calculator.cache_clear()
    yield
    get_settings.cache_clear()
    dependencies.get_registry.cache_clear()
    dependencies.get_token_counter.cache_clear()
    dependencies.get_budget_calculator.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def registry() -> ModelLimitsRegistry:
    return ModelLimitsRegistry()


@pytest.fixture
def counter() -> TokenCounter:
    return TokenCounter(build_default_tokenizers(["o200k_base", "cl100k_base"]))


@pytest.fixture
def calculator(registry, counter, settings) -> BudgetCalculator:
    return BudgetCalculator(registry, counter, settings)


@pytest.fixture
def recording_sender():
    """Factory for RecordingSender instances."""
    return RecordingSender


@pytest.fixture
def fake_encoding_cls():
    """The FakeEncoding class, for tests that script encoder behaviour."""
    return FakeEncoding
