"""
Composition root for shared budgeting objects
"""
import logging
from functools import lru_cache

from token_budget.budget.calculator import BudgetCalculator
from token_budget.budget.counter import TokenCounter, build_default_tokenizers
from token_budget.budget.registry import ModelLimitsRegistry
from token_budget.core.config import get_settings

logger = logging.getLogger(__name__)


def build_registry() -> ModelLimitsRegistry:
    """
    Build a registry from the base table plus the configured overrides file.

    Raises:
        ValueError: If the overrides file is malformed
    """
    settings = get_settings()
    registry = ModelLimitsRegistry()
    if settings.model_overrides_file:
        registry.load_overrides(settings.model_overrides_file)
    return registry


@lru_cache()
def get_registry() -> ModelLimitsRegistry:
    """Get the process-wide model limits registry"""
    return build_registry()


@lru_cache()
def get_token_counter() -> TokenCounter:
    """Get the process-wide token counter"""
    settings = get_settings()
    return TokenCounter(build_default_tokenizers(settings.openai_encodings))


@lru_cache()
def get_budget_calculator() -> BudgetCalculator:
    """Get a calculator wired to the shared registry and counter"""
    calculator = BudgetCalculator(get_registry(), get_token_counter(), get_settings())
    logger.info("Budget calculator configured")
    return calculator
