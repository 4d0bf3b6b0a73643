"""
Model limits, token counting and request budgeting.

- registry: per-(provider, model) limits and effective limits
- counter: exact (tiktoken) or estimated token counts
- calculator: max_tokens caps, chunk capacity and limit diagnostics
"""

from token_budget.budget.calculator import BudgetCalculator
from token_budget.budget.counter import (
    BaseTokenizer,
    HeuristicTokenizer,
    TiktokenTokenizer,
    TokenCounter,
    count_tokens,
    estimate_tokens,
)
from token_budget.budget.registry import (
    BASE_MODELS,
    LEGACY_MAX_TOKENS,
    ModelLimitsRegistry,
    compute_effective_limits,
)

__all__ = [
    # Registry
    "BASE_MODELS",
    "LEGACY_MAX_TOKENS",
    "ModelLimitsRegistry",
    "compute_effective_limits",
    # Counting
    "BaseTokenizer",
    "HeuristicTokenizer",
    "TiktokenTokenizer",
    "TokenCounter",
    "count_tokens",
    "estimate_tokens",
    # Budgeting
    "BudgetCalculator",
]
