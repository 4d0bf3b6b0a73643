"""
Token budgeting and heading-aligned chunking for LLM document pipelines.
"""

from token_budget.budget import BudgetCalculator, ModelLimitsRegistry, TokenCounter
from token_budget.core.exceptions import ModelNotFoundError
from token_budget.models.enums import Provider

__all__ = [
    "BudgetCalculator",
    "ModelLimitsRegistry",
    "ModelNotFoundError",
    "Provider",
    "TokenCounter",
]
