"""
Pydantic schemas for model limits and budgeting results
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ModelLimits(BaseModel):
    """Vendor-published limits for one model."""

    model_config = ConfigDict(frozen=True)

    context: int = Field(gt=0)  # total window (input + output)
    max_output: int = Field(gt=0)  # vendor output cap
    input_max: Optional[int] = None  # explicit vendor input cap, if published
    reserve_output_pct: Optional[float] = Field(default=None, ge=0, lt=1)


class EffectiveLimits(ModelLimits):
    """Limits after applying the output reserve."""

    max_output_eff: int
    input_max_eff: int


class Heading(BaseModel):
    """A numbered markdown heading and its offset in the document."""

    model_config = ConfigDict(frozen=True)

    text: str
    position: int


class SafeMaxTokens(BaseModel):
    """Result of fitting an output cap around a known prompt."""

    max_tokens: int
    margin: int
    limits: EffectiveLimits
    ok: bool


class ChunkEstimate(BaseModel):
    """How many requests a document needs under a model's limits."""

    estimated_chunks: int
    tokens_per_chunk: int
    total_requests_needed: int


class ContextUtilization(BaseModel):
    """Context window usage for monitoring."""

    utilization_pct: float
    remaining_tokens: int
    is_near_limit: bool


class ContextAwareMaxTokens(BaseModel):
    """Output cap computed from a measured prompt."""

    max_tokens: int
    prompt_tokens: int
    limits: EffectiveLimits
    utilization_pct: float
    is_valid: bool
    error: Optional[str] = None


class TokenLimitValidation(BaseModel):
    """User-facing diagnostic for a planned request."""

    is_valid: bool
    error: Optional[str] = None
    suggestions: List[str] = []
