"""
Configuration management using pydantic-settings
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Budgeting settings loaded from environment variables"""

    # Logging
    log_level: str = "INFO"

    # Request budgeting
    safety_margin_pct: float = 0.05  # Share of the context window kept free
    mobile_multiplier: float = 0.85  # Output cap scaling on constrained devices
    min_output_tokens: int = 100  # Floor for any dynamic max_tokens decision
    near_limit_pct: float = 85.0  # Early-warning utilization threshold

    # Heading-aligned chunking
    chunk_budget_ratio: float = 0.7  # Share of max tokens a chunk may fill
    chunk_tokens_per_char: float = 0.25  # ~4 chars per token

    # Tokenizers (tried in order)
    openai_encodings: List[str] = ["o200k_base", "cl100k_base"]

    # Custom models merged into the registry at startup
    model_overrides_file: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="TOKEN_BUDGET_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
