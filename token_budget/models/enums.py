"""
Enumerations for LLM providers
"""
from enum import Enum


class Provider(str, Enum):
    """LLM vendors with registered limits.

    Declaration order is the lookup order used when resolving a provider
    from a bare model id.
    """

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OLLAMA = "ollama"

    def __str__(self) -> str:
        return self.value
