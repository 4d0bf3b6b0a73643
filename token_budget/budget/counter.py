"""
Provider-aware token counting.

Exact counts come from an in-process tokenizer where one exists (tiktoken
for OpenAI). Every other path, including any tokenizer failure, falls back
to a heuristic estimator biased towards over-counting.
"""

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, NamedTuple, Optional, Sequence

import tiktoken

from token_budget.core.config import get_settings
from token_budget.models.enums import Provider

logger = logging.getLogger(__name__)

_PUNCTUATION_RE = re.compile(r"[.,;:!?'\"()\[\]{}\-]")
_NUMBER_RE = re.compile(r"\d+")

SAFETY_PAD = 1.1  # flat +10% on every estimate
PUNCTUATION_WEIGHT = 0.8  # most marks are their own token
NUMBER_WEIGHT = 1.2  # digit runs often split


class EstimationProfile(NamedTuple):
    """Tokenization density of a vendor."""

    token_multiplier: float  # tokens per whitespace-separated word
    chars_per_token: float


ESTIMATION_PROFILES: Dict[Optional[Provider], EstimationProfile] = {
    Provider.OPENAI: EstimationProfile(1.15, 3.8),
    Provider.ANTHROPIC: EstimationProfile(1.1, 4.0),
    Provider.GOOGLE: EstimationProfile(1.05, 4.2),
    Provider.OLLAMA: EstimationProfile(1.2, 3.5),
    None: EstimationProfile(1.15, 4.0),
}


def estimate_tokens(text: str, provider: Provider | str | None = None) -> int:
    """
    Estimate the token count of text without a tokenizer.

    Takes the larger of a word-based and a character-based estimate, adds
    punctuation and number adjustments, then pads by 10% and rounds up.

    Args:
        text: Text to measure
        provider: Vendor whose tokenization density to assume

    Returns:
        Non-negative token estimate (0 for empty text)
    """
    if not text:
        return 0

    try:
        key = Provider(provider) if provider is not None else None
    except ValueError:
        key = None
    profile = ESTIMATION_PROFILES[key]

    words = len(text.split())
    punctuation = len(_PUNCTUATION_RE.findall(text))
    numbers = len(_NUMBER_RE.findall(text))

    word_estimate = words * profile.token_multiplier
    char_estimate = len(text) / profile.chars_per_token
    estimate = (
        max(word_estimate, char_estimate)
        + punctuation * PUNCTUATION_WEIGHT
        + numbers * NUMBER_WEIGHT
    )
    return math.ceil(estimate * SAFETY_PAD)


class BaseTokenizer(ABC):
    """
    Token counting backend for one provider.

    Implementations must return a non-negative integer for any text.
    """

    def __init__(self, provider: Provider):
        self.provider = provider

    @abstractmethod
    async def count(self, text: str, model: str | None = None) -> int:
        """Count tokens in text."""
        pass

    def cleanup(self) -> None:
        """Release backend resources. Must be idempotent."""
        pass


class HeuristicTokenizer(BaseTokenizer):
    """Estimator-only backend for vendors without an embeddable tokenizer."""

    async def count(self, text: str, model: str | None = None) -> int:
        return estimate_tokens(text, self.provider)


class TiktokenTokenizer(BaseTokenizer):
    """
    tiktoken-backed exact counting.

    The encoder is created on first use, trying each encoding in order
    (newest first). Concurrent first calls may each build an encoder; the
    last one wins and all are equivalent. If no encoding loads, the failure
    is remembered and counts are estimated until cleanup().
    """

    def __init__(self, provider: Provider, encodings: Sequence[str]):
        super().__init__(provider)
        self.encodings = list(encodings)
        self._encoder: tiktoken.Encoding | None = None
        self._unavailable = False

    async def _get_encoder(self) -> tiktoken.Encoding | None:
        if self._encoder is not None:
            return self._encoder
        if self._unavailable:
            return None

        for name in self.encodings:
            try:
                # May download the BPE table on first use
                self._encoder = await asyncio.to_thread(tiktoken.get_encoding, name)
                logger.info(f"Initialized tiktoken with {name} encoding")
                return self._encoder
            except Exception as e:
                logger.warning(f"Failed to load tiktoken encoding {name}: {e}")

        self._unavailable = True
        logger.warning("No tiktoken encoding available, falling back to estimation")
        return None

    async def count(self, text: str, model: str | None = None) -> int:
        encoder = await self._get_encoder()
        if encoder is None:
            return estimate_tokens(text, self.provider)
        try:
            return len(encoder.encode(text, disallowed_special=()))
        except Exception as e:
            logger.warning(f"tiktoken encoding failed, using estimation: {e}")
            return estimate_tokens(text, self.provider)

    def cleanup(self) -> None:
        self._encoder = None
        self._unavailable = False


def build_default_tokenizers(encodings: Sequence[str] | None = None) -> Dict[Provider, BaseTokenizer]:
    """
    Build the provider -> tokenizer lookup table.

    Args:
        encodings: tiktoken encodings to try for OpenAI, newest first
    """
    if encodings is None:
        encodings = get_settings().openai_encodings
    return {
        Provider.OPENAI: TiktokenTokenizer(Provider.OPENAI, encodings),
        # No Anthropic tokenizer runs in-process; estimate with Claude density
        Provider.ANTHROPIC: HeuristicTokenizer(Provider.ANTHROPIC),
        Provider.GOOGLE: HeuristicTokenizer(Provider.GOOGLE),
        Provider.OLLAMA: HeuristicTokenizer(Provider.OLLAMA),
    }


class TokenCounter:
    """
    Count tokens for text under a given provider.

    Counting never raises: a failing backend degrades to estimate_tokens.

    Usage:
        counter = TokenCounter()
        tokens = await counter.count_tokens(prompt, "openai", "gpt-4o")
    """

    def __init__(self, tokenizers: Mapping[Provider, BaseTokenizer] | None = None):
        self._tokenizers: Dict[Provider, BaseTokenizer] = dict(
            tokenizers if tokenizers is not None else build_default_tokenizers()
        )
        missing = [p.value for p in Provider if p not in self._tokenizers]
        if missing:
            raise ValueError(f"TokenCounter requires a tokenizer for every provider, missing: {missing}")

    def get_tokenizer(self, provider: Provider | str) -> BaseTokenizer | None:
        try:
            return self._tokenizers[Provider(provider)]
        except ValueError:
            return None

    async def count_tokens(
        self,
        text: str,
        provider: Provider | str,
        model: str | None = None,
    ) -> int:
        """
        Count tokens using the provider's tokenizer.

        Args:
            text: Text to count
            provider: Provider whose tokenizer to use
            model: Model id (informational for current backends)

        Returns:
            Exact count when a tokenizer succeeded, otherwise an estimate
        """
        if not text:
            return 0

        tokenizer = self.get_tokenizer(provider)
        if tokenizer is None:
            return estimate_tokens(text)

        try:
            return await tokenizer.count(text, model)
        except Exception as e:
            logger.warning(f"Token counting failed for {tokenizer.provider.value}, using estimation: {e}")
            return estimate_tokens(text, tokenizer.provider)

    def estimate_tokens(self, text: str, provider: Provider | str | None = None) -> int:
        """Synchronous estimate; always available."""
        return estimate_tokens(text, provider)

    async def count_tokens_in_segments(
        self,
        segments: Sequence[str],
        provider: Provider | str,
        model: str | None = None,
    ) -> List[int]:
        """Count each segment concurrently; results follow input order."""
        return list(
            await asyncio.gather(
                *[self.count_tokens(segment, provider, model) for segment in segments]
            )
        )

    async def get_total_tokens(
        self,
        segments: Sequence[str],
        provider: Provider | str,
        model: str | None = None,
    ) -> int:
        """Sum of token counts over all segments."""
        counts = await self.count_tokens_in_segments(segments, provider, model)
        return sum(counts)

    def cleanup(self) -> None:
        """Drop cached encoders. Safe to call repeatedly."""
        for tokenizer in self._tokenizers.values():
            tokenizer.cleanup()
        logger.debug("Token counter resources released")


async def count_tokens(text: str, provider: Provider | str, model: str | None = None) -> int:
    """Count tokens with the shared process-wide counter."""
    from token_budget.core.dependencies import get_token_counter

    return await get_token_counter().count_tokens(text, provider, model)
