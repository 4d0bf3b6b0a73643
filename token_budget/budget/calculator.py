"""
Token budget calculations for outbound LLM requests.

Combines registry limits with counted or estimated prompt sizes to answer
two questions for the document pipeline: how large can the next chunk be,
and what max_tokens cap should the request carry. Lookups of unregistered
models fail loudly; everything that runs right before a real request
degrades to a conservative answer instead.
"""

import logging
import math

from token_budget.budget.counter import TokenCounter, estimate_tokens
from token_budget.budget.registry import ModelLimitsRegistry, legacy_max_tokens
from token_budget.core.config import Settings, get_settings
from token_budget.core.exceptions import ModelNotFoundError
from token_budget.models.enums import Provider
from token_budget.models.schemas import (
    ChunkEstimate,
    ContextAwareMaxTokens,
    ContextUtilization,
    EffectiveLimits,
    SafeMaxTokens,
    TokenLimitValidation,
)

logger = logging.getLogger(__name__)


class BudgetCalculator:
    """
    Request sizing against a model limits registry.

    Usage:
        calculator = BudgetCalculator(registry, counter)
        cap = calculator.get_dynamic_max_tokens("anthropic", "claude-3-5-haiku-20241022")
    """

    def __init__(
        self,
        registry: ModelLimitsRegistry,
        counter: TokenCounter,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.counter = counter
        settings = settings or get_settings()
        self.safety_margin_pct = settings.safety_margin_pct
        self.mobile_multiplier = settings.mobile_multiplier
        self.min_output_tokens = settings.min_output_tokens
        self.near_limit_pct = settings.near_limit_pct

    def _margin(self, limits: EffectiveLimits, safety_margin_tokens: int | None) -> int:
        if safety_margin_tokens is not None:
            return safety_margin_tokens
        return math.floor(limits.context * self.safety_margin_pct)

    def compute_safe_max_tokens(
        self,
        provider: Provider | str,
        model: str,
        prompt_tokens: int,
        desired_output_tokens: int,
        safety_margin_tokens: int | None = None,
    ) -> SafeMaxTokens:
        """
        Fit an output cap around a prompt of known size.

        Args:
            provider: Model provider
            model: Model id
            prompt_tokens: System + user + history + chunk tokens
            desired_output_tokens: Target ceiling for this call
            safety_margin_tokens: Extra cushion (default: 5% of context)

        Returns:
            SafeMaxTokens; ok is False when even a zero cap would not fit

        Raises:
            ModelNotFoundError: If the model is not registered
        """
        limits = self.registry.get_effective_limits(provider, model)
        margin = self._margin(limits, safety_margin_tokens)

        room = limits.context - prompt_tokens - margin
        max_tokens = max(0, min(desired_output_tokens, limits.max_output_eff, room))
        ok = prompt_tokens + max_tokens + margin <= limits.context

        return SafeMaxTokens(max_tokens=max_tokens, margin=margin, limits=limits, ok=ok)

    def max_doc_tokens_per_request(
        self,
        provider: Provider | str,
        model: str,
        instructions_tokens: int,
        desired_output_tokens: int,
        safety_margin_tokens: int | None = None,
    ) -> int:
        """
        Largest document slice that fits next to the instructions and output.

        Args:
            instructions_tokens: System prompt + wrapper sent with every chunk
            desired_output_tokens: Output allowance to reserve per request

        Returns:
            Document tokens per request (0 when nothing fits)
        """
        limits = self.registry.get_effective_limits(provider, model)
        margin = self._margin(limits, safety_margin_tokens)
        reserved_output = min(desired_output_tokens, limits.max_output_eff)
        return max(0, limits.context - instructions_tokens - reserved_output - margin)

    def estimate_optimal_chunks(
        self,
        provider: Provider | str,
        model: str,
        total_document_tokens: int,
        instructions_tokens: int,
        desired_output_tokens: int,
        safety_margin_tokens: int | None = None,
    ) -> ChunkEstimate:
        """
        Estimate how many requests a document needs.

        A zero capacity yields all-zero fields. Callers must treat that as a
        configuration error rather than proceed.
        """
        tokens_per_chunk = self.max_doc_tokens_per_request(
            provider,
            model,
            instructions_tokens,
            desired_output_tokens,
            safety_margin_tokens,
        )

        if tokens_per_chunk <= 0:
            logger.warning(
                f"No room for document tokens on {provider}:{model} "
                f"(instructions={instructions_tokens}, output={desired_output_tokens})"
            )
            return ChunkEstimate(estimated_chunks=0, tokens_per_chunk=0, total_requests_needed=0)

        estimated_chunks = max(1, math.ceil(total_document_tokens / tokens_per_chunk))
        return ChunkEstimate(
            estimated_chunks=estimated_chunks,
            tokens_per_chunk=tokens_per_chunk,
            total_requests_needed=estimated_chunks,
        )

    def calculate_context_utilization(
        self,
        provider: Provider | str,
        model: str,
        prompt_tokens: int,
        output_tokens: int,
    ) -> ContextUtilization:
        """Context usage percentage with an early-warning flag."""
        limits = self.registry.get_effective_limits(provider, model)
        used_tokens = prompt_tokens + output_tokens
        utilization_pct = used_tokens / limits.context * 100

        return ContextUtilization(
            utilization_pct=round(utilization_pct, 2),
            remaining_tokens=limits.context - used_tokens,
            is_near_limit=utilization_pct > self.near_limit_pct,
        )

    def get_dynamic_max_tokens(
        self,
        provider: Provider | str,
        model: str,
        is_mobile: bool = False,
        configured_max_tokens: int | None = None,
        prompt_tokens: int | None = None,
    ) -> int:
        """
        Decide the max_tokens cap for a request about to be sent.

        Each step only tightens the cap:
        1. Start from the model's effective output limit
        2. Clamp to the user's configured value if smaller
        3. Scale down on mobile
        4. With a known prompt size, fit the cap into the remaining context

        Never raises. Unregistered models get the legacy per-provider cap.

        Returns:
            Cap of at least min_output_tokens
        """
        try:
            limits = self.registry.get_effective_limits(provider, model)
            dynamic_limit = limits.max_output_eff

            if configured_max_tokens and 0 < configured_max_tokens < dynamic_limit:
                dynamic_limit = configured_max_tokens

            if is_mobile:
                dynamic_limit = math.floor(dynamic_limit * self.mobile_multiplier)

            if prompt_tokens:
                safe = self.compute_safe_max_tokens(
                    provider,
                    model,
                    prompt_tokens=prompt_tokens,
                    desired_output_tokens=dynamic_limit,
                )
                dynamic_limit = safe.max_tokens

            return max(self.min_output_tokens, dynamic_limit)

        except Exception as e:
            fallback_limit = legacy_max_tokens(provider)
            if is_mobile:
                fallback_limit = math.floor(fallback_limit * self.mobile_multiplier)
            logger.warning(
                f"Dynamic max tokens failed for {provider}:{model}, "
                f"using legacy limit {fallback_limit}: {e}"
            )
            return max(self.min_output_tokens, fallback_limit)

    async def calculate_context_aware_max_tokens(
        self,
        provider: Provider | str,
        model: str,
        prompt_text: str,
        desired_output_tokens: int,
        is_mobile: bool = False,
        configured_max_tokens: int | None = None,
        safety_margin_tokens: int | None = None,
    ) -> ContextAwareMaxTokens:
        """
        Measure the prompt and compute a max_tokens cap for it.

        If counting fails, the synchronous estimate is used and the result is
        still reported valid, with the failure in ``error``.

        Raises:
            ModelNotFoundError: If the model is not registered
        """
        limits = self.registry.get_effective_limits(provider, model)
        margin = self._margin(limits, safety_margin_tokens)

        counting_error = None
        try:
            prompt_tokens = await self.counter.count_tokens(prompt_text, provider, model)
        except Exception as e:
            logger.warning(f"Token counting failed for {provider}:{model}, using estimation: {e}")
            prompt_tokens = estimate_tokens(prompt_text, provider)
            counting_error = e

        available_for_output = limits.context - prompt_tokens - margin
        max_tokens = min(desired_output_tokens, limits.max_output_eff, available_for_output)

        if configured_max_tokens and 0 < configured_max_tokens < max_tokens:
            max_tokens = configured_max_tokens

        if is_mobile:
            max_tokens = math.floor(max_tokens * self.mobile_multiplier)

        max_tokens = max(self.min_output_tokens, max_tokens)

        total_usage = prompt_tokens + max_tokens + margin
        utilization_pct = round(total_usage / limits.context * 100, 2)

        if counting_error is not None:
            return ContextAwareMaxTokens(
                max_tokens=max_tokens,
                prompt_tokens=prompt_tokens,
                limits=limits,
                utilization_pct=utilization_pct,
                is_valid=True,
                error=f"Token counting failed, using estimation: {counting_error}",
            )

        is_valid = total_usage <= limits.context and max_tokens <= limits.max_output_eff
        return ContextAwareMaxTokens(
            max_tokens=max_tokens,
            prompt_tokens=prompt_tokens,
            limits=limits,
            utilization_pct=utilization_pct,
            is_valid=is_valid,
            error=None if is_valid else f"Token limit exceeded: {total_usage} > {limits.context}",
        )

    def validate_token_limits(
        self,
        provider: Provider | str,
        model: str,
        prompt_tokens: int,
        max_tokens: int,
        safety_margin_tokens: int | None = None,
    ) -> TokenLimitValidation:
        """Check a planned request against the model's limits. Never raises."""
        try:
            limits = self.registry.get_effective_limits(provider, model)
        except ModelNotFoundError:
            return TokenLimitValidation(
                is_valid=False,
                error=f"Model not found in registry: {provider}:{model}",
                suggestions=["Add model to registry or use a supported model"],
            )

        margin = self._margin(limits, safety_margin_tokens)
        total_tokens = prompt_tokens + max_tokens + margin

        if total_tokens > limits.context:
            return TokenLimitValidation(
                is_valid=False,
                error=f"Token limit exceeded: {total_tokens} > {limits.context}",
                suggestions=[
                    f"Reduce prompt size (current: {prompt_tokens})",
                    f"Reduce max_tokens (current: {max_tokens})",
                    "Use a model with larger context window",
                ],
            )

        if max_tokens > limits.max_output_eff:
            return TokenLimitValidation(
                is_valid=False,
                error=f"Output limit exceeded: {max_tokens} > {limits.max_output_eff}",
                suggestions=[
                    f"Reduce max_tokens to {limits.max_output_eff} or lower",
                    "Use a model with higher output limit",
                ],
            )

        return TokenLimitValidation(is_valid=True)
