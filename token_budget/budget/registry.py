"""
Per-(provider, model) limits registry.

Holds the baked-in table of vendor limits and derives the effective limits
that every budgeting decision starts from. Registries are explicit objects
owned by the caller; the base table is deep-copied on construction so it is
never mutated by upserts.
"""

import copy
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError

from token_budget.core.exceptions import ModelNotFoundError
from token_budget.models.enums import Provider
from token_budget.models.schemas import EffectiveLimits, ModelLimits

logger = logging.getLogger(__name__)

Registry = Dict[Provider, Dict[str, ModelLimits]]


def _limits(context: int, max_output: int, reserve: float) -> ModelLimits:
    return ModelLimits(context=context, max_output=max_output, reserve_output_pct=reserve)


BASE_MODELS: Registry = {
    Provider.OPENAI: {
        "gpt-5": _limits(400_000, 128_000, 0.10),
        "gpt-4o": _limits(128_000, 16_384, 0.10),
        "gpt-4o-mini": _limits(128_000, 16_384, 0.10),
        # Legacy
        "gpt-4-turbo": _limits(128_000, 4_096, 0.10),
        "gpt-4": _limits(8_192, 4_096, 0.10),
        "gpt-3.5-turbo": _limits(16_384, 4_096, 0.10),
    },
    Provider.ANTHROPIC: {
        "claude-opus-4-0": _limits(400_000, 32_000, 0.10),
        "claude-opus-4-1": _limits(400_000, 32_000, 0.10),
        "claude-sonnet-4-0": _limits(400_000, 16_000, 0.10),
        "claude-3-5-sonnet-20241022": _limits(200_000, 8_192, 0.10),
        "claude-3-5-haiku-20241022": _limits(200_000, 8_192, 0.10),
        # Legacy Claude 3
        "claude-3-sonnet-20240229": _limits(200_000, 4_096, 0.10),
        "claude-3-opus-20240229": _limits(200_000, 4_096, 0.10),
        "claude-3-haiku-20240307": _limits(200_000, 4_096, 0.10),
    },
    Provider.GOOGLE: {
        "gemini-2.5-flash": _limits(2_000_000, 16_384, 0.10),
        "gemini-2.0-flash-exp": _limits(1_000_000, 8_192, 0.10),
        "gemini-1.5-pro": _limits(2_000_000, 8_192, 0.10),
        "gemini-1.5-flash": _limits(1_000_000, 8_192, 0.10),
        "gemini-1.5-flash-8b": _limits(1_000_000, 8_192, 0.10),
    },
    # Local models reserve more output headroom
    Provider.OLLAMA: {
        "llama3.1": _limits(32_768, 8_192, 0.15),
        "llama3.1:70b": _limits(32_768, 8_192, 0.15),
        "llama3.1:8b": _limits(32_768, 4_096, 0.15),
        "qwen2.5": _limits(32_768, 8_192, 0.15),
        "mistral": _limits(32_768, 4_096, 0.15),
    },
}

# Hardcoded output caps used when a model is not registered
LEGACY_MAX_TOKENS: Dict[str, int] = {
    Provider.OPENAI.value: 4096,
    Provider.ANTHROPIC.value: 4096,
    Provider.GOOGLE.value: 8192,
    Provider.OLLAMA.value: 4096,
    "default": 4096,
}


def legacy_max_tokens(provider: Provider | str) -> int:
    """Hardcoded per-provider output cap."""
    key = provider.value if isinstance(provider, Provider) else str(provider)
    return LEGACY_MAX_TOKENS.get(key, LEGACY_MAX_TOKENS["default"])


def compute_effective_limits(raw: ModelLimits) -> EffectiveLimits:
    """
    Apply the output reserve and derive the effective input cap.

    Args:
        raw: Vendor-published limits

    Returns:
        Effective limits with max_output_eff and input_max_eff filled in
    """
    reserve = raw.reserve_output_pct or 0.0
    max_output_eff = max(0, math.floor(raw.max_output * (1 - reserve)))

    derived_input_max = max(0, raw.context - max_output_eff)
    if raw.input_max is not None:
        input_max_eff = max(0, min(raw.input_max, derived_input_max))
    else:
        input_max_eff = derived_input_max

    return EffectiveLimits(
        **raw.model_dump(),
        max_output_eff=max_output_eff,
        input_max_eff=input_max_eff,
    )


class ModelLimitsRegistry:
    """
    Mutable registry of model limits (base table + custom models).

    Usage:
        registry = ModelLimitsRegistry()
        limits = registry.get_effective_limits("openai", "gpt-4o")

    Extending:
        registry.upsert_model("ollama", "phi4", {"context": 16384, "max_output": 4096})
    """

    def __init__(self, base: Registry | None = None):
        self._models: Registry = copy.deepcopy(BASE_MODELS if base is None else base)
        for provider in Provider:
            self._models.setdefault(provider, {})

    def upsert_model(
        self,
        provider: Provider | str,
        model: str,
        limits: ModelLimits | Mapping[str, Any],
    ) -> None:
        """
        Add or override a model under a provider (last write wins).

        Only field types are checked; limits are not cross-validated.
        """
        prov = Provider(provider)
        if not isinstance(limits, ModelLimits):
            limits = ModelLimits(**limits)
        self._models.setdefault(prov, {})[model] = limits
        logger.debug(f"Upserted model limits for {prov.value}:{model}")

    def get_raw_limits(self, provider: Provider | str, model: str) -> ModelLimits:
        """
        Read raw limits for a model.

        Raises:
            ModelNotFoundError: If the pair is not registered
        """
        try:
            prov = Provider(provider)
        except ValueError:
            raise ModelNotFoundError(str(provider), model) from None
        limits = self._models.get(prov, {}).get(model)
        if limits is None:
            raise ModelNotFoundError(prov.value, model)
        return limits

    def get_effective_limits(self, provider: Provider | str, model: str) -> EffectiveLimits:
        """Effective limits for a registered model (reserve defaults to 0)."""
        return compute_effective_limits(self.get_raw_limits(provider, model))

    def get_provider_from_model(self, model: str) -> Provider | None:
        """
        Resolve a provider from a bare model id.

        Providers are searched in Provider declaration order and the first
        match wins. Pass the provider explicitly when ids may collide.
        """
        matches = [provider for provider in Provider if model in self._models.get(provider, {})]
        if not matches:
            return None
        if len(matches) > 1:
            logger.debug(
                f"Model id {model} registered under {[p.value for p in matches]}, "
                f"using {matches[0].value}"
            )
        return matches[0]

    def is_model_supported(self, provider: Provider | str, model: str) -> bool:
        try:
            prov = Provider(provider)
        except ValueError:
            return False
        return model in self._models.get(prov, {})

    def get_models_for_provider(self, provider: Provider | str) -> List[str]:
        try:
            prov = Provider(provider)
        except ValueError:
            return []
        return list(self._models.get(prov, {}).keys())

    def get_legacy_max_tokens(self, provider: Provider | str, model: str) -> int:
        """Effective output cap, or a hardcoded provider default. Never raises."""
        try:
            return self.get_effective_limits(provider, model).max_output_eff
        except ModelNotFoundError:
            return legacy_max_tokens(provider)

    def load_overrides(self, path: str | Path) -> int:
        """
        Merge custom models from a JSON file into the registry.

        The file maps provider names to ``{model_id: limits}`` objects using
        the ModelLimits field names.

        Args:
            path: Path to the overrides file

        Returns:
            Number of models upserted

        Raises:
            ValueError: If the file is not valid JSON or describes invalid limits
        """
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in model overrides {path}: {e}") from None

        if not isinstance(data, dict):
            raise ValueError(f"Model overrides {path} must be an object keyed by provider")

        count = 0
        for provider_name, models in data.items():
            try:
                provider = Provider(provider_name)
            except ValueError:
                raise ValueError(
                    f"Unknown provider '{provider_name}' in {path}. "
                    f"Available providers: {', '.join(p.value for p in Provider)}"
                ) from None
            if not isinstance(models, dict):
                raise ValueError(f"Models for '{provider_name}' in {path} must be an object")
            for model, limits in models.items():
                try:
                    self.upsert_model(provider, model, limits)
                except (ValidationError, TypeError) as e:
                    raise ValueError(f"Invalid limits for {provider_name}:{model} in {path}: {e}") from None
                count += 1

        logger.info(f"Loaded {count} model overrides from {path}")
        return count

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Plain-dict copy of the current table."""
        return {
            provider.value: {model: limits.model_dump() for model, limits in models.items()}
            for provider, models in self._models.items()
        }
