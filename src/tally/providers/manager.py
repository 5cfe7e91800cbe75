"""Provider manager: registration, routing by model ref, token cost tracking."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from tally.core.errors import ConfigError, ModelNotFoundError
from tally.providers.anthropic import AnthropicProvider
from tally.providers.openai import OpenAIProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    from tally.config.schema import ProviderConfig, TallyConfig
    from tally.providers.base import ModelInfo, ModelProvider, TokenUsage

logger = logging.getLogger(__name__)


def call_cost(model_info: ModelInfo, usage: TokenUsage) -> float:
    """USD cost of one call at the model's per-million-token prices."""
    return (
        usage.input_tokens * model_info.input_cost_per_mtok
        + usage.output_tokens * model_info.output_cost_per_mtok
    ) / 1_000_000


class ProviderManager:
    """Central registry for reasoning-engine adapters.

    Routes ``provider_id:model_id`` references to the adapter that serves
    them and accumulates token cost per provider. Holds no per-turn state,
    so one instance is shared by every concurrent turn.
    """

    def __init__(self) -> None:
        self._providers: dict[str, ModelProvider] = {}
        self._models: dict[str, ModelInfo] = {}
        self._costs: defaultdict[str, float] = defaultdict(float)

    async def register(self, provider: ModelProvider) -> None:
        """Add an adapter and index every model it reports.

        Raises:
            ValueError: If the provider_id is already registered.
        """
        provider_id = provider.provider_id
        if provider_id in self._providers:
            msg = f"Provider already registered: {provider_id}"
            raise ValueError(msg)
        models = await provider.list_models()
        self._providers[provider_id] = provider
        self._models.update((m.model_ref, m) for m in models)
        logger.debug("Registered provider %s (%d models)", provider_id, len(models))

    @property
    def provider_ids(self) -> list[str]:
        return list(self._providers)

    def list_all_models(self) -> list[ModelInfo]:
        return list(self._models.values())

    def get_model_info(self, model_ref: str) -> ModelInfo:
        """Metadata for ``provider_id:model_id``; ModelNotFoundError if unknown."""
        try:
            return self._models[model_ref]
        except KeyError:
            provider_id, _, model_id = model_ref.partition(":")
            raise ModelNotFoundError(
                provider_id or "unknown", f"Model not found: {model_id or model_ref}"
            ) from None

    def get_provider(self, model_ref: str) -> tuple[ModelProvider, str]:
        info = self.get_model_info(model_ref)
        return self._providers[info.provider_id], info.model_id

    @property
    def total_cost(self) -> float:
        return sum(self._costs.values())

    @property
    def cost_by_provider(self) -> dict[str, float]:
        return dict(self._costs)

    def record_usage(self, model_info: ModelInfo, usage: TokenUsage) -> float:
        cost = call_cost(model_info, usage)
        self._costs[model_info.provider_id] += cost
        return cost


def _openai(name: str, pcfg: ProviderConfig) -> ModelProvider:
    return OpenAIProvider(
        api_key=pcfg.api_key,
        base_url=pcfg.base_url,
        provider_id=name,
        models=pcfg.models or None,
    )


def _anthropic(name: str, pcfg: ProviderConfig) -> ModelProvider:
    return AnthropicProvider(api_key=pcfg.api_key)


_FACTORIES: dict[str, Callable[[str, ProviderConfig], ModelProvider]] = {
    "openai": _openai,
    "anthropic": _anthropic,
}


async def build_provider_manager(config: TallyConfig) -> ProviderManager:
    """Instantiate and register every enabled provider that has a key.

    Providers without an API key are skipped with a log line rather than
    failing startup, so the ledger endpoints stay usable.

    Raises:
        ConfigError: If a provider declares an unknown ``kind``.
    """
    manager = ProviderManager()
    for name, pcfg in config.providers.items():
        if not pcfg.enabled:
            continue
        if not pcfg.api_key:
            logger.info("Skipping provider %s: no API key configured", name)
            continue
        factory = _FACTORIES.get(pcfg.kind)
        if factory is None:
            msg = f"Unknown provider kind for {name}: {pcfg.kind!r}"
            raise ConfigError(msg)
        await manager.register(factory(name, pcfg))
    return manager
