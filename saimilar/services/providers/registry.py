"""Adapter lookup table: one adapter per provider, chosen from the model catalog."""

from saimilar.services.providers.base import ProviderAdapter, ProviderRequest, ProviderResponse
from saimilar.services.providers.catalog import PROVIDER_GEMINI, PROVIDER_PERPLEXITY, resolve_model
from saimilar.services.providers.errors import ProviderCallError
from saimilar.services.providers.gemini import GeminiAdapter
from saimilar.services.providers.perplexity import PerplexityAdapter

PROVIDER_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    PROVIDER_GEMINI: GeminiAdapter,
    PROVIDER_PERPLEXITY: PerplexityAdapter,
}


class ProviderRegistry:
    """Dispatches ``invoke`` to the adapter serving the requested model."""

    def __init__(self, adapters: dict[str, ProviderAdapter] | None = None) -> None:
        if adapters is None:
            adapters = {name: adapter_cls() for name, adapter_cls in PROVIDER_ADAPTERS.items()}
        self._adapters = adapters

    def adapter_for(self, model_key: str | None) -> ProviderAdapter:
        spec = resolve_model(model_key)
        adapter = self._adapters.get(spec.provider)
        if adapter is None:
            raise ProviderCallError(f"No adapter registered for provider {spec.provider}", model_key=spec.key)
        return adapter

    async def invoke(self, request: ProviderRequest) -> ProviderResponse:
        return await self.adapter_for(request.model_key).invoke(request)
