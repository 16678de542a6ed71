"""Model Manager: capability registration and capability-constrained lookups."""

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable

from smarthopper.models.capability import AICapability, to_detailed_string
from smarthopper.models.registry import ModelCapabilities, ModelCapabilityRegistry

logger = logging.getLogger(__name__)

CapabilityLoader = Callable[[], Awaitable[None]]


class ModelManager:
    """Owns the capability registry for every provider in one application.

    Unknown providers or models yield ``None``/``False``; nothing here raises
    for absent data.
    """

    def __init__(self, registry: ModelCapabilityRegistry | None = None) -> None:
        self.registry = registry or ModelCapabilityRegistry()
        self._lock = threading.Lock()
        self._init_locks: dict[str, asyncio.Lock] = {}

    def register_capabilities(
        self,
        provider: str,
        model: str,
        capabilities: AICapability,
        default_for: AICapability = AICapability.NONE,
        *,
        context_limit: int = 0,
        deprecated: bool = False,
        replacement: str = "",
    ) -> None:
        if not provider or not provider.strip() or not model or not model.strip():
            return
        record = ModelCapabilities(
            provider=provider.lower(),
            model=model,
            capabilities=capabilities,
            default_for=default_for,
            context_limit=context_limit,
            deprecated=deprecated,
            replacement=replacement,
        )
        with self._lock:
            self.registry.set_capabilities(record)
        logger.debug(
            "Registered model %s.%s capabilities=%s default=%s",
            record.provider,
            model,
            to_detailed_string(capabilities),
            to_detailed_string(default_for),
        )

    def set_capabilities(self, record: ModelCapabilities | None) -> None:
        if record is None:
            return
        with self._lock:
            self.registry.set_capabilities(record)

    def get_capabilities(self, provider: str, model: str) -> ModelCapabilities | None:
        if not provider or not model:
            return None
        with self._lock:
            return self.registry.get_capabilities(provider, model)

    def has_provider_capabilities(self, provider: str) -> bool:
        if not provider or not provider.strip():
            return False
        with self._lock:
            return bool(self.registry.provider_models(provider))

    def get_default_model(
        self, provider: str, required: AICapability = AICapability.BASIC_CHAT
    ) -> str | None:
        with self._lock:
            return self.registry.get_default_model(provider, required)

    def validate_capabilities(self, provider: str, model: str, required: AICapability) -> bool:
        record = self.get_capabilities(provider, model)
        if record is None:
            return False
        return record.has_capability(required)

    def find_compatible_models(
        self, required: AICapability, provider: str | None = None
    ) -> list[ModelCapabilities]:
        with self._lock:
            return self.registry.find_models_with_capabilities(required, provider)

    def clear(self, provider: str | None = None) -> None:
        with self._lock:
            if provider is None:
                self.registry.clear()
            else:
                self.registry.remove_provider(provider)

    async def register_provider_once(self, provider: str, loader: CapabilityLoader) -> bool:
        """Run ``loader`` unless ``provider`` already has registered capabilities.

        Concurrent first-time calls for one provider are serialized, so the
        loader runs at most once until the provider is cleared. Returns True
        when the loader ran.
        """
        key = provider.lower()
        with self._lock:
            init_lock = self._init_locks.setdefault(key, asyncio.Lock())
        async with init_lock:
            if self.has_provider_capabilities(provider):
                logger.debug("Capabilities for %s already registered, skipping", provider)
                return False
            await loader()
            return True
