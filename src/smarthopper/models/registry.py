"""Provider-keyed store of model capability records."""

from collections.abc import Iterator
from dataclasses import dataclass

from smarthopper.models.capability import WILDCARD, AICapability, has


@dataclass(slots=True)
class ModelCapabilities:
    provider: str
    model: str
    capabilities: AICapability = AICapability.NONE
    default_for: AICapability = AICapability.NONE
    context_limit: int = 0
    deprecated: bool = False
    replacement: str = ""

    @property
    def key(self) -> str:
        return registry_key(self.provider, self.model)

    @property
    def is_wildcard(self) -> bool:
        return WILDCARD in self.model

    def has_capability(self, required: AICapability) -> bool:
        return has(self.capabilities, required)

    def is_default_for(self, required: AICapability) -> bool:
        return has(self.default_for, required)


def registry_key(provider: str, model: str) -> str:
    return f"{provider.lower()}.{model.lower()}"


class ModelCapabilityRegistry:
    """Plain dictionary-backed registry; callers provide their own locking."""

    def __init__(self) -> None:
        self._models: dict[str, ModelCapabilities] = {}

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[ModelCapabilities]:
        return iter(list(self._models.values()))

    @property
    def models(self) -> dict[str, ModelCapabilities]:
        return dict(self._models)

    def set_capabilities(self, record: ModelCapabilities) -> None:
        self._models[record.key] = record

    def remove_provider(self, provider: str) -> None:
        prefix = f"{provider.lower()}."
        for key in [key for key in self._models if key.startswith(prefix)]:
            del self._models[key]

    def clear(self) -> None:
        self._models.clear()

    def get_capabilities(self, provider: str, model: str) -> ModelCapabilities | None:
        """Exact key first, then stored ``prefix*`` records of the same provider."""
        exact = self._models.get(registry_key(provider, model))
        if exact is not None:
            return exact

        provider_prefix = f"{provider.lower()}."
        model_lower = model.lower()
        for key, record in self._models.items():
            if not (key.startswith(provider_prefix) and key.endswith(WILDCARD)):
                continue
            if model_lower.startswith(key[len(provider_prefix) : -1]):
                return record
        return None

    def provider_models(self, provider: str) -> list[ModelCapabilities]:
        name = provider.lower()
        return [record for record in self._models.values() if record.provider.lower() == name]

    def find_models_with_capabilities(
        self, required: AICapability, provider: str | None = None
    ) -> list[ModelCapabilities]:
        records = self.provider_models(provider) if provider else list(self._models.values())
        if required == AICapability.NONE:
            return records
        return [record for record in records if record.has_capability(required)]

    def resolve_model_name(self, model: str, provider: str) -> str:
        """Map a wildcard record to the first concrete registered model it covers."""
        if WILDCARD not in model:
            return model
        prefix = model.replace(WILDCARD, "").lower()
        concrete = sorted(
            record.model
            for record in self.provider_models(provider)
            if not record.is_wildcard and record.model.lower().startswith(prefix)
        )
        return concrete[0] if concrete else model

    def get_default_model(
        self, provider: str, required: AICapability = AICapability.BASIC_CHAT
    ) -> str | None:
        """Pick the provider's default model for ``required``.

        Concrete records beat wildcard records. Within each group a record whose
        ``default_for`` covers ``required`` wins over one that merely supports it
        while being a default for something else.
        """
        if not provider:
            return None
        records = self.provider_models(provider)
        if not records:
            return None

        concrete = [record for record in records if not record.is_wildcard]
        wildcards = [record for record in records if record.is_wildcard]

        for group, resolve in ((concrete, False), (wildcards, True)):
            match = next((r for r in group if r.is_default_for(required)), None)
            if match is None:
                match = next(
                    (
                        r
                        for r in group
                        if r.default_for != AICapability.NONE and r.has_capability(required)
                    ),
                    None,
                )
            if match is not None:
                return self.resolve_model_name(match.model, provider) if resolve else match.model
        return None
