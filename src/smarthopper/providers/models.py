"""Per-provider model catalogue: capability maps, defaults and model listing."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from smarthopper.models.capability import (
    AICapability,
    find_default_capability,
    retrieve_capabilities,
)

if TYPE_CHECKING:
    from smarthopper.providers.base import AIProvider

logger = logging.getLogger(__name__)


class ProviderModels:
    """Static capability catalogue; subclasses may refine it from the vendor API.

    ``capabilities`` keys may end in ``*`` to cover a model family. ``defaults``
    is scanned in insertion order, first match wins.
    """

    capabilities: Mapping[str, AICapability] = {}
    defaults: Mapping[str, AICapability] = {}

    def __init__(self, provider: AIProvider) -> None:
        self.provider = provider

    def get_model(self, requested: str = "") -> str:
        if requested and requested.strip():
            return requested.strip()
        return self.provider.get_default_model() or ""

    async def retrieve_available(self) -> list[str]:
        """Model ids the vendor reports; the static catalogue when not overridden."""
        return [name for name in self.capabilities if not name.endswith("*")]

    async def retrieve_capabilities(self) -> dict[str, AICapability]:
        catalogue = dict(self.capabilities)
        try:
            available = await self.retrieve_available()
        except Exception:
            logger.warning(
                "Listing models for %s failed, using static catalogue",
                self.provider.name,
                exc_info=True,
            )
            return catalogue
        for model in available:
            if model in catalogue:
                continue
            flags = retrieve_capabilities(model, self.capabilities)
            if flags != AICapability.NONE:
                catalogue[model] = flags
        return catalogue

    def retrieve_capabilities_for(self, model: str) -> AICapability:
        return retrieve_capabilities(model, self.capabilities)

    def retrieve_default(self) -> dict[str, AICapability]:
        return dict(self.defaults)

    @staticmethod
    def find_default_for(model: str, defaults: Mapping[str, AICapability]) -> AICapability:
        return find_default_capability(model, defaults)
