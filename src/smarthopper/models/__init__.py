"""Model capability flags, registry and manager."""

from smarthopper.models.capability import (
    AICapability,
    find_default_capability,
    has,
    retrieve_capabilities,
    to_detailed_string,
)
from smarthopper.models.manager import ModelManager
from smarthopper.models.registry import ModelCapabilities, ModelCapabilityRegistry

__all__ = [
    "AICapability",
    "ModelCapabilities",
    "ModelCapabilityRegistry",
    "ModelManager",
    "find_default_capability",
    "has",
    "retrieve_capabilities",
    "to_detailed_string",
]
