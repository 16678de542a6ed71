"""Model capability flags and wildcard-aware capability lookup."""

from collections.abc import Mapping
from enum import IntFlag

WILDCARD = "*"


class AICapability(IntFlag):
    NONE = 0

    TEXT_INPUT = 1 << 0
    IMAGE_INPUT = 1 << 1
    AUDIO_INPUT = 1 << 2
    JSON_INPUT = 1 << 3

    TEXT_OUTPUT = 1 << 4
    IMAGE_OUTPUT = 1 << 5
    AUDIO_OUTPUT = 1 << 6
    JSON_OUTPUT = 1 << 7

    FUNCTION_CALLING = 1 << 8
    REASONING = 1 << 9

    TEXT2TEXT = TEXT_INPUT | TEXT_OUTPUT
    BASIC_CHAT = TEXT2TEXT
    TOOL_CHAT = TEXT2TEXT | FUNCTION_CALLING
    REASONING_CHAT = TEXT2TEXT | REASONING
    TOOL_REASONING_CHAT = TOOL_CHAT | REASONING
    TEXT2JSON = TEXT_INPUT | JSON_OUTPUT
    TEXT2IMAGE = TEXT_INPUT | IMAGE_OUTPUT
    TEXT2SPEECH = TEXT_INPUT | AUDIO_OUTPUT
    SPEECH2TEXT = AUDIO_INPUT | TEXT_OUTPUT
    IMAGE2TEXT = IMAGE_INPUT | TEXT_OUTPUT

    def has(self, required: "AICapability") -> bool:
        return has(self, required)

    def to_detailed_string(self) -> str:
        return to_detailed_string(self)


_INPUT_MASK = (
    AICapability.TEXT_INPUT
    | AICapability.IMAGE_INPUT
    | AICapability.AUDIO_INPUT
    | AICapability.JSON_INPUT
)
_OUTPUT_MASK = (
    AICapability.TEXT_OUTPUT
    | AICapability.IMAGE_OUTPUT
    | AICapability.AUDIO_OUTPUT
    | AICapability.JSON_OUTPUT
)
_ATOMIC_FLAGS = tuple(
    flag for flag in AICapability if flag.value and flag.value & (flag.value - 1) == 0
)


def has(capabilities: AICapability, required: AICapability) -> bool:
    """Return True when ``capabilities`` contains every flag of ``required``."""
    return (int(capabilities) & int(required)) == int(required)


def has_input(capabilities: AICapability) -> bool:
    return bool(capabilities & _INPUT_MASK)


def has_output(capabilities: AICapability) -> bool:
    return bool(capabilities & _OUTPUT_MASK)


def _flag_label(flag: AICapability) -> str:
    return "".join(part.capitalize() for part in (flag.name or "").split("_"))


def to_detailed_string(capabilities: AICapability) -> str:
    """Render the atomic flags of ``capabilities``, e.g. ``TextInput, TextOutput``."""
    labels = [_flag_label(flag) for flag in _ATOMIC_FLAGS if capabilities & flag]
    return ", ".join(labels) if labels else "None"


def find_default_capability(
    model_name: str, defaults: Mapping[str, AICapability]
) -> AICapability:
    """Return the default-for flags of ``model_name`` in a provider defaults map.

    Matching is structural and first match wins in the map's insertion order;
    there is no best-match scoring:

    1. exact key;
    2. when ``model_name`` holds a wildcard, the first key starting with the
       name without its wildcard;
    3. the first wildcard key whose prefix ``model_name`` starts with;
    4. otherwise ``AICapability.NONE``.
    """
    if model_name in defaults:
        return defaults[model_name]

    if WILDCARD in model_name:
        pattern = model_name.replace(WILDCARD, "")
        for key, capabilities in defaults.items():
            if key.startswith(pattern):
                return capabilities

    for key, capabilities in defaults.items():
        if WILDCARD in key and model_name.startswith(key.replace(WILDCARD, "")):
            return capabilities

    return AICapability.NONE


def retrieve_capabilities(
    model_name: str, capabilities: Mapping[str, AICapability]
) -> AICapability:
    """Resolve a concrete model name against a capability map with ``prefix*`` keys."""
    if not model_name:
        return AICapability.NONE
    if model_name in capabilities:
        return capabilities[model_name]
    for key, value in capabilities.items():
        if key.endswith(WILDCARD) and model_name.startswith(key[:-1]):
            return value
    return AICapability.NONE
