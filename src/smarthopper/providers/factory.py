"""Provider plugin contract: a factory producing a provider and its settings schema."""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from smarthopper.providers.base import AIProvider


@dataclass(slots=True)
class SettingDescriptor:
    name: str
    type: type = str
    default: Any = None
    default_factory: Callable[[], Any] | None = None
    secret: bool = False
    description: str = ""
    allowed_values: Sequence[Any] | None = None
    minimum: float | None = None
    maximum: float | None = None

    def default_value(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return self.default


class ProviderSettings:
    """Settings schema of one provider.

    Subclasses list their descriptors and may tighten ``validate_settings``;
    the base implementation checks types, allowed values and numeric bounds.
    """

    descriptors: Sequence[SettingDescriptor] = ()

    def get_setting_descriptors(self) -> Sequence[SettingDescriptor]:
        return self.descriptors

    def descriptor(self, name: str) -> SettingDescriptor | None:
        for item in self.get_setting_descriptors():
            if item.name == name:
                return item
        return None

    def defaults(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for item in self.get_setting_descriptors():
            value = item.default_value()
            if value is not None:
                values[item.name] = value
        return values

    def secret_names(self) -> set[str]:
        return {item.name for item in self.get_setting_descriptors() if item.secret}

    def validate_settings(self, values: dict[str, Any]) -> list[str]:
        problems: list[str] = []
        for key, value in values.items():
            item = self.descriptor(key)
            if item is None or value is None or value == "":
                continue
            if item.type in (int, float) and not isinstance(value, bool):
                try:
                    number = item.type(value)
                except (TypeError, ValueError):
                    problems.append(f"{key} must be a {item.type.__name__}")
                    continue
                if item.minimum is not None and number < item.minimum:
                    problems.append(f"{key} must be >= {item.minimum}")
                if item.maximum is not None and number > item.maximum:
                    problems.append(f"{key} must be <= {item.maximum}")
            elif item.type is bool and not isinstance(value, bool):
                if str(value).strip().lower() not in ("true", "false", "1", "0"):
                    problems.append(f"{key} must be a boolean")
            if item.allowed_values is not None and value not in item.allowed_values:
                problems.append(f"{key} must be one of {list(item.allowed_values)}")
        return problems

    def redact(self, values: dict[str, Any]) -> dict[str, Any]:
        hidden = self.secret_names()
        return {
            key: ("***" if key in hidden and value else value) for key, value in values.items()
        }


@runtime_checkable
class ProviderFactory(Protocol):
    def create_provider(self) -> "AIProvider": ...

    def create_provider_settings(self) -> ProviderSettings: ...


@dataclass(slots=True)
class StaticProviderFactory:
    """Factory wrapping ready-made callables, used for builtin providers."""

    provider_factory: Callable[[], "AIProvider"]
    settings_factory: Callable[[], ProviderSettings] = field(default=ProviderSettings)

    def create_provider(self) -> "AIProvider":
        return self.provider_factory()

    def create_provider_settings(self) -> ProviderSettings:
        return self.settings_factory()


def find_factories(candidates: Iterable[Any]) -> list[ProviderFactory]:
    """Pick factory instances (or instantiable factory classes) out of module attributes."""
    found: list[ProviderFactory] = []
    for candidate in candidates:
        if isinstance(candidate, type):
            if candidate in (ProviderFactory, StaticProviderFactory):
                continue
            if callable(getattr(candidate, "create_provider", None)) and callable(
                getattr(candidate, "create_provider_settings", None)
            ):
                try:
                    found.append(candidate())
                except TypeError:
                    continue
        elif isinstance(candidate, ProviderFactory):
            found.append(candidate)
    return found
