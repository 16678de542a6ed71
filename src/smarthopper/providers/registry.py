"""Provider discovery, integrity gating, trust and lookup."""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import inspect
import logging
import pkgutil
import sys
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from smarthopper.config import get_settings
from smarthopper.errors import ConfigError, HashMismatchError, SignatureError
from smarthopper.models.manager import ModelManager
from smarthopper.providers.factory import ProviderFactory, ProviderSettings, find_factories
from smarthopper.providers.verification import (
    HashVerifier,
    SignatureVerifier,
    VerificationResult,
    VerificationStatus,
)
from smarthopper.settings_store import SettingsStore

if TYPE_CHECKING:
    from smarthopper.providers.base import AIProvider
    from smarthopper.tools.manager import ToolManager

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "Default"
ENTRY_POINT_GROUP = "smarthopper.providers"
BUILTIN_PACKAGE = "smarthopper.providers.builtin"

TrustPrompt = Callable[[str], Awaitable[bool] | bool]


class Notifier(Protocol):
    def error(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...


class LoggingNotifier:
    """Headless notifier: security problems go to the log."""

    def error(self, message: str) -> None:
        logger.error("%s", message)

    def warning(self, message: str) -> None:
        logger.warning("%s", message)


def _module_factories(module: ModuleType) -> list[ProviderFactory]:
    members = [
        value
        for value in vars(module).values()
        if not isinstance(value, type) or value.__module__ == module.__name__
    ]
    return find_factories(members)


class ProviderRegistry:
    """Owns every registered provider together with its settings schema and trust key.

    Builtin and entry-point providers carry no trust key and are always
    available. Providers loaded from plugin files are keyed by file stem in
    the persisted trust table; a provider whose key is explicitly untrusted
    stays registered but is hidden from lookups until trust is granted.
    """

    def __init__(
        self,
        model_manager: ModelManager | None = None,
        settings_store: SettingsStore | None = None,
        *,
        trust_prompt: TrustPrompt | None = None,
        notifier: Notifier | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
        tool_manager: ToolManager | None = None,
        hash_verifier: HashVerifier | None = None,
        signature_verifier: SignatureVerifier | None = None,
    ) -> None:
        self.model_manager = model_manager or ModelManager()
        self.settings_store = settings_store or SettingsStore(get_settings().settings_path)
        self.tool_manager = tool_manager
        self.notifier: Notifier = notifier or LoggingNotifier()
        self._trust_prompt = trust_prompt
        self._transport = http_transport
        self.hash_verifier = hash_verifier or HashVerifier(transport=http_transport)
        self.signature_verifier = signature_verifier or SignatureVerifier()
        self._providers: dict[str, AIProvider] = {}
        self._settings: dict[str, ProviderSettings] = {}
        self._trust_keys: dict[str, str] = {}
        self._init_tasks: set[asyncio.Task[None]] = set()

    # Discovery

    def register_builtin(self) -> list[str]:
        """Register the factories shipped in ``smarthopper.providers.builtin``."""
        package = importlib.import_module(BUILTIN_PACKAGE)
        names: list[str] = []
        for _importer, modname, _ispkg in pkgutil.iter_modules(package.__path__):
            try:
                module = importlib.import_module(f"{BUILTIN_PACKAGE}.{modname}")
            except Exception:
                logger.warning("Failed to load builtin provider module: %s", modname, exc_info=True)
                continue
            names.extend(self._register_factories(_module_factories(module)))
        return names

    def discover_entry_points(self) -> list[str]:
        from importlib.metadata import entry_points

        names: list[str] = []
        for ep in entry_points().select(group=ENTRY_POINT_GROUP):
            try:
                target = ep.load()
            except Exception:
                logger.warning("Failed to load provider entry point: %s", ep.name, exc_info=True)
                continue
            if isinstance(target, ModuleType):
                factories = _module_factories(target)
            else:
                factories = find_factories([target])
            names.extend(self._register_factories(factories))
        return names

    async def discover(self, directory: str | Path | None = None) -> list[str]:
        """Load every plugin file matching the provider pattern in ``directory``."""
        settings = get_settings()
        directory = directory or settings.providers_dir
        if not directory:
            return []
        root = Path(directory).expanduser()
        if not root.is_dir():
            logger.info("Provider directory %s does not exist", root)
            return []
        names: list[str] = []
        for path in sorted(root.glob(settings.provider_pattern)):
            names.extend(await self.load_provider_file(path))
        return names

    async def load_provider_file(self, path: str | Path) -> list[str]:
        """Gate one plugin file (signature, hash, trust) and register its factories.

        Security failures are reported through the notifier and stop this load
        without raising.
        """
        path = Path(path)
        try:
            self.signature_verifier.verify(path)
        except SignatureError as exc:
            self.notifier.error(
                f"{exc}. Please replace it with a file downloaded from official SmartHopper "
                "sources."
            )
            return []

        try:
            await self._check_hash(path)
        except HashMismatchError as exc:
            self.notifier.error(str(exc))
            return []

        trust_key = path.stem
        if self.settings_store.is_trusted(trust_key) is None:
            allowed = await self._ask_trust(trust_key)
            self.settings_store.set_trusted(trust_key, allowed)

        try:
            module = self._import_file(path)
        except Exception:
            logger.warning("Failed to import provider file: %s", path, exc_info=True)
            return []
        return self._register_factories(_module_factories(module), trust_key=trust_key)

    async def _check_hash(self, path: Path) -> None:
        settings = get_settings()
        result = await self.hash_verifier.verify_provider(
            path, settings.version, settings.resolved_platform()
        )
        if result.status is VerificationStatus.MISMATCH:
            raise HashMismatchError(
                f"SECURITY WARNING: Provider '{path.name}' failed integrity verification. "
                f"Expected: {result.public_hash}, Actual: {result.local_hash}. "
                "Please re-download the provider from official SmartHopper sources."
            )
        if result.status is VerificationStatus.UNAVAILABLE:
            self.notifier.warning(
                f"Could not retrieve the SHA-256 hash for '{path.name}'; verification skipped. "
                "Ensure you trust this provider's source before enabling it."
            )
        elif result.status is VerificationStatus.NOT_FOUND:
            self.notifier.warning(
                f"SHA-256 hash for '{path.name}' not found in the public manifest. "
                "Ensure you trust this provider's source before enabling it."
            )

    async def _ask_trust(self, trust_key: str) -> bool:
        if self._trust_prompt is None:
            logger.info("No trust prompt configured, provider %s stays disabled", trust_key)
            return False
        try:
            answer = self._trust_prompt(trust_key)
            if inspect.isawaitable(answer):
                answer = await answer
        except Exception:
            logger.warning("Trust prompt failed for provider %s", trust_key, exc_info=True)
            return False
        return bool(answer)

    @staticmethod
    def _import_file(path: Path) -> ModuleType:
        module_name = f"smarthopper_plugin_{path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot import provider file {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_name, None)
            raise
        return module

    def _register_factories(
        self, factories: Iterable[ProviderFactory], *, trust_key: str | None = None
    ) -> list[str]:
        names: list[str] = []
        for factory in factories:
            try:
                provider = factory.create_provider()
                schema = factory.create_provider_settings()
            except Exception:
                logger.warning("Provider factory %r failed", factory, exc_info=True)
                continue
            if self.register_provider(provider, schema, trust_key=trust_key):
                names.append(provider.name)
        return names

    # Registration

    def register_provider(
        self,
        provider: AIProvider,
        settings: ProviderSettings | None = None,
        *,
        trust_key: str | None = None,
    ) -> bool:
        """Attach services and start initialization in the background."""
        if provider is None or not provider.name:
            return False
        if provider.name in self._providers:
            logger.warning("Provider %s registered twice, replacing", provider.name)
        provider.attach(
            model_manager=self.model_manager,
            settings_store=self.settings_store,
            settings_schema=settings,
            tool_manager=self.tool_manager,
            transport=self._transport,
        )
        self._providers[provider.name] = provider
        self._settings[provider.name] = settings or provider.settings_schema
        if trust_key:
            self._trust_keys[provider.name] = trust_key
        else:
            self._trust_keys.pop(provider.name, None)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            provider.reload_settings()
            return True
        task = loop.create_task(self._initialize(provider))
        self._init_tasks.add(task)
        task.add_done_callback(self._init_tasks.discard)
        return True

    @staticmethod
    async def _initialize(provider: AIProvider) -> None:
        try:
            await provider.initialize()
        except Exception:
            logger.warning("Initializing provider %s failed", provider.name, exc_info=True)

    async def wait_initialized(self) -> None:
        if self._init_tasks:
            await asyncio.gather(*list(self._init_tasks))

    # Lookup

    def _is_allowed(self, name: str) -> bool:
        trust_key = self._trust_keys.get(name)
        if trust_key is None:
            return True
        return self.settings_store.is_trusted(trust_key) is not False

    def get_providers(self, include_untrusted: bool = False) -> list[AIProvider]:
        if include_untrusted:
            return list(self._providers.values())
        return [provider for name, provider in self._providers.items() if self._is_allowed(name)]

    def get_provider(self, name: str | None) -> AIProvider | None:
        """Resolve ``"Default"`` and return the provider unless it is unknown or untrusted."""
        if not name:
            return None
        if name == DEFAULT_PROVIDER:
            configured = self.settings_store.default_provider or get_settings().default_provider
            if not configured:
                providers = self.get_providers()
                return providers[0] if providers else None
            name = configured
        provider = self._providers.get(name)
        if provider is None or not self._is_allowed(name):
            return None
        return provider

    def get_provider_settings(self, name: str) -> ProviderSettings | None:
        return self._settings.get(name)

    def get_default_provider_name(self) -> str:
        for candidate in (self.settings_store.default_provider, get_settings().default_provider):
            if candidate and candidate in self._providers:
                return candidate
        return next(iter(self._providers), "")

    # Settings and trust

    def set_trust(self, name: str, allowed: bool) -> None:
        """Persist a trust decision; ``name`` may be a provider name or its trust key."""
        trust_key = self._trust_keys.get(name, name)
        self.settings_store.set_trusted(trust_key, allowed)

    def update_provider_settings(self, name: str, values: dict[str, Any]) -> None:
        """Validate, persist (blank values are removed) and refresh the provider's cache."""
        provider = self.get_provider(name)
        if provider is None:
            raise ConfigError(f"Unknown or untrusted provider '{name}'")
        schema = self._settings.get(provider.name) or provider.settings_schema
        problems = schema.validate_settings(values)
        if problems:
            raise ConfigError(f"Invalid settings for {provider.name}: {'; '.join(problems)}")

        redacted = schema.redact(values)
        for key, value in values.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                self.settings_store.remove_setting(provider.name, key)
            else:
                self.settings_store.set_setting(provider.name, key, value)
            logger.info("Updated setting %s for %s: %r", key, provider.name, redacted[key])
        provider.reload_settings()

    async def verify_all(
        self, directory: str | Path | None = None
    ) -> dict[str, VerificationResult]:
        settings = get_settings()
        return await self.hash_verifier.verify_all_providers(
            directory or settings.providers_dir,
            settings.version,
            settings.resolved_platform(),
        )
