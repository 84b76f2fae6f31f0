from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from essaycoach.api.handlers.deps import ApiDeps
from essaycoach.clients.http_vendor import OpenAICompatibleVendorClient
from essaycoach.clients.stub import StubVendorClient
from essaycoach.domain.contracts import EssayRepository, FeedbackStrategy, ProgressStore, VendorClient
from essaycoach.domain.errors import DomainValidationError
from essaycoach.domain.models import EssayMetadata
from essaycoach.domain.progress import InMemoryProgressStore
from essaycoach.domain.prompts import PromptCatalog, load_prompt_catalog
from essaycoach.domain.use_cases.orchestrate_feedback import FeedbackOrchestrator
from essaycoach.repositories.postgres import AsyncpgPoolManager, PostgresEssayRepository
from essaycoach.repositories.stub import InMemoryEssayRepository
from essaycoach.services.general_settings import GeneralSettingsService
from essaycoach.settings import AppSettings, settings_from_env
from essaycoach.strategies.base import StrategyConfig
from essaycoach.strategies.registry import (
    build_feedback_strategy,
    get_registration,
    resolve_base_url,
    supported_strategies,
)

logger = logging.getLogger("runtime")


@dataclass
class RuntimeContainer:
    settings: AppSettings
    repository: EssayRepository
    progress: ProgressStore
    vendor_client: VendorClient
    vendor_clients: dict[str, VendorClient]
    catalog: PromptCatalog
    general_settings: GeneralSettingsService
    orchestrator: FeedbackOrchestrator
    api_deps: ApiDeps
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_runtime_container(
    settings: AppSettings | None = None,
    *,
    vendor_client: VendorClient | None = None,
    repository: EssayRepository | None = None,
) -> RuntimeContainer:
    settings = settings or settings_from_env()
    vendor_key = get_registration(settings.vendor.vendor).key

    startup_hooks: list[Callable[[], Awaitable[None]]] = []
    shutdown_hooks: list[Callable[[], Awaitable[None]]] = []

    if repository is None:
        if settings.database_url:
            pool_manager = AsyncpgPoolManager(dsn=settings.database_url)
            repository = PostgresEssayRepository(pool_manager=pool_manager)
            startup_hooks.append(pool_manager.startup)
            shutdown_hooks.append(pool_manager.shutdown)
        else:
            repository = InMemoryEssayRepository()

    strategy_configs = {key: _strategy_config(settings, key) for key in supported_strategies()}
    vendor_clients: dict[str, VendorClient] = {}
    stub_client: StubVendorClient | None = None
    for key, config in strategy_configs.items():
        if vendor_client is not None:
            vendor_clients[key] = vendor_client
        elif config.api_key:
            http_client = OpenAICompatibleVendorClient(
                base_url=resolve_base_url(key, config),
                api_key=config.api_key,
                timeout_seconds=settings.vendor.timeout_seconds,
            )
            shutdown_hooks.append(http_client.aclose)
            vendor_clients[key] = http_client
        else:
            if key == vendor_key:
                logger.warning("vendor api key not configured, using stub vendor", extra={"vendor": key})
            stub_client = stub_client or StubVendorClient()
            vendor_clients[key] = stub_client

    catalog = load_prompt_catalog(file_path=settings.prompt_catalog_path)
    progress = InMemoryProgressStore()
    general_settings = GeneralSettingsService(
        repository=repository,
        default_max_concurrent_tasks=settings.default_max_concurrent_tasks,
    )
    log_sink = repository

    def strategy_for(metadata: EssayMetadata, vendor: str | None = None) -> FeedbackStrategy:
        key = get_registration(vendor or vendor_key).key
        if key not in vendor_clients:
            raise DomainValidationError(f"vendor strategy {key} was registered after startup and has no client")
        return build_feedback_strategy(
            key,
            client=vendor_clients[key],
            catalog=catalog,
            config=strategy_configs[key],
            metadata=metadata,
            log_sink=log_sink,
        )

    orchestrator = FeedbackOrchestrator(
        repository=repository,
        strategy_provider=strategy_for,
        settings=general_settings,
        progress=progress,
    )
    api_deps = ApiDeps(
        repository=repository,
        progress=progress,
        orchestrator=orchestrator,
        general_settings=general_settings,
        strategy_for=strategy_for,
        vendor_key=vendor_key,
    )

    return RuntimeContainer(
        settings=settings,
        repository=repository,
        progress=progress,
        vendor_client=vendor_clients[vendor_key],
        vendor_clients=vendor_clients,
        catalog=catalog,
        general_settings=general_settings,
        orchestrator=orchestrator,
        api_deps=api_deps,
        on_startup=_chain(startup_hooks),
        on_shutdown=_chain(list(reversed(shutdown_hooks))),
    )


def _chain(hooks: list[Callable[[], Awaitable[None]]]) -> Callable[[], Awaitable[None]] | None:
    if not hooks:
        return None

    async def _run() -> None:
        for hook in hooks:
            await hook()

    return _run


def _strategy_config(settings: AppSettings, key: str) -> StrategyConfig:
    # Model and base url overrides only apply to the configured default vendor.
    is_default = key == settings.vendor.vendor.strip().lower()
    return StrategyConfig(
        api_key=settings.api_key_for(key),
        model=settings.vendor.model if is_default else None,
        base_url=settings.vendor.base_url if is_default else None,
        temperature=settings.vendor.temperature,
    )
