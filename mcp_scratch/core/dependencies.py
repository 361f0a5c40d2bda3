from __future__ import annotations

from functools import lru_cache

from ..services.catalog import ContentCatalog
from ..services.config_loader import ConfigService, create_config_service
from ..services.dispatcher import MethodDispatcher
from ..services.legacy_events import LegacyEventProcessor
from ..services.sse import SSEConnectionManager


@lru_cache(maxsize=1)
def get_config_service() -> ConfigService:
    return create_config_service()


@lru_cache(maxsize=1)
def get_catalog() -> ContentCatalog:
    return ContentCatalog(get_config_service().get_catalog_config())


@lru_cache(maxsize=1)
def get_dispatcher() -> MethodDispatcher:
    return MethodDispatcher(
        catalog=get_catalog(),
        server=get_config_service().get_server_config(),
    )


@lru_cache(maxsize=1)
def get_connection_manager() -> SSEConnectionManager:
    server = get_config_service().get_server_config()
    return SSEConnectionManager(
        ping_interval=server.ping_interval_seconds,
        max_queued_events=server.max_queued_events,
    )


@lru_cache(maxsize=1)
def get_legacy_event_processor() -> LegacyEventProcessor:
    return LegacyEventProcessor(
        catalog=get_catalog(),
        server=get_config_service().get_server_config(),
    )


def reset_dependencies() -> None:
    """Drop every cached singleton so the next lookup rebuilds from configuration."""
    for provider in (
        get_legacy_event_processor,
        get_connection_manager,
        get_dispatcher,
        get_catalog,
        get_config_service,
    ):
        provider.cache_clear()


# Request-scoped providers. They run on the event loop so the singletons above
# are never first built concurrently from worker threads.


async def dispatcher_dependency() -> MethodDispatcher:
    return get_dispatcher()


async def connection_manager_dependency() -> SSEConnectionManager:
    return get_connection_manager()


async def legacy_event_processor_dependency() -> LegacyEventProcessor:
    return get_legacy_event_processor()
