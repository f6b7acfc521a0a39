from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer
from dependency_injector.providers import Provider
from opensearchpy import OpenSearch

from palace.index_manager.search.manager import IndexManager
from palace.index_manager.search.migrator import MigrationConfig, SearchMigrator
from palace.index_manager.search.orchestrator import MigrationOrchestrator
from palace.index_manager.search.registry import MappingsRegistry
from palace.index_manager.search.repository import IndexRepository


class Search(DeclarativeContainer):
    config = providers.Configuration()

    client: Provider[OpenSearch] = providers.Singleton(
        OpenSearch,
        hosts=config.url,
        timeout=config.timeout,
        maxsize=config.maxsize,
    )

    registry: Provider[MappingsRegistry] = providers.Singleton(
        MappingsRegistry,
        index_prefix=config.index_prefix,
        mappings_path=config.mappings_path,
    )

    repository: Provider[IndexRepository] = providers.Singleton(
        IndexRepository,
        client=client,
        registry=registry,
    )

    migration_config: Provider[MigrationConfig] = providers.Singleton(
        MigrationConfig.model_validate,
        config.migration,
    )

    migrator: Provider[SearchMigrator] = providers.Singleton(
        SearchMigrator,
        client=client,
        registry=registry,
        repository=repository,
        config=migration_config,
    )

    orchestrator: Provider[MigrationOrchestrator] = providers.Singleton(
        MigrationOrchestrator,
        migrator=migrator,
    )

    manager: Provider[IndexManager] = providers.Singleton(
        IndexManager,
        registry=registry,
        repository=repository,
        orchestrator=orchestrator,
    )
