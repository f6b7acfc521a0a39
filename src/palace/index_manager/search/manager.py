from __future__ import annotations

from palace.index_manager.core.exceptions import BasePalaceException
from palace.index_manager.search.orchestrator import MigrationOrchestrator
from palace.index_manager.search.registry import MappingsRegistry
from palace.index_manager.search.repository import IndexRepository
from palace.index_manager.util.cancellation import (
    CancellationToken,
    OperationCancelledException,
)
from palace.index_manager.util.log import LoggerMixin


class IndexManagerException(BasePalaceException):
    """The index manager could not be initialized."""


class IndexManager(LoggerMixin):
    """Brings the registry, repository and orchestrator together so an
    application can get its indices up to date with a single call at startup.

    Each of the parts can still be used on its own.
    """

    def __init__(
        self,
        registry: MappingsRegistry,
        repository: IndexRepository,
        orchestrator: MigrationOrchestrator,
    ) -> None:
        self._registry = registry
        self._repository = repository
        self._orchestrator = orchestrator

    @property
    def registry(self) -> MappingsRegistry:
        return self._registry

    @property
    def repository(self) -> IndexRepository:
        return self._repository

    @property
    def orchestrator(self) -> MigrationOrchestrator:
        return self._orchestrator

    def initialize(self, token: CancellationToken | None = None) -> None:
        """Load the index mappings, then migrate any indices that are out of date.

        :raises IndexManagerException: If either step fails. The original error
            is available as the exception's cause.
        :raises OperationCancelledException: If the token is cancelled while
            migrations are running.
        """
        try:
            self._registry.load_mappings()
        except BasePalaceException as e:
            raise IndexManagerException(
                f"Error occurred loading index mappings: {e}"
            ) from e

        try:
            self._orchestrator.run_migrations(token)
        except OperationCancelledException:
            raise
        except BasePalaceException as e:
            raise IndexManagerException(f"Error running migrations: {e}") from e
