from __future__ import annotations

import datetime
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from opensearchpy import NotFoundError, OpenSearch, TransportError
from pydantic import BaseModel, ConfigDict, PositiveInt, field_validator

from palace.index_manager.core.exceptions import BasePalaceException
from palace.index_manager.search.registry import MappingsRegistry
from palace.index_manager.search.repository import (
    IndexRepository,
    IndexRepositoryException,
)
from palace.index_manager.util.cancellation import CancellationToken, cancellable_wait
from palace.index_manager.util.log import (
    LoggerMixin,
    LoggerType,
    elapsed_time_logging,
    pluralize,
)

ALL_INDICES = "_all"
TASK_INDEX = ".tasks"

WaitFunction = Callable[[datetime.timedelta, CancellationToken], None]


class MigrationStep(StrEnum):
    discover = "discover"
    check_write_block = "check write block"
    place_write_block = "place write block"
    create_target_index = "create target index"
    start_reindex = "start reindex"
    poll_reindex_task = "poll reindex task"
    swap_alias = "swap alias"
    delete_source_index = "delete source index"


@dataclass(frozen=True)
class Migration:
    """A managed index whose schema version is out of date, and the names it
    will have once it has been moved to the current version."""

    alias: str
    source_index: str
    target_index: str
    document_kind: str


class MigrationConfig(BaseModel):
    """How long to wait for the reindex task started by a migration."""

    model_config = ConfigDict(frozen=True)

    # How many times the task API is asked whether the reindex has finished.
    poll_attempts: PositiveInt = 10
    # How long to wait between those requests.
    poll_interval: datetime.timedelta = datetime.timedelta(seconds=10)

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: datetime.timedelta) -> datetime.timedelta:
        if v <= datetime.timedelta(0):
            raise ValueError("poll_interval must be positive")
        return v


class SearchMigrationException(BasePalaceException):
    """The type of exceptions raised by the search migrator.

    The step that failed is recorded, so callers can tell how far a migration
    got before it stopped.
    """

    def __init__(
        self,
        step: MigrationStep,
        message: str,
        migration: Migration | None = None,
    ):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.migration = migration


class SearchResponseDecodeException(BasePalaceException):
    """A response from the search engine didn't have the shape we expected."""


def _response_value(response: Any, *path: str) -> Any:
    value = response
    for key in path:
        if not isinstance(value, Mapping) or key not in value:
            raise SearchResponseDecodeException(
                f"Response is missing {'.'.join(path)}: {response!r}"
            )
        value = value[key]
    return value


class SearchMigrator(LoggerMixin):
    """Moves managed indices whose schema is out of date onto a new index with
    the current mappings, without the alias in front of them ever going away.

    A migration does not roll back when a step fails. Instead each step checks
    whether a previous run already did its work: an existing write block or
    target index is left alone, the alias swap looks at where the alias points
    now, and a source index that is already gone is not an error. The way to
    recover from a failed or interrupted migration is to discover and run the
    migrations again. A source index is rediscovered until it is deleted.
    """

    def __init__(
        self,
        client: OpenSearch,
        registry: MappingsRegistry,
        repository: IndexRepository,
        config: MigrationConfig | None = None,
        wait: WaitFunction = cancellable_wait,
    ) -> None:
        self._client = client
        self._registry = registry
        self._repository = repository
        self._config = config or MigrationConfig()
        self._wait = wait

    @property
    def config(self) -> MigrationConfig:
        return self._config

    def _is_managed(self, index_name: str, index: Any) -> bool:
        """An index is ours if it has our prefix, and its mapping has a
        `_meta.type` equal to our prefix."""
        prefix = self._registry.index_prefix
        if not index_name.startswith(prefix) or not isinstance(index, Mapping):
            return False
        try:
            owner = _response_value(index, "mappings", "_meta", "type")
        except SearchResponseDecodeException:
            return False
        return owner == prefix

    def get_migrations(self, token: CancellationToken | None = None) -> list[Migration]:
        """Find every managed index that isn't on the current schema version for
        its document kind.

        Indices whose names can't be parsed are skipped with a warning.

        :raises SearchMigrationException: If the list of indices can't be fetched.
        """
        token = token or CancellationToken.never()
        token.raise_if_cancelled("fetching indices")
        try:
            indices = self._client.indices.get(index=ALL_INDICES)
        except TransportError as e:
            raise SearchMigrationException(
                MigrationStep.discover, f"Error fetching indices: {e}"
            ) from e

        if not isinstance(indices, Mapping):
            raise SearchMigrationException(
                MigrationStep.discover,
                f"Unexpected response when fetching indices: {indices!r}",
            )

        migrations = []
        for index_name in sorted(indices):
            if not self._is_managed(index_name, indices[index_name]):
                continue

            parts = self._registry.parse_index_name(index_name)
            if parts is None:
                self.log.warning(
                    f"Discovered index {index_name} matching criteria, but wasn't able to determine its document kind."
                )
                continue

            if parts.version == self._registry.version(parts.document_kind):
                continue

            migrations.append(
                Migration(
                    alias=self._registry.alias_name(parts.document_kind, parts.inner),
                    source_index=index_name,
                    target_index=self._registry.index_name(
                        parts.document_kind, parts.inner
                    ),
                    document_kind=parts.document_kind,
                )
            )

        return migrations

    def migrate(
        self, migration: Migration, token: CancellationToken | None = None
    ) -> None:
        """Move the data from a migration's source index to its target index,
        then point the alias at the target and delete the source.

        :raises SearchMigrationException: For the first step that fails.
        :raises OperationCancelledException: If the token is cancelled.
        """
        token = token or CancellationToken.never()
        log: LoggerType = logging.LoggerAdapter(
            self.logger(),
            extra={
                "palace_source_index": migration.source_index,
                "palace_target_index": migration.target_index,
                "palace_alias": migration.alias,
            },
        )

        with elapsed_time_logging(
            log_method=log.info,
            message_prefix=f"Migrating {migration.source_index} to {migration.target_index}",
        ):
            self._block_writes(migration, log, token)
            self._create_target_index(migration, token)
            task_id = self._start_reindex(migration, log, token)
            self._wait_for_task(migration, task_id, log, token)
            self._delete_task_document(task_id, log, token)
            self._swap_alias(migration, log, token)
            self._delete_source_index(migration, log, token)

    def _block_writes(
        self, migration: Migration, log: LoggerType, token: CancellationToken
    ) -> None:
        index_name = migration.source_index

        token.raise_if_cancelled(f"checking write block on {index_name}")
        try:
            response = self._client.indices.get_settings(index=index_name)
            settings = _response_value(response, index_name, "settings", "index")
        except (TransportError, SearchResponseDecodeException) as e:
            raise SearchMigrationException(
                MigrationStep.check_write_block,
                f"Error checking if write block is enabled on index {index_name}: {e}",
                migration,
            ) from e

        blocks = settings.get("blocks") if isinstance(settings, Mapping) else None
        if isinstance(blocks, Mapping) and str(blocks.get("write")).lower() == "true":
            log.info(f"Index {index_name} already has a write block.")
            return

        log.info(f"Placing write block on index {index_name}.")
        token.raise_if_cancelled(f"placing write block on {index_name}")
        try:
            response = self._client.indices.add_block(index=index_name, block="write")
        except TransportError as e:
            raise SearchMigrationException(
                MigrationStep.place_write_block,
                f"Error placing write block on index {index_name}: {e}",
                migration,
            ) from e

        acknowledged = isinstance(response, Mapping) and (
            response.get("acknowledged") is True
            and response.get("shards_acknowledged") is True
        )
        if not acknowledged:
            log.error(f"Write block on {index_name} was not acknowledged: {response!r}")
            raise SearchMigrationException(
                MigrationStep.place_write_block,
                f"Unable to block writes for index {index_name}",
                migration,
            )

    def _create_target_index(
        self, migration: Migration, token: CancellationToken
    ) -> None:
        try:
            self._repository.create_index(
                migration.target_index,
                migration.alias,
                migration.document_kind,
                token=token,
            )
        except IndexRepositoryException as e:
            raise SearchMigrationException(
                MigrationStep.create_target_index,
                f"Error creating target index: {e}",
                migration,
            ) from e

    def _start_reindex(
        self, migration: Migration, log: LoggerType, token: CancellationToken
    ) -> str:
        body = {
            "conflicts": "proceed",
            "source": {"index": migration.source_index},
            "dest": {"index": migration.target_index, "op_type": "create"},
        }

        log.info(
            f"Starting reindex of {migration.source_index} into {migration.target_index}."
        )
        token.raise_if_cancelled("starting reindex")
        try:
            response = self._client.reindex(body=body, wait_for_completion=False)
            task_id = _response_value(response, "task")
        except (TransportError, SearchResponseDecodeException) as e:
            raise SearchMigrationException(
                MigrationStep.start_reindex,
                f"Error initiating reindex: {e}",
                migration,
            ) from e

        task_id = str(task_id)
        log.info(f"Reindex started as task {task_id}.")
        return task_id

    def _wait_for_task(
        self,
        migration: Migration,
        task_id: str,
        log: LoggerType,
        token: CancellationToken,
    ) -> None:
        attempts = self._config.poll_attempts
        for attempt in range(1, attempts + 1):
            log.info(f"Polling task {task_id} ({attempt}/{attempts}).")
            token.raise_if_cancelled(f"polling task {task_id}")
            try:
                response = self._client.tasks.get(task_id=task_id)
                completed = _response_value(response, "completed")
            except (TransportError, SearchResponseDecodeException) as e:
                log.warning(f"Error getting status of task {task_id}: {e}")
            else:
                if completed is True:
                    log.info(f"Reindex task {task_id} completed.")
                    return
                log.info(f"Task {task_id} incomplete.")

            if attempt < attempts:
                self._wait(self._config.poll_interval, token)

        raise SearchMigrationException(
            MigrationStep.poll_reindex_task,
            f"Reindex did not complete after {pluralize(attempts, 'poll')}",
            migration,
        )

    def _delete_task_document(
        self, task_id: str, log: LoggerType, token: CancellationToken
    ) -> None:
        token.raise_if_cancelled(f"deleting task document {task_id}")
        try:
            self._client.delete(index=TASK_INDEX, id=task_id)
        except TransportError as e:
            log.warning(f"Error deleting task document {task_id}: {e}")

    def _alias_holders(
        self, migration: Migration, token: CancellationToken
    ) -> Mapping[str, Any]:
        """The indices the migration's alias currently points at."""
        token.raise_if_cancelled(f"finding indices for alias {migration.alias}")
        try:
            holders = self._client.indices.get_alias(name=migration.alias)
        except NotFoundError:
            return {}
        except TransportError as e:
            raise SearchMigrationException(
                MigrationStep.swap_alias,
                f"Error finding indices for alias {migration.alias}: {e}",
                migration,
            ) from e

        if not isinstance(holders, Mapping):
            raise SearchMigrationException(
                MigrationStep.swap_alias,
                f"Unexpected response when finding indices for alias {migration.alias}: {holders!r}",
                migration,
            )
        return holders

    def _swap_alias(
        self, migration: Migration, log: LoggerType, token: CancellationToken
    ) -> None:
        holders = self._alias_holders(migration, token)

        actions: list[dict[str, Any]] = []
        if migration.source_index in holders:
            actions.append(
                {"remove": {"index": migration.source_index, "alias": migration.alias}}
            )
        elif migration.target_index in holders:
            # A previous run got as far as swapping the alias.
            log.info(
                f"Alias {migration.alias} already points at {migration.target_index}."
            )
            return
        actions.append(
            {"add": {"index": migration.target_index, "alias": migration.alias}}
        )

        log.info(f"Swapping alias {migration.alias} over to {migration.target_index}.")
        token.raise_if_cancelled(f"swapping alias {migration.alias}")
        try:
            self._client.indices.update_aliases(body={"actions": actions})
        except TransportError as e:
            raise SearchMigrationException(
                MigrationStep.swap_alias,
                f"Error occurred while swapping the alias {migration.alias}: {e}",
                migration,
            ) from e

    def _delete_source_index(
        self, migration: Migration, log: LoggerType, token: CancellationToken
    ) -> None:
        index_name = migration.source_index

        log.info(f"Deleting source index {index_name}.")
        token.raise_if_cancelled(f"deleting index {index_name}")
        try:
            self._client.indices.delete(index=index_name)
        except NotFoundError:
            log.info(f"Source index {index_name} was already deleted.")
        except TransportError as e:
            raise SearchMigrationException(
                MigrationStep.delete_source_index,
                f"Failed to remove the source index {index_name}: {e}",
                migration,
            ) from e
