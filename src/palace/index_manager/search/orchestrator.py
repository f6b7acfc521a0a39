from __future__ import annotations

from palace.index_manager.search.migrator import SearchMigrator
from palace.index_manager.util.cancellation import CancellationToken
from palace.index_manager.util.log import LoggerMixin, elapsed_time_logging, pluralize


class MigrationOrchestrator(LoggerMixin):
    """Runs every pending migration, one at a time, stopping at the first failure."""

    def __init__(self, migrator: SearchMigrator) -> None:
        self._migrator = migrator

    def run_migrations(self, token: CancellationToken | None = None) -> None:
        """Discover the pending migrations and run them in the order they were
        discovered.

        Migrations after a failed one are not attempted. Re-running this after a
        failure picks up where the previous run left off.

        :raises SearchMigrationException: The error from discovery, or from the
            first migration that failed.
        """
        token = token or CancellationToken.never()
        migrations = self._migrator.get_migrations(token)

        if not migrations:
            self.log.info("No migrations to run.")
            return

        self.log.info(f"Discovered {pluralize(len(migrations), 'migration')} to run.")
        with elapsed_time_logging(
            log_method=self.log.info, message_prefix="Running migrations"
        ):
            for migration in migrations:
                self._migrator.migrate(migration, token)
