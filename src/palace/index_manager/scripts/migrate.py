from __future__ import annotations

import argparse
import datetime
import signal
import sys
from collections.abc import Sequence
from types import FrameType
from typing import Any

from pydantic import ValidationError

from palace.index_manager.core.exceptions import (
    BasePalaceException,
    CannotLoadConfiguration,
)
from palace.index_manager.search.migrator import MigrationConfig
from palace.index_manager.service.container import Services, create_container
from palace.index_manager.service.search.configuration import SearchConfiguration
from palace.index_manager.util.cancellation import (
    CancellationToken,
    OperationCancelledException,
)
from palace.index_manager.util.log import LoggerMixin


class MigrateSearchIndexesScript(LoggerMixin):
    """Load the index mappings and migrate every managed index that is on an
    old schema version.

    This is safe to run every time the application starts. If a previous run
    was interrupted part way through a migration, running it again finishes
    the job.
    """

    def __init__(self, services: Services | None = None) -> None:
        self._services = services

    @classmethod
    def arg_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Migrate search indices to the current version of their mappings."
        )
        parser.add_argument(
            "--mappings-path",
            help="Directory containing one JSON mapping file per document kind.",
        )
        parser.add_argument(
            "--index-prefix",
            help="Prefix used for index and alias names.",
        )
        parser.add_argument(
            "--poll-attempts",
            type=int,
            help="How many times to check whether a reindex has finished.",
        )
        parser.add_argument(
            "--poll-interval",
            type=float,
            help="Seconds to wait between reindex checks.",
        )
        parser.add_argument(
            "--timeout",
            type=float,
            help="Give up if the migrations haven't finished after this many seconds.",
        )
        return parser

    @classmethod
    def parse_command_line(
        cls, cmd_args: Sequence[str] | None = None
    ) -> argparse.Namespace:
        return cls.arg_parser().parse_args(cmd_args)

    @staticmethod
    def search_configuration(args: argparse.Namespace) -> SearchConfiguration:
        """Search configuration from the environment, with any settings given on
        the command line taking precedence."""
        overrides: dict[str, Any] = {}
        if args.mappings_path is not None:
            overrides["mappings_path"] = args.mappings_path
        if args.index_prefix is not None:
            overrides["index_prefix"] = args.index_prefix

        migration: dict[str, Any] = {}
        if args.poll_attempts is not None:
            migration["poll_attempts"] = args.poll_attempts
        if args.poll_interval is not None:
            migration["poll_interval"] = datetime.timedelta(seconds=args.poll_interval)

        config = SearchConfiguration(**overrides)
        if not migration:
            return config

        try:
            migration_config = MigrationConfig.model_validate(
                {**config.migration.model_dump(), **migration}
            )
        except ValidationError as e:
            raise CannotLoadConfiguration(f"Invalid migration settings: {e}") from e
        return config.model_copy(update={"migration": migration_config})

    @staticmethod
    def cancellation_token(args: argparse.Namespace) -> CancellationToken:
        if args.timeout is None:
            return CancellationToken.never()
        return CancellationToken(timeout=datetime.timedelta(seconds=args.timeout))

    def _install_signal_handlers(self, token: CancellationToken) -> None:
        def handler(signum: int, frame: FrameType | None) -> None:
            self.log.warning(
                f"Received {signal.Signals(signum).name}, cancelling migrations."
            )
            token.cancel()

        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def run(self, cmd_args: Sequence[str] | None = None) -> int:
        args = self.parse_command_line(cmd_args)
        if self._services is None:
            try:
                self._services = create_container(
                    search_config=self.search_configuration(args)
                )
            except CannotLoadConfiguration as e:
                self.log.error(f"Unable to load configuration: {e}")
                return 1

        # Initialize the logging configuration.
        self._services.init_resources()

        token = self.cancellation_token(args)
        self._install_signal_handlers(token)

        manager = self._services.search.manager()
        try:
            manager.initialize(token)
        except OperationCancelledException as e:
            self.log.error(f"Migrations cancelled: {e}")
            return 1
        except BasePalaceException as e:
            self.log.error(f"Migrations failed: {e}", exc_info=e)
            return 1

        self.log.info("Search indices are up to date.")
        return 0


def main() -> None:
    sys.exit(MigrateSearchIndexesScript().run())
