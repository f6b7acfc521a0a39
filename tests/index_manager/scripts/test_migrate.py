from __future__ import annotations

import datetime
import logging
import signal
from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from palace.index_manager.core.exceptions import CannotLoadConfiguration
from palace.index_manager.scripts.migrate import MigrateSearchIndexesScript, main
from palace.index_manager.search.manager import IndexManagerException
from palace.index_manager.search.migrator import MigrationConfig
from palace.index_manager.util.cancellation import (
    CancellationToken,
    OperationCancelledException,
)


class MigrateScriptFixture:
    def __init__(self) -> None:
        self.services = MagicMock()
        self.manager = self.services.search.manager.return_value
        self.script = MigrateSearchIndexesScript(self.services)

    def token(self) -> CancellationToken:
        [token] = self.manager.initialize.call_args.args
        return token


@pytest.fixture
def migrate_script_fixture() -> Generator[MigrateScriptFixture]:
    # Don't replace the test runner's signal handlers.
    with patch("palace.index_manager.scripts.migrate.signal.signal"):
        yield MigrateScriptFixture()


@pytest.fixture
def search_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> pytest.MonkeyPatch:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("PALACE_SEARCH_URL", "http://search:9200")
    monkeypatch.setenv("PALACE_SEARCH_INDEX_PREFIX", "env-prefix")
    monkeypatch.delenv("PALACE_SEARCH_MAPPINGS_PATH", raising=False)
    monkeypatch.delenv("PALACE_SEARCH_MIGRATION__POLL_ATTEMPTS", raising=False)
    monkeypatch.delenv("PALACE_SEARCH_MIGRATION__POLL_INTERVAL", raising=False)
    return monkeypatch


class TestMigrateSearchIndexesScript:
    def test_run(
        self,
        migrate_script_fixture: MigrateScriptFixture,
        caplog: pytest.LogCaptureFixture,
    ):
        caplog.set_level(logging.INFO)
        fixture = migrate_script_fixture

        assert fixture.script.run([]) == 0

        fixture.services.init_resources.assert_called_once()
        fixture.manager.initialize.assert_called_once()
        token = fixture.token()
        assert token.deadline is None
        assert token.cancelled is False
        assert "Search indices are up to date." in caplog.messages

    def test_run_with_timeout(self, migrate_script_fixture: MigrateScriptFixture):
        fixture = migrate_script_fixture
        assert fixture.script.run(["--timeout", "90"]) == 0
        assert fixture.token().deadline is not None

    def test_run_failure(
        self,
        migrate_script_fixture: MigrateScriptFixture,
        caplog: pytest.LogCaptureFixture,
    ):
        fixture = migrate_script_fixture
        fixture.manager.initialize.side_effect = IndexManagerException(
            "Error running migrations: swap alias: boom"
        )

        assert fixture.script.run([]) == 1
        [record] = [r for r in caplog.records if r.levelname == "ERROR"]
        assert "Migrations failed" in record.message
        assert record.exc_info is not None

    def test_run_cancelled(
        self,
        migrate_script_fixture: MigrateScriptFixture,
        caplog: pytest.LogCaptureFixture,
    ):
        fixture = migrate_script_fixture
        fixture.manager.initialize.side_effect = OperationCancelledException(
            "polling task node:1: deadline exceeded"
        )

        assert fixture.script.run(["--timeout", "1"]) == 1
        assert "Migrations cancelled: polling task node:1: deadline exceeded" in (
            caplog.messages
        )

    def test_signals_cancel_token(self, migrate_script_fixture: MigrateScriptFixture):
        fixture = migrate_script_fixture
        script = fixture.script
        token = CancellationToken()

        with patch("palace.index_manager.scripts.migrate.signal.signal") as mock_signal:
            script._install_signal_handlers(token)

        handlers = {c.args[0]: c.args[1] for c in mock_signal.call_args_list}
        assert set(handlers) == {signal.SIGINT, signal.SIGTERM}

        handlers[signal.SIGTERM](signal.SIGTERM, None)
        assert token.cancelled is True

    def test_configuration_error(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ):
        script = MigrateSearchIndexesScript()
        monkeypatch.setattr(
            script,
            "search_configuration",
            MagicMock(side_effect=CannotLoadConfiguration("PALACE_SEARCH_URL missing")),
        )

        assert script.run([]) == 1
        assert "Unable to load configuration: PALACE_SEARCH_URL missing" in (
            caplog.messages
        )

    def test_main(self):
        with (
            patch.object(MigrateSearchIndexesScript, "run", return_value=1),
            pytest.raises(SystemExit) as excinfo,
        ):
            main()
        assert excinfo.value.code == 1


class TestSearchConfiguration:
    def test_environment(self, search_environment: pytest.MonkeyPatch):
        args = MigrateSearchIndexesScript.parse_command_line([])
        config = MigrateSearchIndexesScript.search_configuration(args)

        assert config.index_prefix == "env-prefix"
        assert config.mappings_path == "mappings"
        assert config.migration == MigrationConfig()

    def test_command_line_overrides(self, search_environment: pytest.MonkeyPatch):
        search_environment.setenv("PALACE_SEARCH_MIGRATION__POLL_ATTEMPTS", "7")
        args = MigrateSearchIndexesScript.parse_command_line(
            [
                "--index-prefix",
                "rode",
                "--mappings-path",
                "/srv/mappings",
                "--poll-interval",
                "0.5",
            ]
        )
        config = MigrateSearchIndexesScript.search_configuration(args)

        assert config.index_prefix == "rode"
        assert config.mappings_path == "/srv/mappings"
        # Settings not given on the command line come from the environment.
        assert config.migration.poll_attempts == 7
        assert config.migration.poll_interval == datetime.timedelta(seconds=0.5)

    @pytest.mark.parametrize(
        "cmd_args",
        [
            ["--poll-attempts", "0"],
            ["--poll-interval", "-1"],
            ["--poll-interval", "0"],
        ],
    )
    def test_invalid_migration_settings(
        self, search_environment: pytest.MonkeyPatch, cmd_args: list[str]
    ):
        args = MigrateSearchIndexesScript.parse_command_line(cmd_args)
        with pytest.raises(
            CannotLoadConfiguration, match="Invalid migration settings"
        ):
            MigrateSearchIndexesScript.search_configuration(args)

    def test_cancellation_token(self):
        args = MigrateSearchIndexesScript.parse_command_line([])
        assert MigrateSearchIndexesScript.cancellation_token(args).deadline is None

        args = MigrateSearchIndexesScript.parse_command_line(["--timeout", "5"])
        token = MigrateSearchIndexesScript.cancellation_token(args)
        remaining = token.remaining()
        assert remaining is not None
        assert 0 < remaining <= 5
