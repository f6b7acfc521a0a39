from __future__ import annotations

import datetime
from functools import partial

import pytest
from pydantic import BaseModel, PositiveInt, ValidationError, field_validator
from pydantic_settings import SettingsConfigDict
from pyfakefs.fake_filesystem import FakeFilesystem

from palace.index_manager.core.exceptions import CannotLoadConfiguration
from palace.index_manager.service.configuration.service_configuration import (
    ServiceConfiguration,
)


class MockPolling(BaseModel):
    attempts: PositiveInt = 10
    interval: datetime.timedelta = datetime.timedelta(seconds=10)


class MockServiceConfiguration(ServiceConfiguration):
    @field_validator("prefix")
    @classmethod
    def no_wildcards(cls, v: str) -> str:
        if "*" in v:
            raise ValueError("Prefix must not contain a wildcard")
        return v

    prefix: str = "palace"
    path: str
    timeout: int = 20
    polling: MockPolling = MockPolling()

    model_config = SettingsConfigDict(env_prefix="MOCK_")


class ServiceConfigurationFixture:
    KEYS = [
        "MOCK_PREFIX",
        "MOCK_PATH",
        "MOCK_TIMEOUT",
        "MOCK_POLLING__ATTEMPTS",
        "MOCK_POLLING__INTERVAL",
    ]

    def __init__(self, type: str, monkeypatch: pytest.MonkeyPatch, fs: FakeFilesystem):
        self.type = type
        self.monkeypatch = monkeypatch
        self.env_file = fs.create_file(".env", contents="")
        self.env_file_vars: dict[str, str] = {}
        for key in self.KEYS:
            monkeypatch.delenv(key, raising=False)

        self.mock_config = partial(MockServiceConfiguration, path="mappings")

    def set(self, key: str, value: str) -> None:
        if self.type == "env":
            self.monkeypatch.setenv(key, value)
        else:
            self.env_file_vars[key] = value
            self.env_file.set_contents(
                "\n".join(f"{k}={v}" for k, v in self.env_file_vars.items())
            )


@pytest.fixture(params=["env", "dot_env"])
def service_configuration_fixture(
    request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch, fs: FakeFilesystem
) -> ServiceConfigurationFixture:
    return ServiceConfigurationFixture(request.param, monkeypatch, fs)


class TestServiceConfiguration:
    def test_set(self, service_configuration_fixture: ServiceConfigurationFixture):
        service_configuration_fixture.set("MOCK_PATH", "/etc/mappings")
        service_configuration_fixture.set("MOCK_TIMEOUT", "5")
        # Surrounding whitespace is stripped.
        service_configuration_fixture.set("MOCK_PREFIX", "  rode  ")

        config = MockServiceConfiguration()

        assert config.path == "/etc/mappings"
        assert config.timeout == 5
        assert config.prefix == "rode"
        assert config.polling == MockPolling()

    def test_nested(self, service_configuration_fixture: ServiceConfigurationFixture):
        service_configuration_fixture.set("MOCK_POLLING__ATTEMPTS", "3")
        service_configuration_fixture.set("MOCK_POLLING__INTERVAL", "2.5")

        config = service_configuration_fixture.mock_config()

        assert config.polling.attempts == 3
        assert config.polling.interval == datetime.timedelta(seconds=2.5)

    def test_arguments_take_precedence(
        self, service_configuration_fixture: ServiceConfigurationFixture
    ):
        service_configuration_fixture.set("MOCK_PATH", "/from/environment")
        config = MockServiceConfiguration(path="/from/argument")
        assert config.path == "/from/argument"

    def test_exception_missing(
        self, service_configuration_fixture: ServiceConfigurationFixture
    ):
        with pytest.raises(CannotLoadConfiguration) as exc_info:
            MockServiceConfiguration()

        assert "MOCK_PATH:  Field required" in str(exc_info.value)

    def test_exception_validation(
        self, service_configuration_fixture: ServiceConfigurationFixture
    ):
        service_configuration_fixture.set("MOCK_TIMEOUT", "soon")

        with pytest.raises(
            CannotLoadConfiguration,
            match="MOCK_TIMEOUT:  Input should be a valid integer",
        ):
            service_configuration_fixture.mock_config()

    def test_exception_nested_validation(
        self, service_configuration_fixture: ServiceConfigurationFixture
    ):
        service_configuration_fixture.set("MOCK_POLLING__ATTEMPTS", "0")

        with pytest.raises(
            CannotLoadConfiguration,
            match="Error loading settings from environment:\n *MOCK_POLLING__ATTEMPTS:  Input should be greater than 0",
        ):
            service_configuration_fixture.mock_config()

    def test_exception_field_validator(
        self, service_configuration_fixture: ServiceConfigurationFixture
    ):
        service_configuration_fixture.set("MOCK_PREFIX", "rode-*")

        with pytest.raises(
            CannotLoadConfiguration,
            match="MOCK_PREFIX:  Value error, Prefix must not contain a wildcard",
        ):
            service_configuration_fixture.mock_config()

    def test_exception_mutation(
        self, service_configuration_fixture: ServiceConfigurationFixture
    ):
        config = service_configuration_fixture.mock_config()

        with pytest.raises(ValidationError):
            config.prefix = "other"  # type: ignore[misc]
