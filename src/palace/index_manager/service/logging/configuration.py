from __future__ import annotations

from enum import StrEnum

import boto3
from pydantic import Field, PositiveInt, field_validator
from pydantic_core.core_schema import ValidationInfo
from pydantic_settings import SettingsConfigDict

from palace.index_manager.service.configuration.service_configuration import (
    ServiceConfiguration,
)


class LogLevel(StrEnum):
    """The levels the index manager can be configured to log at.

    The values are the level names the logging module uses, so a member can be
    passed straight to it.
    """

    debug = "DEBUG"
    info = "INFO"
    warning = "WARNING"
    error = "ERROR"


class LoggingConfiguration(ServiceConfiguration):
    # Level for the root logger.
    level: LogLevel = LogLevel.info
    # Level for the search client, urllib3 and botocore, which log every request.
    verbose_level: LogLevel = LogLevel.warning

    # Optionally ship logs to CloudWatch. Credentials come from boto3's usual
    # sources (environment, profile or instance role).
    cloudwatch_enabled: bool = False
    cloudwatch_region: str | None = Field(None, validate_default=True)
    cloudwatch_group: str = "palace"
    cloudwatch_stream: str = "index-manager"
    cloudwatch_interval: PositiveInt = 60

    @field_validator("cloudwatch_region")
    @classmethod
    def validate_cloudwatch_region(
        cls, v: str | None, info: ValidationInfo
    ) -> str | None:
        if not info.data.get("cloudwatch_enabled"):
            return None

        if v is None:
            raise ValueError("Region must be provided if cloudwatch is enabled.")

        regions = boto3.session.Session().get_available_regions(service_name="logs")
        if v not in regions:
            raise ValueError(
                f"Invalid region: {v}. Region must be one of: {', '.join(regions)}."
            )
        return v

    model_config = SettingsConfigDict(env_prefix="PALACE_LOG_")
