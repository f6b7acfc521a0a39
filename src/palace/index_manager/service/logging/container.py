from __future__ import annotations

from logging import Handler
from typing import TYPE_CHECKING

import boto3
from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer
from dependency_injector.providers import Provider, Singleton

from palace.index_manager.service.logging.log import (
    JSONFormatter,
    create_cloudwatch_handler,
    create_stream_handler,
    setup_logging,
)

if TYPE_CHECKING:
    from mypy_boto3_logs import CloudWatchLogsClient


class Logging(DeclarativeContainer):
    """Log handlers for the index manager.

    Records always go to stderr as JSON. The CloudWatch handler, and the boto3
    client behind it, are only built when `cloudwatch_enabled` is set.
    """

    config = providers.Configuration()

    formatter: Provider[JSONFormatter] = Singleton(JSONFormatter)

    stream_handler: Provider[Handler] = Singleton(
        create_stream_handler, formatter=formatter
    )

    # Credentials come from boto3's default chain.
    cloudwatch_client: Provider[CloudWatchLogsClient] = Singleton(
        boto3.client, service_name="logs", region_name=config.cloudwatch_region
    )

    cloudwatch_handler: Provider[Handler] = Singleton(
        create_cloudwatch_handler,
        formatter=formatter,
        client=cloudwatch_client,
        group=config.cloudwatch_group,
        stream=config.cloudwatch_stream,
        interval=config.cloudwatch_interval,
    )

    logging = providers.Resource(
        setup_logging,
        level=config.level,
        verbose_level=config.verbose_level,
        stream=stream_handler,
        cloudwatch_enabled=config.cloudwatch_enabled,
        cloudwatch_callable=cloudwatch_handler.provider,
    )
