from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable, Mapping, Sequence
from logging import Handler
from typing import TYPE_CHECKING, Any

from watchtower import CloudWatchLogHandler

from palace.index_manager.service.logging.configuration import LogLevel
from palace.index_manager.util.datetime_helpers import from_timestamp
from palace.index_manager.util.json import json_serializer

if TYPE_CHECKING:
    from mypy_boto3_logs import CloudWatchLogsClient


class JSONFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__()
        self.hostname = socket.getfqdn()
        self.main_thread_id = threading.main_thread().ident

    @staticmethod
    def _is_json_serializable(v: Any) -> bool:
        try:
            json_serializer(v)
            return True
        except (TypeError, ValueError):
            return False

    def format(self, record: logging.LogRecord) -> str:
        def ensure_str(s: Any) -> Any:
            """Ensure that unicode strings are used for a record's message."""
            if isinstance(s, bytes):
                s = s.decode("utf-8")
            return s

        message = ensure_str(record.msg)
        if record.args:
            record_args: tuple[Any, ...] | dict[str, Any] | None = None
            if isinstance(record.args, Mapping):
                record_args = {
                    ensure_str(k): ensure_str(v) for k, v in record.args.items()
                }
            elif isinstance(record.args, Sequence):
                record_args = tuple(ensure_str(arg) for arg in record.args)

            if record_args is not None:
                try:
                    message = message % record_args
                except Exception as e:
                    # A problem with a log message shouldn't break the code that
                    # is doing the work, but it still needs to be reported.
                    message = (
                        "Log message could not be formatted. Exception: %r. Original message: message=%r args=%r"
                        % (e, message, record_args)
                    )
        data: dict[str, Any] = dict(
            host=self.hostname,
            name=record.name,
            level=record.levelname,
            filename=record.filename,
            message=message,
            timestamp=from_timestamp(record.created).isoformat(),
        )
        if record.exc_info:
            data["traceback"] = self.formatException(record.exc_info)
        if record.process:
            data["process"] = record.process
        if record.thread and record.thread != self.main_thread_id:
            data["thread"] = record.thread
        if record.stack_info:
            data["stack"] = self.formatStack(record.stack_info)

        # Include any custom ('palace_' prefixed) attributes that have been added to
        # the LogRecord, with the prefix removed. The migrator uses these to attach
        # the index names it is working on.
        for key, value in record.__dict__.items():
            if (
                key != (log_data_key := key.removeprefix("palace_"))
                and value is not None
                and self._is_json_serializable(value)
                and log_data_key not in data
            ):
                data[log_data_key] = value

        return json_serializer(data)


class LogLoopPreventionFilter(logging.Filter):
    """
    A filter that makes sure no messages from botocore or the urllib3 connection pool
    are processed by the cloudwatch logs integration, as these messages can lead to an
    infinite loop.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith("botocore"):
            return False
        elif record.name.startswith("urllib3.connectionpool"):
            return False

        return True


def create_cloudwatch_handler(
    formatter: logging.Formatter,
    client: CloudWatchLogsClient,
    group: str,
    stream: str,
    interval: int,
) -> logging.Handler:
    handler = CloudWatchLogHandler(
        log_group_name=group,
        log_stream_name=stream,
        send_interval=interval,
        boto3_client=client,
        create_log_group=True,
    )

    handler.addFilter(LogLoopPreventionFilter())
    handler.setFormatter(formatter)
    return handler


def create_stream_handler(formatter: logging.Formatter) -> logging.Handler:
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    return stream_handler


def setup_logging(
    level: LogLevel,
    verbose_level: LogLevel,
    stream: Handler,
    cloudwatch_enabled: bool,
    cloudwatch_callable: Callable[[], Handler],
) -> None:
    log_handlers = [stream]
    if cloudwatch_enabled:
        log_handlers.append(cloudwatch_callable())
    logging.basicConfig(force=True, level=level.value, handlers=log_handlers)

    # The search client and its transport log every request, which is far too
    # noisy at the normal log level.
    for logger in (
        "opensearch",
        "opensearchpy",
        "requests.packages.urllib3.connectionpool",
        "botocore",
        "urllib3.connectionpool",
    ):
        logging.getLogger(logger).setLevel(verbose_level.value)
