from __future__ import annotations

from typing import Any

from pydantic import ValidationError
from pydantic_core import ErrorDetails
from pydantic_settings import BaseSettings, SettingsConfigDict

from palace.index_manager.core.exceptions import CannotLoadConfiguration


class ServiceConfiguration(BaseSettings):
    """
    Base class for the index manager's settings.

    Subclasses declare their settings as pydantic fields and set an `env_prefix`.
    Values come from keyword arguments first, then environment variables, then a
    `.env` file in the working directory. Nested models are set with a double
    underscore, so PALACE_SEARCH_MIGRATION__POLL_ATTEMPTS sets
    `migration.poll_attempts` on the search settings.
    """

    model_config = SettingsConfigDict(
        env_prefix="PALACE_",
        str_strip_whitespace=True,
        frozen=True,
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    def __init__(self, *args: Any, **kwargs: Any):
        try:
            super().__init__(*args, **kwargs)
        except ValidationError as e:
            lines = ["Error loading settings from environment:"]
            lines.extend(f"  {self._describe(error)}" for error in e.errors())
            raise CannotLoadConfiguration("\n".join(lines)) from e

    @classmethod
    def _environment_variable(cls, location: tuple[int | str, ...]) -> str:
        """The environment variable an operator sets to fix the value at a
        pydantic error location."""
        field, *nested = (str(part) for part in location)
        if field in cls.model_fields:
            field = f"{cls.model_config.get('env_prefix', '')}{field}"
        delimiter = cls.model_config.get("env_nested_delimiter") or "__"
        return delimiter.join([field, *nested]).upper()

    @classmethod
    def _describe(cls, error: ErrorDetails) -> str:
        if not error["loc"]:
            return error["msg"]
        return f"{cls._environment_variable(error['loc'])}:  {error['msg']}"
