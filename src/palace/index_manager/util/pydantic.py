from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    BeforeValidator,
    GetCoreSchemaHandler,
    HttpUrl as HttpUrlPydantic,
)
from pydantic_core import CoreSchema, core_schema


# Pydantic's network types don't inherit from str, but the search client expects
# its hosts as plain strings. This validates the value as a URL, then hands back
# the string without the trailing slash pydantic adds.
class Chain:
    def __init__(self, validations: list[Any]) -> None:
        self.validations = validations

    def __get_pydantic_core_schema__(
        self, source_type: Any, handler: GetCoreSchemaHandler
    ) -> CoreSchema:
        return core_schema.chain_schema(
            [
                *(handler.generate_schema(v) for v in self.validations),
                handler(source_type),
            ]
        )


def strip_slash(value: str) -> str:
    return value.rstrip("/")


HttpUrl = Annotated[
    str, AfterValidator(strip_slash), BeforeValidator(str), Chain([HttpUrlPydantic])
]
