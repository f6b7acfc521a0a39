from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from palace.index_manager.core.exceptions import BasePalaceException
from palace.index_manager.util.log import LoggerMixin, pluralize

INDEX_NAME_DELIMITER = "-"
MAPPING_FILE_SUFFIX = ".json"


class MappingsLoadException(BasePalaceException):
    """The index mappings could not be read from the mappings directory."""


class VersionedMapping(BaseModel):
    """The current schema for one document kind.

    The mappings and settings are passed to the search engine untouched when an
    index is created; they are never inspected here.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    version: str
    mappings: dict[str, Any]
    settings: dict[str, Any] | None = None


@dataclass(frozen=True)
class IndexNameParts:
    """The decoded form of a physical index name."""

    document_kind: str
    version: str
    inner: str = ""


def non_empty_join(parts: list[str], delimiter: str = INDEX_NAME_DELIMITER) -> str:
    return delimiter.join(part for part in parts if part)


class MappingsRegistry(LoggerMixin):
    """The set of document kinds we know about, their current versioned mappings,
    and the grammar used to turn them into index and alias names.

    Index names look like `{prefix}-{version}-{inner}-{document_kind}` and
    alias names like `{prefix}-{inner}-{document_kind}`, where the inner name
    is optional. The alias leaves out the version, so it stays the same from
    one schema version to the next.

    The registry is empty until `load_mappings` is called, and it can only be
    loaded once. After that it is read-only.
    """

    def __init__(self, index_prefix: str, mappings_path: Path | str) -> None:
        self._index_prefix = index_prefix
        self._mappings_path = Path(mappings_path)
        self._mappings: Mapping[str, VersionedMapping] = MappingProxyType({})
        self._loaded = False

    @property
    def index_prefix(self) -> str:
        return self._index_prefix

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def document_kinds(self) -> list[str]:
        return sorted(self._mappings)

    def load_mappings(self) -> None:
        """Read a versioned mapping for every JSON file in the mappings directory.

        The document kind is the name of the file with the extension removed, so
        `mappings/policies.json` holds the mapping for the `policies` kind.

        :raises MappingsLoadException: If the directory or any of its files can't
            be read, or a file isn't a valid versioned mapping.
        """
        if self._loaded:
            raise MappingsLoadException(
                "Mappings have already been loaded. Create a new registry to reload them."
            )

        try:
            files = sorted(self._mappings_path.iterdir())
        except OSError as e:
            raise MappingsLoadException(
                f"Error finding mappings in directory {self._mappings_path}: {e}"
            ) from e

        mappings: dict[str, VersionedMapping] = {}
        for file in files:
            if not file.is_file() or file.suffix != MAPPING_FILE_SUFFIX:
                continue

            try:
                contents = file.read_bytes()
            except OSError as e:
                raise MappingsLoadException(f"Error reading file {file}: {e}") from e

            try:
                mapping = VersionedMapping.model_validate_json(contents)
            except ValidationError as e:
                raise MappingsLoadException(
                    f'Invalid mapping in file "{file.name}": {e}'
                ) from e

            mappings[file.stem] = mapping

        self._mappings = MappingProxyType(mappings)
        self._loaded = True
        self.log.info(
            f"Loaded {pluralize(len(mappings), 'index mapping')} from {self._mappings_path}."
        )

    def version(self, document_kind: str) -> str | None:
        """The current schema version for a document kind, if we know about it."""
        mapping = self.mapping(document_kind)
        if mapping is None:
            return None
        return mapping.version

    def mapping(self, document_kind: str) -> VersionedMapping | None:
        return self._mappings.get(document_kind)

    def index_name(self, document_kind: str, inner: str = "") -> str:
        """The name of the index holding the current version of a document kind,
        such as 'palace-v1alpha1-tenant-policies'."""
        return non_empty_join(
            [
                self._index_prefix,
                self.version(document_kind) or "",
                inner,
                document_kind,
            ]
        )

    def alias_name(self, document_kind: str, inner: str = "") -> str:
        """The name of the alias that always points at the current index for a
        document kind, such as 'palace-tenant-policies'."""
        return non_empty_join([self._index_prefix, inner, document_kind])

    def _document_kind_for(self, name: str) -> str | None:
        # A document kind may contain the delimiter, so more than one kind can
        # be a suffix of the same name ('resource' and 'generic-resource').
        # The longest one is the most specific, so it wins.
        candidates = [
            document_kind
            for document_kind in self._mappings
            if name.endswith(INDEX_NAME_DELIMITER + document_kind)
        ]
        if not candidates:
            return None
        return max(candidates, key=len)

    def parse_index_name(self, index_name: str) -> IndexNameParts | None:
        """Break an index name back down into its document kind, version and
        inner name.

        :return: The parts of the name, or None if the name doesn't start with
            our prefix or doesn't end with a document kind we know about.
        """
        prefix = self._index_prefix + INDEX_NAME_DELIMITER
        if not index_name.startswith(prefix):
            return None
        remainder = index_name.removeprefix(prefix)

        document_kind = self._document_kind_for(remainder)
        if document_kind is None:
            return None
        remainder = remainder.removesuffix(INDEX_NAME_DELIMITER + document_kind)

        current_version = self.version(document_kind) or ""
        if remainder == current_version or remainder.startswith(
            current_version + INDEX_NAME_DELIMITER
        ):
            version = current_version
        else:
            # An index from an older schema version.
            version = remainder.split(INDEX_NAME_DELIMITER, 1)[0]

        if not version:
            return None

        inner = remainder.removeprefix(version).removeprefix(INDEX_NAME_DELIMITER)
        return IndexNameParts(
            document_kind=document_kind,
            version=version,
            inner=inner,
        )
