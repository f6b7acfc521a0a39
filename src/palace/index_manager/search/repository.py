from __future__ import annotations

from typing import Any

from opensearchpy import OpenSearch, RequestError, TransportError

from palace.index_manager.core.exceptions import BasePalaceException
from palace.index_manager.search.registry import MappingsRegistry
from palace.index_manager.util.cancellation import CancellationToken
from palace.index_manager.util.log import LoggerMixin

RESOURCE_ALREADY_EXISTS = "resource_already_exists_exception"


class IndexRepositoryException(BasePalaceException):
    """An index could not be created or deleted."""


class IndexRepository(LoggerMixin):
    """Creates and deletes indices using the mappings held in the registry.

    Creation is idempotent: an index that already exists, including one
    created by another process between our existence check and our create
    request, is left alone.
    """

    def __init__(self, client: OpenSearch, registry: MappingsRegistry) -> None:
        self._client = client
        self._registry = registry

    def create_index(
        self,
        index_name: str,
        alias_name: str | None,
        document_kind: str,
        token: CancellationToken | None = None,
    ) -> None:
        """Create an index with the current mappings for a document kind.

        :param alias_name: If given, the alias is added to the new index as
            part of the same request.
        :raises IndexRepositoryException: If the document kind has no mapping,
            or the search engine returns an error other than the index already
            existing.
        """
        token = token or CancellationToken.never()

        token.raise_if_cancelled(f"checking if index {index_name} exists")
        try:
            exists = self._client.indices.exists(index=index_name)
        except TransportError as e:
            raise IndexRepositoryException(
                f"Error checking if index {index_name} exists: {e}"
            ) from e

        if exists:
            self.log.info(f"Index {index_name} already exists.")
            return

        mapping = self._registry.mapping(document_kind)
        if mapping is None:
            raise IndexRepositoryException(
                f"No mapping found for document kind {document_kind}"
            )

        body: dict[str, Any] = {"mappings": mapping.mappings}
        if mapping.settings is not None:
            body["settings"] = mapping.settings
        if alias_name:
            body["aliases"] = {alias_name: {}}

        token.raise_if_cancelled(f"creating index {index_name}")
        try:
            self._client.indices.create(index=index_name, body=body)
        except RequestError as e:
            # Another instance may be creating the same index, for example while
            # running the same migration.
            if e.error == RESOURCE_ALREADY_EXISTS:
                self.log.info(f"Index {index_name} already exists.")
                return
            raise IndexRepositoryException(
                f"Error creating index {index_name}: {e}"
            ) from e
        except TransportError as e:
            raise IndexRepositoryException(
                f"Error creating index {index_name}: {e}"
            ) from e

        self.log.info(f"Created index {index_name}.")

    def delete_index(
        self, index_name: str, token: CancellationToken | None = None
    ) -> None:
        """Delete an index, which also removes any aliases pointing at it.

        :raises IndexRepositoryException: If the search engine returns any error,
            including the index not existing.
        """
        token = token or CancellationToken.never()
        token.raise_if_cancelled(f"deleting index {index_name}")
        try:
            self._client.indices.delete(index=index_name)
        except TransportError as e:
            raise IndexRepositoryException(
                f"Error deleting index {index_name}: {e}"
            ) from e

        self.log.debug(f"Deleted index {index_name}.")
