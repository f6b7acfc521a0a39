from pydantic_settings import SettingsConfigDict

from palace.index_manager.search.migrator import MigrationConfig
from palace.index_manager.service.configuration.service_configuration import (
    ServiceConfiguration,
)
from palace.index_manager.util.pydantic import HttpUrl


class SearchConfiguration(ServiceConfiguration):
    url: HttpUrl
    # Used at the start of every index and alias name, and as the owner recorded
    # in the `_meta.type` of each index's mappings.
    index_prefix: str = "palace"
    # Directory holding one JSON mapping file per document kind.
    mappings_path: str = "mappings"
    timeout: int = 20
    maxsize: int = 25
    migration: MigrationConfig = MigrationConfig()
    model_config = SettingsConfigDict(env_prefix="PALACE_SEARCH_")
