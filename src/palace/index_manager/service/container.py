from dependency_injector import providers
from dependency_injector.containers import DeclarativeContainer
from dependency_injector.providers import Container

from palace.index_manager.service.logging.configuration import LoggingConfiguration
from palace.index_manager.service.logging.container import Logging
from palace.index_manager.service.search.configuration import SearchConfiguration
from palace.index_manager.service.search.container import Search


class Services(DeclarativeContainer):
    config = providers.Configuration()

    logging = Container(
        Logging,
        config=config.logging,
    )

    search = Container(
        Search,
        config=config.search,
    )


def create_container(
    search_config: SearchConfiguration | None = None,
    logging_config: LoggingConfiguration | None = None,
) -> Services:
    """Create the service container, loading any configuration that isn't
    passed in from the environment."""
    container = Services()
    container.config.from_dict(
        {
            "logging": (logging_config or LoggingConfiguration()).model_dump(),
            "search": (search_config or SearchConfiguration()).model_dump(),
        }
    )
    return container
