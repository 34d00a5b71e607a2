"""
Provider drivers.

new_client() builds the driver selected by ClientConfig.driver. Drivers are
independent of each other; all of them satisfy scmkit.drivers.protocol.Driver.
"""

from __future__ import annotations

import httpx

from scmkit.config import ClientConfig, DriverKind
from scmkit.drivers.protocol import Driver
from scmkit.logging_config import get_logger

logger = get_logger(__name__)


def new_client(
    config: ClientConfig, transport: httpx.AsyncBaseTransport | None = None
) -> Driver:
    """Build a provider-bound client.

    transport replaces the network layer (httpx.MockTransport in tests).
    Raises ValueError when the configuration cannot address a provider.
    """
    # Fail fast on a missing server URL rather than on the first request
    base_url = config.base_url()

    match config.driver:
        case DriverKind.STASH:
            from scmkit.drivers.stash import StashDriver

            driver: Driver = StashDriver(config, transport=transport)

        case DriverKind.BITBUCKET:
            from scmkit.drivers.bitbucket import BitbucketDriver

            driver = BitbucketDriver(config, transport=transport)

        case DriverKind.GITHUB:
            from scmkit.drivers.github import GitHubDriver

            driver = GitHubDriver(config, transport=transport)

        case DriverKind.GITLAB:
            from scmkit.drivers.gitlab import GitLabDriver

            driver = GitLabDriver(config, transport=transport)

        case _:
            raise ValueError(f"Unsupported driver: {config.driver}")

    logger.debug("Client created", driver=str(config.driver), server_url=base_url)
    return driver
