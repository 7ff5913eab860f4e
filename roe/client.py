"""Top-level client for the Roe AI API."""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

import httpx

from roe.agents import AgentsAPI
from roe.auth import RoeAuth
from roe.config import RoeConfig, load_config
from roe.transport import HTTPTransport

logger = logging.getLogger(__name__)


def setup_debug_logging(config: RoeConfig) -> None:
    """Send ``roe`` debug logs to stdout when debug is on.

    Does nothing when the caller supplied a logger or the ``roe`` logger
    already has handlers.
    """
    if not config.debug or config.logger is not None:
        return
    package_logger = logging.getLogger("roe")
    if package_logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG)


class RoeClient:
    """Client for the Roe AI agent API.

    Configuration is resolved from the arguments, then ``ROE_*`` environment
    variables, then the active profile in ``~/.roe/config.toml``.

    Example:
        >>> with RoeClient(api_key="...", organization_id="...") as client:
        ...     job = client.agents.run(agent_id, {"url": "https://example.com"})
        ...     result = job.wait()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        organization_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        *,
        config: Optional[RoeConfig] = None,
        http_client: Optional[httpx.Client] = None,
        profile: Optional[str] = None,
        config_path: Optional[Path] = None,
        **options: Any,
    ):
        """Initialize the client.

        Args:
            api_key: API key
            organization_id: Organization id
            base_url: API base URL
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt
            config: Fully resolved configuration; other arguments are ignored
            http_client: Pre-built httpx client, mainly for tests
            profile: Profile name in config.toml
            config_path: Override path to config.toml
            **options: Any other ``load_config`` keyword (debug, proxy, hooks, ...)

        Raises:
            ConfigurationError: A required value is missing or out of range
        """
        if config is None:
            config = load_config(
                api_key,
                organization_id,
                base_url,
                timeout,
                max_retries,
                profile=profile,
                config_path=config_path,
                **options,
            )
        self.config = config
        setup_debug_logging(config)

        self.transport = HTTPTransport(config, RoeAuth(config), http_client=http_client)
        self.agents = AgentsAPI(self.transport)
        logger.debug(f"Roe client ready for {config.base_url}")

    def __repr__(self) -> str:
        return f"RoeClient(base_url={self.config.base_url!r}, organization_id={self.config.organization_id!r})"

    def close(self) -> None:
        """Release pooled connections."""
        self.transport.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
