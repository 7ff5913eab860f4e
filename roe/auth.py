"""Authentication headers for the Roe API."""

from typing import List, Tuple

from roe.config import RoeConfig

USER_AGENT = "roe-python/0.1.0"


class RoeAuth:
    """Produce the authentication headers for every request.

    A key pasted with its ``Bearer`` prefix is accepted as-is; the prefix is
    not sent twice.
    """

    def __init__(self, config: RoeConfig):
        self.config = config

    @property
    def token(self) -> str:
        key = self.config.api_key
        if key.lower().startswith("bearer "):
            key = key[7:].strip()
        return key

    def headers(self) -> List[Tuple[str, str]]:
        return [
            ("Authorization", f"Bearer {self.token}"),
            ("User-Agent", USER_AGENT),
        ]
