"""ABOUTME: URL generation adapters for decoupling the service layer from the web front end
ABOUTME: Provides an abstract interface and a static base-URL implementation"""

from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode


class URLGenerator(ABC):
    """Abstract interface for generating URLs."""

    @abstractmethod
    def generate_url(self, endpoint: str, **values: Any) -> str:
        """
        Generate an absolute URL for the given endpoint.

        Args:
            endpoint: Endpoint name (e.g., "reset_password")
            **values: Query parameters to include

        Returns:
            Generated URL as a string
        """
        pass


class StaticURLGenerator(URLGenerator):
    """Builds URLs from a fixed base URL and a table of endpoint paths."""

    DEFAULT_PATHS = {
        "reset_password": "/account/reset-password",
        "login": "/account/login",
    }

    def __init__(self, base_url: str, paths: dict[str, str] | None = None):
        self.base_url = base_url.rstrip("/")
        self.paths = {**self.DEFAULT_PATHS, **(paths or {})}

    def generate_url(self, endpoint: str, **values: Any) -> str:
        try:
            path = self.paths[endpoint]
        except KeyError as e:
            raise ValueError(f"Unknown endpoint '{endpoint}'") from e
        url = f"{self.base_url}{path}"
        if values:
            url = f"{url}?{urlencode(values)}"
        return url
