"""
Base API Client

Common HTTP plumbing for label lookup API clients:
- Shared requests session with a configurable retry adapter
- Uniform error normalization
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from src.label_lookup.exceptions import TransportError

logger = logging.getLogger(__name__)


class BaseAPIClient(ABC):
    """
    Base class for API clients.

    Owns one requests session, safe to share between worker threads for
    plain GET requests.
    """

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_retries: int = 0,
        name: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize API client.

        Args:
            base_url: Base URL for API endpoints
            timeout: Request timeout in seconds
            max_retries: Transport-level retry attempts (0 disables retries)
            name: Client name for logging
            session: Pre-built session (mainly for tests)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.max_retries = max_retries
        self.name = name or self.__class__.__name__
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def _get_response(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[int] = None
    ) -> requests.Response:
        """
        Issue a GET request and return the raw response.

        Raises:
            TransportError: On timeout or connection failure
        """
        url = f"{self.base_url}{endpoint}" if not endpoint.startswith('http') else endpoint

        try:
            return self.session.get(
                url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=timeout or self.timeout
            )
        except requests.exceptions.Timeout:
            raise TransportError(f"Request timed out after {timeout or self.timeout}s")
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Request failed: {e}")

    @staticmethod
    def _decode_json(response: requests.Response) -> Optional[Any]:
        """Decode a JSON body, returning None if the body is not JSON."""
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def close(self):
        """Close the underlying HTTP session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def health_check(self) -> bool:
        """Check if API is accessible."""
        pass
