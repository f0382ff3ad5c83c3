"""
OpenFDA Label Search Client

Issues single search requests against the openFDA drug label endpoint and
normalizes every failure into a LabelSearchError.
"""

import logging
from typing import Dict, Optional, Sequence, Union

from pydantic import ValidationError

from src.label_lookup.api_clients.base_client import BaseAPIClient
from src.label_lookup.config import Config, get_config
from src.label_lookup.exceptions import (
    ApiError,
    LabelSearchError,
    NoMatchesError,
    TransportError,
    is_no_matches_message,
)
from src.label_lookup.models import LabelSearchResponse, LabelSearchResult, SearchField

logger = logging.getLogger(__name__)

SearchValue = Union[str, Sequence[str]]


def build_search_query(field: SearchField, value: SearchValue) -> str:
    """
    Build an openFDA search expression for exact (quoted) matching.

    A sequence of values becomes an AND conjunction over the same field.
    """
    values = [value] if isinstance(value, str) else list(value)
    terms = []
    for v in values:
        # Embedded quotes would break the quoted phrase
        clean_value = v.strip().replace('"', '')
        terms.append(f'{field.search_key}:"{clean_value}"')
    return " AND ".join(terms)


class OpenFDALabelClient(BaseAPIClient):
    """
    Client for the openFDA drug label search API.

    Rate limits (enforced server side):
    - With API key: 240 requests/minute, 120,000 requests/day
    - Without API key: 40 requests/minute, 1,000 requests/day
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        session=None
    ):
        """
        Initialize openFDA label client.

        Args:
            config: Configuration (global config if not provided)
            session: Pre-built requests session (mainly for tests)
        """
        self.config = config or get_config()
        api = self.config.api
        self.endpoint = api.label_endpoint

        super().__init__(
            base_url=api.openfda_base_url,
            timeout=api.request_timeout,
            max_retries=api.max_retries,
            name="OpenFDA",
            session=session
        )

    def search(
        self,
        field: SearchField,
        value: SearchValue,
        limit: int,
        skip: int = 0,
        api_key: Optional[str] = None
    ) -> LabelSearchResult:
        """
        Search drug labels on one openfda field.

        Args:
            field: Field to filter on
            value: Exact value, or several values to AND together
            limit: Page size
            skip: Offset of the first record (omitted when 0)
            api_key: openFDA API key

        Returns:
            LabelSearchResult with the page records and the reported total

        Raises:
            NoMatchesError: The query matched no label
            LabelSearchError: Any other transport or API failure
        """
        params: Dict[str, object] = {
            "search": build_search_query(field, value),
            "limit": limit,
        }
        if skip:
            params["skip"] = skip
        if api_key:
            params["api_key"] = api_key

        try:
            return self._execute(params)
        except NoMatchesError:
            raise
        except LabelSearchError as e:
            logger.error(
                f"[{self.name}] Label search failed "
                f"(field={field.value}, value={value!r}, limit={limit}, skip={skip}): {e}"
            )
            raise

    def _execute(self, params: Dict[str, object]) -> LabelSearchResult:
        response = self._get_response(self.endpoint, params=params)
        body = self._decode_json(response)

        if not response.ok:
            message = None
            if isinstance(body, dict):
                message = (body.get("error") or {}).get("message")
            message = message or f"HTTP {response.status_code}"
            if is_no_matches_message(message):
                raise NoMatchesError(message, status_code=response.status_code)
            raise TransportError(message, status_code=response.status_code)

        if not isinstance(body, dict):
            raise TransportError("Malformed response body", status_code=response.status_code)

        try:
            parsed = LabelSearchResponse.model_validate(body)
        except ValidationError as e:
            raise TransportError(
                f"Unexpected response format: {e.error_count()} validation error(s)",
                status_code=response.status_code
            )

        if parsed.error is not None:
            message = parsed.error.message or "Unknown API error"
            if is_no_matches_message(message):
                raise NoMatchesError(message, status_code=response.status_code)
            raise ApiError(message, status_code=response.status_code)

        return LabelSearchResult(records=parsed.results, total=parsed.total)

    def health_check(self) -> bool:
        """Check if openFDA is accessible."""
        try:
            params: Dict[str, object] = {"limit": 1}
            if self.config.api.openfda_api_key:
                params["api_key"] = self.config.api.openfda_api_key
            self._execute(params)
            return True
        except LabelSearchError as e:
            logger.warning(f"[{self.name}] Health check failed: {e}")
            return False
