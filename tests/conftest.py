"""
Shared fixtures for label lookup tests.

Provides an in-memory label index standing in for the openFDA search API.
"""

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.label_lookup.config import Config
from src.label_lookup.exceptions import NoMatchesError
from src.label_lookup.models import LabelSearchResult, SearchField
from src.label_lookup.resolvers.substance_resolver import SubstanceResolver


def make_label(substances: Sequence[str], brand: Optional[str] = None, set_id: Optional[str] = None) -> Dict:
    """Build a minimal openFDA label record."""
    openfda = {"substance_name": list(substances)}
    if brand:
        openfda["brand_name"] = [brand]
    return {"set_id": set_id or "-".join(substances).lower() or "none", "openfda": openfda}


@dataclass
class SearchCall:
    field: SearchField
    value: Union[str, Tuple[str, ...]]
    limit: int
    skip: int
    api_key: Optional[str]


class FakeLabelClient:
    """
    In-memory label search.

    Labels are registered per (field, value). Compound values are keyed by
    their segments, lower-cased, in order. Missing keys raise NoMatchesError
    like openFDA's 404.
    """

    def __init__(self):
        self.index: Dict[Tuple[SearchField, object], Tuple[List[Dict], Optional[int]]] = {}
        self.calls: List[SearchCall] = []
        self.errors: Dict[Tuple[SearchField, object], Exception] = {}

    @staticmethod
    def _key(value) -> object:
        if isinstance(value, str):
            return value.lower()
        return tuple(v.lower() for v in value)

    def add(self, field: SearchField, value, records: List[Dict], total: Optional[int] = None):
        self.index[(field, self._key(value))] = (records, total)

    def fail(self, field: SearchField, value, error: Exception):
        self.errors[(field, self._key(value))] = error

    def search(self, field, value, limit, skip=0, api_key=None) -> LabelSearchResult:
        stored_value = value if isinstance(value, str) else tuple(value)
        self.calls.append(SearchCall(field, stored_value, limit, skip, api_key))

        key = (field, self._key(value))
        if key in self.errors:
            raise self.errors[key]
        if key not in self.index:
            raise NoMatchesError("No matches found!", status_code=404)

        records, total = self.index[key]
        return LabelSearchResult(
            records=records[skip:skip + limit],
            total=total if total is not None else len(records)
        )

    def calls_for(self, field: SearchField, limit: Optional[int] = None) -> List[SearchCall]:
        return [
            c for c in self.calls
            if c.field == field and (limit is None or c.limit == limit)
        ]


@pytest.fixture
def config():
    """Default configuration without reading the environment."""
    return Config()


@pytest.fixture
def fake_client():
    return FakeLabelClient()


@pytest.fixture
def resolver(fake_client, config):
    return SubstanceResolver(client=fake_client, config=config)
