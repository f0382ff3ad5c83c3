"""
API Clients module for label lookup.
"""

from src.label_lookup.api_clients.base_client import BaseAPIClient
from src.label_lookup.api_clients.openfda_client import OpenFDALabelClient, build_search_query

__all__ = [
    "BaseAPIClient",
    "OpenFDALabelClient",
    "build_search_query",
]
