"""
Processors module for label lookup.

Provides concurrent query runs over many names.
"""

from src.label_lookup.processors.query_orchestrator import QueryOrchestrator, QueryRun

__all__ = [
    "QueryOrchestrator",
    "QueryRun",
]
