"""
Label Lookup

Resolves lists of drug substance names to single openFDA drug labels.

Features:
- openFDA label search client with uniform error handling
- Substance resolution with brand-name fallback and bounded pagination
- Compound (';'-joined) names matched on exact substance count
- Concurrent query runs with live per-name status
"""

__version__ = "1.0.0"

from src.label_lookup.models import QueryBatch, QueryOutcome, QueryStatus, ResolvedLabel
from src.label_lookup.processors.query_orchestrator import QueryOrchestrator
from src.label_lookup.resolvers.substance_resolver import SubstanceResolver

__all__ = [
    "QueryBatch",
    "QueryOutcome",
    "QueryStatus",
    "ResolvedLabel",
    "QueryOrchestrator",
    "SubstanceResolver",
    "__version__",
]
