"""
Resolvers module for label lookup.

Provides substance name to label resolution.
"""

from src.label_lookup.resolvers.substance_resolver import ResolutionStep, SubstanceResolver

__all__ = [
    "ResolutionStep",
    "SubstanceResolver",
]
