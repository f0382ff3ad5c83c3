"""
Substance Resolver

Resolves one user-entered substance name (or `;`-joined compound) to a single
openFDA drug label.

Resolution runs as a small state machine:

    SPLIT -> SUBSTANCE_SEARCH -> [SUBSTANCE_PAGINATION] -> [BRAND_FALLBACK] -> RESOLVED
    SPLIT -> COMPOUND_SCAN -> RESOLVED

Every step either returns the next step or raises. Only NoMatchesError is
absorbed, and only where a fallback step exists.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from src.label_lookup.api_clients.openfda_client import OpenFDALabelClient
from src.label_lookup.config import Config, get_config
from src.label_lookup.exceptions import NoMatchesError, QueryCancelledError, ResolutionError
from src.label_lookup.models import (
    LabelRecord,
    LabelSearchResult,
    ResolvedLabel,
    SearchField,
    SubstanceQuery,
)

logger = logging.getLogger(__name__)


class ResolutionStep(Enum):
    """States of a single resolution."""
    SPLIT = "split"
    SUBSTANCE_SEARCH = "substance_search"
    SUBSTANCE_PAGINATION = "substance_pagination"
    BRAND_FALLBACK = "brand_fallback"
    COMPOUND_SCAN = "compound_scan"
    RESOLVED = "resolved"


def get_substance_names(record: LabelRecord) -> List[str]:
    """Return the openfda.substance_name list of a label (empty if absent)."""
    openfda = record.get("openfda") or {}
    names = openfda.get("substance_name") or []
    if isinstance(names, str):
        return [names]
    return [str(n) for n in names]


def matches_single_substance(record: LabelRecord, segment: str) -> bool:
    """True if the label has exactly one substance and it contains the segment."""
    names = get_substance_names(record)
    return len(names) == 1 and segment.lower() in names[0].lower()


def matches_all_substances(record: LabelRecord, segments: Iterable[str]) -> bool:
    """
    True if the label has exactly len(segments) substances and every segment
    is contained in one of them.

    One substance entry may satisfy several segments.
    """
    segments = list(segments)
    names = [n.lower() for n in get_substance_names(record)]
    if len(names) != len(segments):
        return False
    return all(any(seg.lower() in name for name in names) for seg in segments)


def find_first(records: Iterable[LabelRecord], predicate: Callable[[LabelRecord], bool]) -> Optional[LabelRecord]:
    for record in records:
        if predicate(record):
            return record
    return None


@dataclass
class ResolutionContext:
    """Mutable state carried between resolution steps."""
    query: SubstanceQuery
    api_key: Optional[str] = None
    cancel_event: Optional[threading.Event] = None
    substance_total: int = 0
    result: Optional[ResolvedLabel] = None
    requests_made: int = 0


class SubstanceResolver:
    """
    Resolves substance names to exactly one drug label.

    Single names are matched on substance_name (with bounded pagination) and
    fall back to a brand_name lookup. Compound names are matched on the AND of
    their segments and filtered to labels with exactly that many substances.
    """

    def __init__(
        self,
        client: Optional[OpenFDALabelClient] = None,
        config: Optional[Config] = None
    ):
        """
        Initialize resolver.

        Args:
            client: Label search client (created if not provided)
            config: Configuration (global config if not provided)
        """
        self.config = config or get_config()
        self.client = client or OpenFDALabelClient(config=self.config)

        processing = self.config.processing
        self.default_page_size = processing.default_page_size
        self.pagination_page_size = processing.pagination_page_size
        self.compound_page_size = processing.compound_page_size
        self.max_skip = processing.max_skip

        self._steps: Dict[ResolutionStep, Callable[[ResolutionContext], ResolutionStep]] = {
            ResolutionStep.SPLIT: self._split,
            ResolutionStep.SUBSTANCE_SEARCH: self._substance_search,
            ResolutionStep.SUBSTANCE_PAGINATION: self._substance_pagination,
            ResolutionStep.BRAND_FALLBACK: self._brand_fallback,
            ResolutionStep.COMPOUND_SCAN: self._compound_scan,
        }

    def resolve(
        self,
        name: str,
        api_key: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> ResolvedLabel:
        """
        Resolve a name to a single label.

        Args:
            name: User-entered name, segments separated by ';'
            api_key: openFDA API key
            cancel_event: Set to abandon the resolution between requests

        Returns:
            ResolvedLabel

        Raises:
            ResolutionError: No path produced a label, or the name is empty
            LabelSearchError: A search failed with something other than NoMatches
            QueryCancelledError: cancel_event was set
        """
        ctx = ResolutionContext(
            query=SubstanceQuery.parse(name),
            api_key=api_key,
            cancel_event=cancel_event
        )

        step = ResolutionStep.SPLIT
        while step is not ResolutionStep.RESOLVED:
            logger.debug(f"Resolving '{name}': {step.value}")
            step = self._steps[step](ctx)

        logger.debug(f"Resolved '{name}' after {ctx.requests_made} request(s)")
        return ctx.result

    # Steps

    def _split(self, ctx: ResolutionContext) -> ResolutionStep:
        if ctx.query.is_empty:
            raise ResolutionError("empty name")
        if ctx.query.is_compound:
            return ResolutionStep.COMPOUND_SCAN
        return ResolutionStep.SUBSTANCE_SEARCH

    def _substance_search(self, ctx: ResolutionContext) -> ResolutionStep:
        segment = ctx.query.segments[0]
        try:
            page = self._search(ctx, SearchField.SUBSTANCE_NAME, segment, self.default_page_size)
        except NoMatchesError:
            return ResolutionStep.BRAND_FALLBACK

        match = find_first(page.records, lambda r: matches_single_substance(r, segment))
        if match is not None:
            ctx.result = ResolvedLabel.single(match)
            return ResolutionStep.RESOLVED

        ctx.substance_total = page.total
        if page.total > self.default_page_size:
            return ResolutionStep.SUBSTANCE_PAGINATION

        logger.debug(f"No single-substance label for '{segment}' in {page.total} result(s)")
        return ResolutionStep.BRAND_FALLBACK

    def _substance_pagination(self, ctx: ResolutionContext) -> ResolutionStep:
        segment = ctx.query.segments[0]
        total = ctx.substance_total
        skip = 0

        while skip < total and skip < self.max_skip:
            try:
                page = self._search(
                    ctx, SearchField.SUBSTANCE_NAME, segment, self.pagination_page_size, skip
                )
            except NoMatchesError:
                return ResolutionStep.BRAND_FALLBACK

            if not page.records:
                break

            match = find_first(page.records, lambda r: matches_single_substance(r, segment))
            if match is not None:
                ctx.result = ResolvedLabel.single(match)
                return ResolutionStep.RESOLVED

            total = page.total
            skip += self.pagination_page_size

        logger.debug(f"Scanned {skip} of {total} label(s) for '{segment}' without a match")
        return ResolutionStep.BRAND_FALLBACK

    def _brand_fallback(self, ctx: ResolutionContext) -> ResolutionStep:
        # Brand lookups are assumed specific; substance count is not re-checked
        segment = ctx.query.segments[0]
        page = self._search(ctx, SearchField.BRAND_NAME, segment, self.default_page_size)
        if not page.records:
            raise ResolutionError(f"no label found for '{segment}'")

        ctx.result = ResolvedLabel(records=page.records, total=page.total, composite=False)
        return ResolutionStep.RESOLVED

    def _compound_scan(self, ctx: ResolutionContext) -> ResolutionStep:
        segments = ctx.query.segments
        failure = ResolutionError(
            f"no matching label found with exactly {len(segments)} substance(s)"
        )
        skip = 0

        while skip < self.max_skip:
            try:
                page = self._search(
                    ctx, SearchField.SUBSTANCE_NAME, segments, self.compound_page_size, skip
                )
            except NoMatchesError:
                raise failure from None

            if not page.records:
                raise failure from None

            match = find_first(page.records, lambda r: matches_all_substances(r, segments))
            if match is not None:
                ctx.result = ResolvedLabel.single(match)
                return ResolutionStep.RESOLVED

            skip += self.compound_page_size

        raise failure

    def _search(
        self,
        ctx: ResolutionContext,
        field: SearchField,
        value,
        limit: int,
        skip: int = 0
    ) -> LabelSearchResult:
        if ctx.cancel_event is not None and ctx.cancel_event.is_set():
            raise QueryCancelledError(f"query for '{ctx.query.raw_name}' was cancelled")
        ctx.requests_made += 1
        return self.client.search(field, value, limit=limit, skip=skip, api_key=ctx.api_key)
