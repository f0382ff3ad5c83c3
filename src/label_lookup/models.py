"""
Data models for the label lookup system.

Dataclasses for queries, outcomes and batch snapshots, plus the pydantic model
used to validate openFDA label search responses.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


LabelRecord = Dict[str, Any]

SEGMENT_SEPARATOR = ";"


class SearchField(Enum):
    """openFDA fields a substance lookup may probe, in fallback order."""
    SUBSTANCE_NAME = "substance_name"
    BRAND_NAME = "brand_name"

    @property
    def search_key(self) -> str:
        return f"openfda.{self.value}"


class QueryStatus(Enum):
    """Lifecycle status of one name within a query batch."""
    PENDING = "pending"
    IN_PROGRESS = "querying"
    SUCCESS = "success"
    FAILURE = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (QueryStatus.SUCCESS, QueryStatus.FAILURE)


@dataclass(frozen=True)
class SubstanceQuery:
    """A user-entered name and its `;`-separated substance segments."""
    raw_name: str
    segments: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, raw_name: str) -> "SubstanceQuery":
        segments = tuple(
            part.strip() for part in raw_name.split(SEGMENT_SEPARATOR) if part.strip()
        )
        return cls(raw_name=raw_name, segments=segments)

    @property
    def is_empty(self) -> bool:
        return not self.segments

    @property
    def is_compound(self) -> bool:
        return len(self.segments) > 1


@dataclass
class LabelSearchResult:
    """One window of label search results."""
    records: List[LabelRecord] = field(default_factory=list)
    total: int = 0


@dataclass
class ResolvedLabel:
    """
    Result of resolving one name.

    `composite` is True when the resolver picked a single record itself, and
    False when the records are the raw result list of a brand name search.
    Downstream code reads `record` either way.
    """
    records: List[LabelRecord]
    total: int = 0
    composite: bool = True

    @classmethod
    def single(cls, record: LabelRecord) -> "ResolvedLabel":
        return cls(records=[record], total=1, composite=True)

    @property
    def record(self) -> Optional[LabelRecord]:
        return self.records[0] if self.records else None

    def to_response(self) -> Dict[str, Any]:
        """Render as an openFDA-shaped response payload."""
        return {
            "meta": {"results": {"total": self.total}, "composite": self.composite},
            "results": list(self.records),
        }


@dataclass(frozen=True)
class QueryOutcome:
    """Status of one name, with its label on success or message on failure."""
    status: QueryStatus
    label: Optional[ResolvedLabel] = None
    error: Optional[str] = None

    @classmethod
    def pending(cls) -> "QueryOutcome":
        return cls(status=QueryStatus.PENDING)

    @classmethod
    def in_progress(cls) -> "QueryOutcome":
        return cls(status=QueryStatus.IN_PROGRESS)

    @classmethod
    def success(cls, label: ResolvedLabel) -> "QueryOutcome":
        return cls(status=QueryStatus.SUCCESS, label=label)

    @classmethod
    def failure(cls, message: str) -> "QueryOutcome":
        return cls(status=QueryStatus.FAILURE, error=message)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class QueryUpdate:
    """A single published status transition."""
    generation: int
    name: str
    outcome: QueryOutcome


@dataclass(frozen=True)
class QueryBatch:
    """Read-only snapshot of every name's outcome in one query run."""
    generation: int = 0
    outcomes: Mapping[str, QueryOutcome] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def snapshot(cls, generation: int, outcomes: Mapping[str, QueryOutcome]) -> "QueryBatch":
        return cls(generation=generation, outcomes=MappingProxyType(dict(outcomes)))

    @property
    def all_finished(self) -> bool:
        return all(outcome.is_terminal for outcome in self.outcomes.values())

    def counts(self) -> Dict[QueryStatus, int]:
        counts = {status: 0 for status in QueryStatus}
        for outcome in self.outcomes.values():
            counts[outcome.status] += 1
        return counts

    def successful(self) -> Dict[str, ResolvedLabel]:
        return {
            name: outcome.label
            for name, outcome in self.outcomes.items()
            if outcome.status == QueryStatus.SUCCESS
        }

    def failed(self) -> Dict[str, str]:
        return {
            name: outcome.error or "Unknown error"
            for name, outcome in self.outcomes.items()
            if outcome.status == QueryStatus.FAILURE
        }

    def __len__(self) -> int:
        return len(self.outcomes)

    def __contains__(self, name: object) -> bool:
        return name in self.outcomes

    def __getitem__(self, name: str) -> QueryOutcome:
        return self.outcomes[name]


# openFDA response validation


class ResultsMeta(BaseModel):
    total: Optional[int] = None


class LabelSearchMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    last_updated: Optional[str] = None
    results: Optional[ResultsMeta] = None


class LabelApiErrorBody(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None


class LabelSearchResponse(BaseModel):
    """Body of an openFDA /drug/label.json response."""
    model_config = ConfigDict(extra="allow")

    meta: Optional[LabelSearchMeta] = None
    results: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[LabelApiErrorBody] = None

    @property
    def total(self) -> int:
        if self.meta and self.meta.results and self.meta.results.total is not None:
            return self.meta.results.total
        return len(self.results)
