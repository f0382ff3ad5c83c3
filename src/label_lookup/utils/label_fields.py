"""
Label field helpers.

Flatten label records into dotted key/value pairs for display, select the
fields a user asked for, and count how many resolved names carry each field.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence

from src.label_lookup.models import LabelRecord, QueryBatch


def flatten_label(obj: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """
    Flatten a nested label into {"openfda.brand_name": "A, B", ...}.

    Lists are joined with ", " and None values are skipped.
    """
    out: Dict[str, str] = {}
    for key, value in obj.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if value is None:
            continue
        if isinstance(value, list):
            out[full_key] = ", ".join(str(v) for v in value)
        elif isinstance(value, dict):
            out.update(flatten_label(value, full_key))
        else:
            out[full_key] = str(value)
    return out


def key_matches_field(key: str, field: str) -> bool:
    """A field selects a key if equal, equal with dots as underscores, or a dotted prefix."""
    return (
        key == field
        or key.replace(".", "_") == field
        or key.startswith(f"{field}.")
    )


def _first_record(records: Optional[Sequence[LabelRecord]]) -> Optional[LabelRecord]:
    if not records:
        return None
    first = records[0]
    return first if isinstance(first, dict) else None


def get_available_field_keys(records: Optional[Sequence[LabelRecord]]) -> List[str]:
    first = _first_record(records)
    if first is None:
        return []
    return list(flatten_label(first).keys())


def get_missing_selected_fields(available_keys: Iterable[str], selected_fields: Iterable[str]) -> List[str]:
    available_keys = list(available_keys)
    return [
        field for field in selected_fields
        if not any(key_matches_field(key, field) for key in available_keys)
    ]


def flatten_for_display(
    records: Optional[Sequence[LabelRecord]],
    selected_fields: Optional[Sequence[str]] = None
) -> Dict[str, str]:
    """Flatten the first record, keeping only selected fields if any are given."""
    first = _first_record(records)
    if first is None:
        return {}

    flat = flatten_label(first)
    if not selected_fields:
        return flat

    return {
        key: value for key, value in flat.items()
        if any(key_matches_field(key, field) for field in selected_fields)
    }


def label_has_field(label: LabelRecord, field: str) -> bool:
    return any(
        key_matches_field(key, field) and value != ""
        for key, value in flatten_label(label).items()
    )


def get_field_counts(batch: QueryBatch, fields: Sequence[str]) -> Dict[str, int]:
    """Count, per field, the resolved names whose labels carry a non-empty value."""
    counts = {field: 0 for field in fields}
    for resolved in batch.successful().values():
        for field in fields:
            if any(label_has_field(label, field) for label in resolved.records):
                counts[field] += 1
    return counts
