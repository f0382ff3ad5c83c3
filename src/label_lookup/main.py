"""
Label Lookup - Main Entry Point

Usage:
    python -m src.label_lookup.main ibuprofen "aspirin; caffeine"
    python -m src.label_lookup.main --file names.csv --json
    python -m src.label_lookup.main --health-check
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.label_lookup.api_clients.openfda_client import OpenFDALabelClient
from src.label_lookup.config import ConfigurationError, get_config
from src.label_lookup.models import QueryBatch, QueryStatus
from src.label_lookup.parsers.name_parser import parse_generic_names, read_names_file
from src.label_lookup.processors.query_orchestrator import QueryOrchestrator
from src.label_lookup.resolvers.substance_resolver import SubstanceResolver
from src.label_lookup.utils.label_fields import (
    flatten_for_display,
    get_available_field_keys,
    get_field_counts,
    get_missing_selected_fields,
)
from src.label_lookup.utils.logger import get_logger, setup_logger


def positive_int(value: str) -> int:
    """argparse type for counts that must be at least 1."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def collect_names(args: argparse.Namespace) -> List[str]:
    """Gather names from positional arguments and --file."""
    names: List[str] = []
    for value in args.names:
        names.extend(parse_generic_names(value))
    if args.file:
        names.extend(read_names_file(args.file))
    return names


def batch_to_payload(batch: QueryBatch, fields: Optional[List[str]] = None) -> Dict[str, Dict]:
    """Render a batch as {name: {"status", "data" | "error"}}."""
    payload: Dict[str, Dict] = {}
    for name, outcome in batch.outcomes.items():
        entry: Dict = {"status": outcome.status.value}
        if outcome.status == QueryStatus.SUCCESS:
            entry["data"] = outcome.label.to_response()
            if fields:
                entry["fields"] = flatten_for_display(outcome.label.records, fields)
        elif outcome.status == QueryStatus.FAILURE:
            entry["error"] = outcome.error
        payload[name] = entry
    return payload


def log_summary(batch: QueryBatch, fields: Optional[List[str]] = None):
    """Log a per-name summary of a completed batch."""
    logger = get_logger()
    counts = batch.counts()

    logger.info(f"\n{'='*60}")
    logger.info("LABEL QUERY SUMMARY")
    logger.info(f"{'='*60}")
    logger.info(f"  Total Names: {len(batch)}")
    logger.info(f"  Successful: {counts[QueryStatus.SUCCESS]}")
    logger.info(f"  Failed: {counts[QueryStatus.FAILURE]}")

    for name, label in batch.successful().items():
        openfda = (label.record or {}).get("openfda", {})
        brand = ", ".join(openfda.get("brand_name", [])) or "N/A"
        substances = ", ".join(openfda.get("substance_name", [])) or "N/A"
        logger.info(f"  [OK] {name}: {brand} ({substances})")
        if fields:
            missing = get_missing_selected_fields(get_available_field_keys(label.records), fields)
            if missing:
                logger.warning(f"       missing fields: {', '.join(missing)}")

    failures = batch.failed()
    if failures:
        logger.warning(f"\nErrors ({len(failures)}):")
        for name, error in failures.items():
            logger.warning(f"  - {name}: {error}")

    if fields:
        logger.info("\nField coverage:")
        for field, count in get_field_counts(batch, fields).items():
            logger.info(f"  {field}: {count}/{len(batch)}")

    logger.info(f"{'='*60}")


def run_health_check() -> int:
    """Check connectivity to openFDA."""
    logger = get_logger()
    with OpenFDALabelClient() as client:
        if client.health_check():
            logger.info("  ✓ OpenFDA: Accessible")
            return 0
    logger.error("  ✗ OpenFDA: Health check failed")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Label Lookup - Resolve substance names to openFDA drug labels"
    )

    parser.add_argument("names", nargs="*",
                        help="Substance names (compounds joined with ';')")
    parser.add_argument("--file", type=str,
                        help="Text or CSV file with substance names")
    parser.add_argument("--api-key", type=str, default=None,
                        help="openFDA API key (defaults to OPEN_FDA_API_KEY)")
    parser.add_argument("--concurrency", type=positive_int, default=None,
                        help="Max concurrent queries")
    parser.add_argument("--fields", type=str, default=None,
                        help="Comma-separated label fields to show")
    parser.add_argument("--json", action="store_true",
                        help="Print results as JSON on stdout")
    parser.add_argument("--health-check", action="store_true",
                        help="Check connectivity to openFDA")
    parser.add_argument("--log-level", type=str, default=None,
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args(argv)

    try:
        config = get_config(strict=True)
    except ConfigurationError as e:
        print(str(e), file=sys.stderr)
        return 1

    logger = setup_logger(config.logging, level=args.log_level, console_output=not args.json)

    if args.health_check:
        return run_health_check()

    names = collect_names(args)
    if not names:
        parser.print_help()
        return 1

    fields = parse_generic_names(args.fields) if args.fields else None
    api_key = args.api_key or config.api.openfda_api_key

    try:
        with OpenFDALabelClient(config=config) as client:
            orchestrator = QueryOrchestrator(
                resolver=SubstanceResolver(client=client, config=config),
                max_concurrent_queries=config.processing.max_concurrent_queries
            )
            batch = orchestrator.run(names, api_key=api_key, concurrency=args.concurrency)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        return 1

    if args.json:
        print(json.dumps(batch_to_payload(batch, fields), indent=2, default=str))
    else:
        log_summary(batch, fields)

    return 0 if not batch.failed() else 1


if __name__ == "__main__":
    sys.exit(main())
