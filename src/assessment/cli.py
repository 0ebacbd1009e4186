"""
Command-line interface for the assessment engine.

Provides subcommands for validating the rule catalog, listing programs,
and scoring or fully assessing applicant profiles stored as JSON.
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path
from typing import Optional

from . import assessment
from . import catalog
from . import normalizer
from . import scorer
from ..config import settings
from ..logging_config import configure_logging


def _load_profile(path: str) -> dict:
    with open(path) as f:
        return json.load(f)


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _load_entry(args: argparse.Namespace) -> catalog.RuleCatalogEntry:
    rules = catalog.RuleCatalog.load(Path(args.catalog))
    return rules.get_entry(args.program, args.country, _parse_date(args.date))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate rule catalog."""
    try:
        cat = catalog.load_catalog(Path(args.catalog))
        catalog.validate_catalog(cat)

        entries = cat.get("entries", [])
        print(f"Catalog valid: {args.catalog}")
        print(f"  Version: {cat.get('catalog_version')}")
        print(f"  Total entries: {len(entries)}")

        if args.verbose:
            print("\nEntries:")
            for e in entries:
                print(f"  {e['program']} ({e['country']}, {e['category']}): "
                      f"{len(e['criteria'])} criteria, {len(e['gates'])} gates")

        return 0

    except catalog.CatalogValidationError as e:
        print(f"Validation failed: {e}", file=sys.stderr)
        return 1
    except (OSError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List programs in the catalog."""
    try:
        rules = catalog.RuleCatalog.load(Path(args.catalog))
        for entry in rules.list_entries(country=args.country, category=args.category):
            until = entry.effective_to.isoformat() if entry.effective_to else "open"
            print(f"{entry.program:<36} {entry.category:<11} "
                  f"{entry.effective_from.isoformat()} .. {until}  {entry.title}")
        return 0

    except (catalog.CatalogValidationError, OSError, json.JSONDecodeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_score(args: argparse.Namespace) -> int:
    """Score a profile against one program."""
    try:
        entry = _load_entry(args)
        profile = normalizer.normalize(_load_profile(args.profile), entry.country, _parse_date(args.as_of))
        breakdown = scorer.score(profile, entry)

        if args.json:
            print(json.dumps(breakdown.to_dict(), indent=2))
            return 0

        print(f"{entry.title}: {breakdown.total_score} / {entry.max_total}")
        for item in breakdown.criteria:
            print(f"  {item.criterion_id:<24} {item.points_awarded:>4} / {item.max_points}")
        return 0

    except (catalog.NotFound, catalog.CatalogValidationError, normalizer.UnsupportedLanguageTest,
            OSError, json.JSONDecodeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_assess(args: argparse.Namespace) -> int:
    """Run a full assessment (score, eligibility, draw comparison, checklist)."""
    try:
        entry = _load_entry(args)
        result = assessment.assess(_load_profile(args.profile), entry, as_of=_parse_date(args.as_of))
        payload = result.to_dict()

        if args.output:
            with open(args.output, "w") as f:
                json.dump(payload, f, indent=2)
            print(f"Assessment written to {args.output}")
        elif args.json:
            print(json.dumps(payload, indent=2))
        else:
            print(f"{entry.title}")
            print(f"  Score: {result.total_score}")
            print(f"  Verdict: {result.verdict.value}")
            if result.meets_pass_mark is not None:
                print(f"  Pass mark {result.pass_mark}: {'met' if result.meets_pass_mark else 'not met'}")
            if result.draw_gap is not None:
                print(f"  Gap to recent cutoff {result.recent_cutoff}: {result.draw_gap}")
            for reason in result.eligibility.reasons:
                print(f"  - {reason}")
            if result.missing_documents:
                print(f"  Documents outstanding: {', '.join(result.missing_documents)}")

        return 0

    except (catalog.NotFound, catalog.CatalogValidationError, normalizer.UnsupportedLanguageTest,
            OSError, json.JSONDecodeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[list] = None) -> int:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="immigration-assess",
        description="Immigration program scoring and eligibility assessment"
    )

    # Global options
    parser.add_argument(
        "--catalog",
        default=str(settings.get_catalog_path()),
        help="Path to rule catalog"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # validate command
    validate_parser = subparsers.add_parser("validate", help="Validate rule catalog")
    validate_parser.set_defaults(func=cmd_validate)

    # list command
    list_parser = subparsers.add_parser("list", help="List catalog programs")
    list_parser.add_argument("--country", help="Filter by country")
    list_parser.add_argument("--category", help="Filter by category")
    list_parser.set_defaults(func=cmd_list)

    def add_profile_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("profile", help="Applicant profile (JSON)")
        p.add_argument("--program", required=True, help="Program identifier")
        p.add_argument("--country", default="Canada", help="Destination country")
        p.add_argument("--date", help="Rules effective on this date (YYYY-MM-DD)")
        p.add_argument("--as-of", help="Reference date for age and employment (YYYY-MM-DD)")
        p.add_argument("--json", action="store_true", help="Print JSON")

    # score command
    score_parser = subparsers.add_parser("score", help="Score a profile")
    add_profile_args(score_parser)
    score_parser.set_defaults(func=cmd_score)

    # assess command
    assess_parser = subparsers.add_parser("assess", help="Assess a profile")
    add_profile_args(assess_parser)
    assess_parser.add_argument("--output", "-o", help="Output file (JSON)")
    assess_parser.set_defaults(func=cmd_assess)

    args = parser.parse_args(argv)

    try:
        configure_logging("DEBUG" if args.verbose else settings.get_log_level())
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
