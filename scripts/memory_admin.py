#!/usr/bin/env python3
"""
Command-line administration for the semantic recall store: statistics, retention
cleanup, GDPR deletion of one owner and full clears.
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

# Add repository root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from semantic_recall.core.errors import SemanticRecallError
from semantic_recall.core.maintenance import MaintenanceReport
from semantic_recall.services import RecallServices, build_services


def format_report(report: MaintenanceReport) -> str:
    """Format a maintenance report for display."""
    lines = []

    lines.append(f"Operation: {report.operation}")
    if report.completed_at and report.started_at:
        duration = report.completed_at - report.started_at
        lines.append(f"Duration: {duration.total_seconds():.2f} seconds")

    if report.errors:
        lines.append(f"Status: FAILED ({len(report.errors)} errors)")
    elif report.issues_resolved > 0:
        lines.append(f"Status: CLEANED ({report.issues_resolved} memories removed)")
    else:
        lines.append("Status: SUCCESS")

    if report.metadata:
        lines.append("Details:")
        for key, value in report.metadata.items():
            lines.append(f"  {key}: {value}")

    if report.errors:
        lines.append("Errors:")
        for error in report.errors:
            lines.append(f"  - {error}")

    if report.actions_taken:
        lines.append("Actions Taken:")
        for action in report.actions_taken:
            lines.append(f"  - {action}")

    return "\n".join(lines)


async def run_command(args, services: RecallServices) -> int:
    """Execute one parsed command and return the process exit code."""
    if args.command == "stats":
        stats = await services.memory.get_stats(args.owner, args.domain)
        knowledge = await services.knowledge.get_stats()
        payload = {"memories": asdict(stats), "knowledge": knowledge, "health": services.health()}
        if args.json:
            print(json.dumps(payload, indent=2, default=str))
        else:
            print(f"Owner: {args.owner}")
            print(f"Total memories: {stats.total_memories}")
            for memory_type, count in stats.by_type.items():
                print(f"  {memory_type}: {count}")
            print(f"Learned patterns: {knowledge['total_patterns']} ({knowledge['active_patterns']} active)")
        return 0

    if args.command == "cleanup":
        report = await services.memory.run_cleanup(args.owner, args.domain)
        print(json.dumps(report.to_dict(), indent=2, default=str) if args.json else format_report(report))
        return 1 if report.errors else 0

    if args.command == "forget-all":
        if not args.yes:
            print(f"Refusing to delete all data for {args.owner} without --yes")
            return 2
        result = await services.forget_owner(args.owner)
        print(json.dumps(result.model_dump()) if args.json else f"Deleted {result.deleted} records for {args.owner}")
        return 0 if result.success else 1

    if args.command == "clear":
        if not args.yes:
            print("Refusing to drop every memory table without --yes")
            return 2
        result = await services.memory.clear_all()
        print(json.dumps(result.model_dump()) if args.json else f"Dropped {result.deleted} memory tables")
        return 0 if result.success else 1

    return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Semantic recall store administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s stats --owner u1                    # Memory counts for one owner
  %(prog)s cleanup --owner u1 --domain life_ceo # Apply retention and volume limits
  %(prog)s forget-all --owner u1 --yes          # GDPR deletion of one owner
  %(prog)s clear --yes                          # Drop every memory table

Environment variables:
- DB_PATH=./data/semantic_recall.db (database location)
- STORE_PROVIDER=sqlite (sqlite|memory|faiss)
- EMBED_PROVIDER=hash (hash|sentence-transformers|http)
        """
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")

    subparsers = parser.add_subparsers(dest="command", required=True)

    stats = subparsers.add_parser("stats", help="Show memory statistics for an owner")
    stats.add_argument("--owner", required=True)
    stats.add_argument("--domain", default=None, help="Restrict to one domain")

    cleanup = subparsers.add_parser("cleanup", help="Run the retention/volume cleanup pass")
    cleanup.add_argument("--owner", required=True)
    cleanup.add_argument("--domain", required=True)

    forget = subparsers.add_parser("forget-all", help="Delete every memory and pattern of an owner")
    forget.add_argument("--owner", required=True)
    forget.add_argument("--yes", action="store_true", help="Confirm the deletion")

    clear = subparsers.add_parser("clear", help="Drop every memory table")
    clear.add_argument("--yes", action="store_true", help="Confirm the deletion")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    async def _run() -> int:
        services = build_services()
        try:
            return await run_command(args, services)
        finally:
            await services.shutdown()

    try:
        return asyncio.run(_run())
    except SemanticRecallError as e:
        print(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
