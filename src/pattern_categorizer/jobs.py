"""
Batch entry points for the categorization engine.

This is what you call from cron or a worker: bulk categorization of a
JSON-lines file, the periodic statistics pass, and manual maintenance.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Callable, TextIO

from sqlalchemy.ext.asyncio import AsyncSession

from pattern_categorizer.core.config import get_settings
from pattern_categorizer.core.exceptions import CategorizationError
from pattern_categorizer.core.logger import setup_logging
from pattern_categorizer.schemas.transaction import TransactionInput
from pattern_categorizer.services.categorization import CategorizationService
from pattern_categorizer.services.learning import FeedbackProcessor
from pattern_categorizer.services.merchant import MerchantCanonicalizer

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


def read_transactions(path: Path) -> list[TransactionInput]:
    """Parse one TransactionInput per non-blank line."""
    with open(path, "r", encoding="utf-8") as f:
        return [TransactionInput.model_validate_json(line) for line in f if line.strip()]


async def categorize_file(db: AsyncSession, path: Path, out: TextIO, top_n: int | None = None) -> int:
    """Categorize every transaction in ``path`` and write one result per line.

    Returns:
        Number of degraded results
    """
    transactions = read_transactions(path)
    service = CategorizationService(db)
    results = await service.categorize_batch(transactions, top_n)
    for result in results:
        out.write(json.dumps(result.model_dump(mode="json")) + "\n")

    degraded = sum(1 for result in results if result.degraded)
    logger.info("Categorized %d transaction(s), %d degraded", len(results), degraded)
    return degraded


async def run(args: argparse.Namespace, session_factory: SessionFactory, out: TextIO = sys.stdout) -> int:
    """Execute one parsed command; returns the process exit code."""
    async with session_factory() as db:
        try:
            if args.command == "categorize":
                degraded = await categorize_file(db, args.file, out, args.top)
                return 1 if degraded else 0

            if args.command == "recompute-statistics":
                deactivated = await FeedbackProcessor(db).recompute_statistics()
                out.write(json.dumps({"deactivated": deactivated}) + "\n")
                return 0

            if args.command == "reactivate":
                changed = await FeedbackProcessor(db).reactivate_pattern(args.ref)
                if not changed:
                    logger.error("Pattern %s not found", args.ref)
                return 0 if changed else 1

            if args.command == "merge-merchants":
                merchant = await MerchantCanonicalizer(db).merge(args.target, args.source)
                out.write(json.dumps({"id": merchant.id, "name": merchant.name}) + "\n")
                return 0
        except CategorizationError as e:
            logger.error("%s failed: %s", args.command, e)
            return 1
        except ValueError as e:
            logger.error("%s: invalid argument: %s", args.command, e)
            return 2

    raise AssertionError(f"Unhandled command: {args.command!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pattern-based transaction categorizer")
    parser.add_argument("--log-level", help="Override CATEGORIZER_LOG_LEVEL")
    commands = parser.add_subparsers(dest="command", required=True)

    categorize = commands.add_parser("categorize", help="Categorize a JSON-lines file of transactions")
    categorize.add_argument("file", type=Path)
    categorize.add_argument("--top", type=int, help="Suggestions per transaction")

    commands.add_parser("recompute-statistics", help="Deactivate poorly performing patterns")

    reactivate = commands.add_parser("reactivate", help="Re-enable a deactivated pattern")
    reactivate.add_argument("ref", help="pattern:<id> or composite:<id>")

    merge = commands.add_parser("merge-merchants", help="Fold one canonical merchant into another")
    merge.add_argument("target", type=int)
    merge.add_argument("source", type=int)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or get_settings().log_level)

    from pattern_categorizer.db.session import AsyncSessionLocal

    sys.exit(asyncio.run(run(args, AsyncSessionLocal)))


if __name__ == "__main__":
    main()
