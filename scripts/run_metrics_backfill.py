#!/usr/bin/env python3
"""CLI entry point for a daily metrics backfill.

Usage:
    # Backfill a date range for one brand
    PYTHONPATH=. python scripts/run_metrics_backfill.py --brand acme --start 2024-01-01 --end 2024-06-30

    # Merge a newly connected source into existing records
    PYTHONPATH=. python scripts/run_metrics_backfill.py --brand acme --start 2024-01-01 --end 2024-06-30 --new-source google
"""
import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.adsync_core.config import PipelineConfig
from src.adsync_core.runner import run_backfill
from src.adsync_core.schemas.metrics import Source


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


async def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="adsync daily metrics backfill")
    parser.add_argument("--brand", required=True, help="Brand identifier")
    parser.add_argument(
        "--start", required=True, help="First date to backfill (YYYY-MM-DD)"
    )
    parser.add_argument(
        "--end", required=True, help="Last date to backfill, inclusive (YYYY-MM-DD)"
    )
    parser.add_argument(
        "--new-source",
        choices=[source.value for source in Source],
        help="Merge only this newly connected source into stored records",
    )
    parser.add_argument("--user", help="User id to include in the notification")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    start_date = datetime.strptime(args.start, "%Y-%m-%d").date()
    end_date = datetime.strptime(args.end, "%Y-%m-%d").date()

    result = await run_backfill(
        PipelineConfig.from_env(),
        args.brand,
        start_date,
        end_date,
        user_id=args.user,
        new_source=args.new_source,
    )

    summary = result.to_payload()
    summary.pop("data", None)
    print(json.dumps(summary, indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
