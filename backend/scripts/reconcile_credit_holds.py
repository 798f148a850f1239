"""
Run the credit hold reconciler once.

Usage (from backend/):
  python -m scripts.reconcile_credit_holds
  python -m scripts.reconcile_credit_holds --older-than-minutes 0
"""
import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Ensure backend root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from database import database
from job_runner import run_credit_hold_reconciliation

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def main():
    parser = argparse.ArgumentParser(description="Resolve unsettled credit holds")
    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=None,
        help="Only resolve holds untouched for this long (default: CREDIT_HOLD_TIMEOUT_MINUTES)",
    )
    args = parser.parse_args()
    older_than = timedelta(minutes=args.older_than_minutes) if args.older_than_minutes is not None else None

    async def _():
        await database.connect()
        try:
            return await run_credit_hold_reconciliation(older_than=older_than)
        finally:
            await database.close()

    result = asyncio.run(_())
    print(result["message"])
    print(f"  released={result.get('released', 0)} settled={result.get('settled', 0)} rejected={result.get('rejected', 0)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
