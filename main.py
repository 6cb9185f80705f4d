"""
Recurgen — Entry Point.

`python main.py` runs one generation pass over the rolling window and
prints the result as JSON. Meant to be called by cron (daily) or by a
rule-editing hook; the exit code is 1 when storage was unavailable so the
caller's scheduler can retry.
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date

from recurgen.config import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from recurgen.adapters.sqlite_store import SQLiteTaskStore
from recurgen.core.generation_job import GenerationFailedError, GenerationJob, run_daily

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate recurring task instances.")
    parser.add_argument("--owner", type=int, default=None, help="only this owner's rules")
    parser.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    parser.add_argument("--end", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace):
    store = SQLiteTaskStore()
    if args.start is None and args.end is None:
        return await run_daily(store, owner_id=args.owner)
    start = args.start or args.end
    end = args.end or args.start
    return await GenerationJob(store, store).run(start, end, owner_id=args.owner)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        result = asyncio.run(_run(args))
    except GenerationFailedError as exc:
        logger.error("%s", exc)
        print(json.dumps(exc.result.to_dict(), indent=2))
        return 1
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
