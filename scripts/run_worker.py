"""
Worker daemon that runs queued maintenance jobs.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from momentum_backend.dependencies import get_db_client, get_queue_client
from momentum_backend.worker import JOBS, process_next, run_job, run_loop

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Momentum maintenance worker")
    parser.add_argument(
        "--job",
        choices=sorted(JOBS),
        default=None,
        help="Run this job immediately instead of consuming the queue",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process at most one queued job and exit",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=2.0,
        help="Seconds to block on the queue between polls",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.job:
        touched = run_job(args.job, get_db_client())
        logger.info("Job %s touched %d rows", args.job, touched)
        return 0

    if args.once:
        processed = process_next(
            db=get_db_client(), queue=get_queue_client(), block=False
        )
        logger.info("Processed job: %s", processed)
        return 0

    run_loop(poll_interval_seconds=args.poll_interval)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
