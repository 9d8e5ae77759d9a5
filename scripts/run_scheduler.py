"""
Daemon that enqueues maintenance jobs on their weekly schedule.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from momentum_backend.dependencies import get_queue_client
from momentum_backend.scheduler import SCHEDULES, run_scheduler
from momentum_backend.types import utcnow

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Momentum maintenance scheduler")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=30.0,
        help="Seconds between schedule checks",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    now = utcnow()
    for name, schedule in SCHEDULES.items():
        logger.info("Next %s run at %s", name, schedule.next_after(now).isoformat())

    run_scheduler(get_queue_client(), poll_interval_seconds=args.poll_interval)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
