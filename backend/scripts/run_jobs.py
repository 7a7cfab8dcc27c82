#!/usr/bin/env python3
"""
Run one periodic task once, for cron / systemd timers / manual ops.
Run from backend:
  python scripts/run_jobs.py materialize   # fill the slot horizon
  python scripts/run_jobs.py reap          # expire holds, abandoned payments, waitlist claims
  python scripts/run_jobs.py reminders     # day-before reminder emails
"""
import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.scheduler.materialize_job import run_materialize_job
from app.scheduler.reap_job import run_reap_job
from app.scheduler.reminder_job import run_reminder_job

JOBS = {
    "materialize": run_materialize_job,
    "reap": run_reap_job,
    "reminders": run_reminder_job,
}


def main():
    parser = argparse.ArgumentParser(description="Run a booking engine task once.")
    parser.add_argument("task", choices=sorted(JOBS))
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    result = JOBS[args.task]()
    if result is None:
        print(f"{args.task} failed; see log above", file=sys.stderr)
        sys.exit(1)
    print(f"{args.task}: {result}")


if __name__ == "__main__":
    main()
