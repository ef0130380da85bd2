"""Run the daily gamification cycle once, for plain cron deployments."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

from app import create_app
from app.bootstrap import init_db
from app.services.gamification_service import JOB_GAMIFICATION, JOB_MISSIONS, JOB_STREAKS
from app.services.runlog_service import run_logged_job
from app.utils.logger import configure_logging
from app.utils.time import parse_timestamp


log = logging.getLogger("run_gamification_cycle")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--now", default=None, help="evaluation instant (ISO-8601)")
    parser.add_argument("--force", action="store_true", help="ignore the already-ran-today guard")
    parser.add_argument(
        "--job",
        choices=(JOB_GAMIFICATION, JOB_MISSIONS, JOB_STREAKS),
        default=JOB_GAMIFICATION,
    )
    parser.add_argument("--migrate", action="store_true", help="run migrations before the cycle")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    configure_logging(os.getenv("LOG_DIR", "logs"))
    args = _parse_args(argv)

    now = None
    if args.now:
        now = parse_timestamp(args.now)
        if now is None:
            log.error("Invalid --now value: %s", args.now)
            return 2

    app = create_app()
    if args.migrate:
        init_db(app)

    outcome = run_logged_job(app, args.job, now, force=args.force, request_id="script")
    print(json.dumps(outcome.to_dict(), indent=2, sort_keys=True))
    return 0 if outcome.ok else 1


if __name__ == "__main__":
    sys.exit(main())
