"""Custom Flask CLI commands."""

from __future__ import annotations

import json
from typing import Optional

import click
from flask import Flask, current_app

from .services.gamification_service import JOB_GAMIFICATION, JOB_MISSIONS, JOB_STREAKS
from .services.runlog_service import run_logged_job
from .utils.time import parse_timestamp


def _parse_now(value: Optional[str]):
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}", param_hint="--now")
    return parsed


def _report(outcome) -> None:
    click.echo(json.dumps(outcome.to_dict(), indent=2, sort_keys=True))
    if not outcome.ok:
        raise click.ClickException(outcome.summary.error if outcome.summary else "run failed")


def register_cli_commands(app: Flask) -> None:
    """Register application specific CLI commands."""

    @app.cli.command("run-gamification")
    @click.option("--now", "now_raw", default=None, help="Evaluation instant (ISO-8601, UTC if naive).")
    @click.option("--force", is_flag=True, help="Run even if that day's phases already completed.")
    @click.option("--skip-streaks", is_flag=True, help="Only generate, assign and expire missions.")
    def run_gamification(now_raw: Optional[str], force: bool, skip_streaks: bool) -> None:
        """Run the daily mission and streak cycle once."""

        job_type = JOB_MISSIONS if skip_streaks else JOB_GAMIFICATION
        try:
            outcome = run_logged_job(
                current_app._get_current_object(),
                job_type,
                _parse_now(now_raw),
                force=force,
                request_id="cli",
            )
        except click.ClickException:
            raise
        except Exception as exc:
            current_app.logger.exception("Gamification run failed")
            raise click.ClickException(str(exc)) from exc
        _report(outcome)

    @app.cli.command("run-streaks")
    @click.option("--now", "now_raw", default=None, help="Evaluation instant (ISO-8601, UTC if naive).")
    @click.option("--force", is_flag=True, help="Run even if streaks were already evaluated for that day.")
    def run_streaks(now_raw: Optional[str], force: bool) -> None:
        """Evaluate every user's streak once."""

        try:
            outcome = run_logged_job(
                current_app._get_current_object(),
                JOB_STREAKS,
                _parse_now(now_raw),
                force=force,
                request_id="cli",
            )
        except click.ClickException:
            raise
        except Exception as exc:
            current_app.logger.exception("Streak run failed")
            raise click.ClickException(str(exc)) from exc
        _report(outcome)
