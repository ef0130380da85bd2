from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from app.services.gamification_service import JOB_GAMIFICATION, JOB_MISSIONS, JOB_STREAKS
from app.services.runlog_service import run_logged_job
from app.utils.logger import get_logger
import atexit

logger = get_logger(__name__)


class SchedulerService:
    def __init__(self, app=None):
        self.scheduler = None
        self.app = None
        if app:
            self.init_app(app)

    def init_app(self, app):
        """Register the gamification cron jobs and start the scheduler."""
        self.app = app
        self.scheduler = BackgroundScheduler(timezone=timezone.utc)

        streak_cron = (app.config.get("STREAK_CRON") or "").strip()
        daily_job = JOB_MISSIONS if streak_cron else JOB_GAMIFICATION

        self.scheduler.add_job(
            func=self._run_job_with_context,
            args=(daily_job,),
            trigger=CronTrigger.from_crontab(app.config["GAMIFICATION_CRON"], timezone=timezone.utc),
            id="daily_gamification",
            name="Generate, assign and expire missions",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if streak_cron:
            self.scheduler.add_job(
                func=self._run_job_with_context,
                args=(JOB_STREAKS,),
                trigger=CronTrigger.from_crontab(streak_cron, timezone=timezone.utc),
                id="streak_evaluation",
                name="Evaluate user streaks",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self.scheduler.start()
        logger.info(
            "[WORKER] Scheduler started - %s at '%s'%s",
            daily_job,
            app.config["GAMIFICATION_CRON"],
            f", streaks at '{streak_cron}'" if streak_cron else "",
        )

        def _shutdown():
            if self.scheduler and self.scheduler.running:
                try:
                    self.scheduler.shutdown(wait=False)
                except Exception:  # pragma: no cover - defensive cleanup
                    logger.exception("Scheduler shutdown encountered an error")

        atexit.register(_shutdown)

    def _run_job_with_context(self, job_type):
        """Run one job and log start/stop like every other worker task."""
        started_at = datetime.now(timezone.utc)
        logger.info(
            "[WORKER] scheduler.job.start",
            extra={"job_id": job_type, "started_at": started_at.isoformat()},
        )
        try:
            outcome = run_logged_job(self.app, job_type, started_at)
        except Exception:  # pragma: no cover - defensive guard
            logger.exception("[WORKER] scheduler.job.error", extra={"job_id": job_type})
            return None

        finished_at = datetime.now(timezone.utc)
        logger.info(
            "[WORKER] scheduler.job.stop",
            extra={
                "job_id": job_type,
                "finished_at": finished_at.isoformat(),
                "duration_s": (finished_at - started_at).total_seconds(),
                "ok": outcome.ok,
                "skipped": outcome.skipped,
            },
        )
        return outcome
