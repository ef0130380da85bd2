from .gamification_service import (
    RunSummary,
    run_daily_gamification_cycle,
    run_mission_cycle,
    run_streak_cycle,
)
from .scheduler_service import SchedulerService

__all__ = [
    "RunSummary",
    "SchedulerService",
    "run_daily_gamification_cycle",
    "run_mission_cycle",
    "run_streak_cycle",
]
