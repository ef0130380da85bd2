"""Static mission catalog for daily, weekly and monthly missions."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

DAILY = "daily"
WEEKLY = "weekly"
MONTHLY = "monthly"

MISSION_PERIODS = (DAILY, WEEKLY, MONTHLY)
MISSION_CATEGORIES = ("workout", "streak", "social", "challenge", "nutrition")

# How many templates each run picks from a period's catalog.
SELECTION_SIZES = {
    DAILY: 3,
    WEEKLY: 3,
    MONTHLY: 2,
}


def _freeze(criteria: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if criteria is None:
        return None
    return MappingProxyType(dict(criteria))


@dataclass(frozen=True)
class MissionTemplate:
    """Definition of a mission before it is stamped with a time window."""

    period: str
    category: str
    title: str
    description: str
    target_value: int
    xp_reward: int
    criteria: Mapping[str, Any] | None = field(default=None, hash=False)

    def __post_init__(self) -> None:
        if self.period not in MISSION_PERIODS:
            raise ValueError(f"unknown mission period: {self.period}")
        if self.category not in MISSION_CATEGORIES:
            raise ValueError(f"unknown mission category: {self.category}")
        if self.target_value <= 0:
            raise ValueError("target_value must be > 0")
        if self.xp_reward <= 0:
            raise ValueError("xp_reward must be > 0")
        object.__setattr__(self, "criteria", _freeze(self.criteria))

    def criteria_document(self) -> dict[str, Any] | None:
        """Plain-dict copy of the criteria, suitable for a JSON column."""
        if self.criteria is None:
            return None
        return dict(self.criteria)


DAILY_CATALOG = (
    MissionTemplate(
        period=DAILY,
        category="workout",
        title="Complete Your First Workout",
        description="Start your day strong! Complete at least 1 workout today.",
        target_value=1,
        xp_reward=50,
    ),
    MissionTemplate(
        period=DAILY,
        category="workout",
        title="Burn 200 Calories",
        description="Burn at least 200 calories through exercise today.",
        target_value=200,
        xp_reward=75,
        criteria={"metric": "calories"},
    ),
    MissionTemplate(
        period=DAILY,
        category="workout",
        title="Exercise for 20 Minutes",
        description="Commit to at least 20 minutes of exercise today.",
        target_value=20,
        xp_reward=60,
        criteria={"metric": "duration_minutes"},
    ),
    MissionTemplate(
        period=DAILY,
        category="streak",
        title="Maintain Your Streak",
        description="Don't break your streak! Complete a workout today.",
        target_value=1,
        xp_reward=100,
    ),
    MissionTemplate(
        period=DAILY,
        category="social",
        title="Boost 3 Friends",
        description="Send encouragement to 3 friends today.",
        target_value=3,
        xp_reward=40,
        criteria={"action": "boost"},
    ),
)

WEEKLY_CATALOG = (
    MissionTemplate(
        period=WEEKLY,
        category="workout",
        title="Complete 5 Workouts This Week",
        description="Workout at least 5 days this week to stay consistent.",
        target_value=5,
        xp_reward=250,
    ),
    MissionTemplate(
        period=WEEKLY,
        category="workout",
        title="Try 3 Different Workout Types",
        description="Explore variety! Complete workouts from 3 different categories.",
        target_value=3,
        xp_reward=200,
        criteria={"metric": "workout_variety"},
    ),
    MissionTemplate(
        period=WEEKLY,
        category="workout",
        title="Exercise for 150 Minutes",
        description="Reach the WHO recommendation of 150 minutes of exercise.",
        target_value=150,
        xp_reward=300,
        criteria={"metric": "total_duration_minutes"},
    ),
    MissionTemplate(
        period=WEEKLY,
        category="social",
        title="Join a Circle Challenge",
        description="Participate in at least 1 circle challenge this week.",
        target_value=1,
        xp_reward=150,
        criteria={"action": "join_circle_challenge"},
    ),
    MissionTemplate(
        period=WEEKLY,
        category="challenge",
        title="Complete 2 Challenges",
        description="Join and complete 2 community challenges this week.",
        target_value=2,
        xp_reward=200,
    ),
)

MONTHLY_CATALOG = (
    MissionTemplate(
        period=MONTHLY,
        category="workout",
        title="Complete 20 Workouts This Month",
        description="Stay active all month long! Complete 20 workouts.",
        target_value=20,
        xp_reward=1000,
    ),
    MissionTemplate(
        period=MONTHLY,
        category="streak",
        title="Achieve a 30-Day Streak",
        description="The ultimate consistency challenge! Work out every day this month.",
        target_value=30,
        xp_reward=1500,
    ),
    MissionTemplate(
        period=MONTHLY,
        category="workout",
        title="Burn 5,000 Calories",
        description="Torch 5,000 calories through exercise this month.",
        target_value=5000,
        xp_reward=1200,
        criteria={"metric": "total_calories"},
    ),
    MissionTemplate(
        period=MONTHLY,
        category="social",
        title="Create a Training Circle",
        description="Build community! Create and invite 5+ members to a training circle.",
        target_value=5,
        xp_reward=800,
        criteria={"action": "create_circle_with_members"},
    ),
    MissionTemplate(
        period=MONTHLY,
        category="challenge",
        title="Win 3 Challenges",
        description="Compete and win! Finish in the top 3 of any 3 challenges.",
        target_value=3,
        xp_reward=1000,
        criteria={"metric": "challenge_top_3"},
    ),
)

MISSION_CATALOG = {
    DAILY: DAILY_CATALOG,
    WEEKLY: WEEKLY_CATALOG,
    MONTHLY: MONTHLY_CATALOG,
}


def get_catalog(period: str) -> tuple[MissionTemplate, ...]:
    try:
        return MISSION_CATALOG[period]
    except KeyError:
        raise ValueError(f"unknown mission period: {period}") from None


__all__ = [
    "DAILY",
    "DAILY_CATALOG",
    "MISSION_CATALOG",
    "MISSION_CATEGORIES",
    "MISSION_PERIODS",
    "MONTHLY",
    "MONTHLY_CATALOG",
    "MissionTemplate",
    "SELECTION_SIZES",
    "WEEKLY",
    "WEEKLY_CATALOG",
    "get_catalog",
]
