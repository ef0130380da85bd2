"""Persistence store used by the mission and streak services."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence
from uuid import uuid4

from flask import Flask
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from app.errors import PersistenceError
from app.models import db
from app.models.mission import Mission, UserMission
from app.models.profile import UserProfile
from app.services.mission_service import Assignment, ScheduledMission
from app.utils.logger import get_logger
from app.utils.time import ensure_utc

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProfileSnapshot:
    """Detached copy of the profile fields the engine reads."""

    id: str
    status: str
    current_streak: int
    longest_streak: int
    last_workout_date: datetime | None
    timezone: str | None


class GamificationStore(Protocol):
    def insert_missions(self, missions: Sequence[ScheduledMission]) -> list[ScheduledMission]:
        ...

    def list_active_users(self) -> list[ProfileSnapshot]:
        ...

    def insert_user_missions(self, assignments: Sequence[Assignment]) -> int:
        ...

    def expire_user_missions(self, before: datetime) -> int:
        ...

    def list_all_user_profiles(self) -> list[ProfileSnapshot]:
        ...

    def update_profile_streak(
        self,
        user_id: str,
        current_streak: int,
        longest_streak: int,
        updated_at: datetime,
    ) -> None:
        ...


def _snapshot(profile: UserProfile) -> ProfileSnapshot:
    last_workout = profile.last_workout_date
    return ProfileSnapshot(
        id=profile.id,
        status=profile.status,
        current_streak=int(profile.current_streak or 0),
        longest_streak=int(profile.longest_streak or 0),
        last_workout_date=ensure_utc(last_workout) if last_workout else None,
        timezone=profile.timezone,
    )


class SqlAlchemyStore:
    """Store backed by the Flask-SQLAlchemy session.

    Every call pushes its own application context, so the store can be used
    from worker threads. Writes commit immediately; failures are rolled back
    and re-raised as :class:`PersistenceError`.
    """

    def __init__(self, app: Flask) -> None:
        self.app = app

    def _fail(self, operation: str, exc: SQLAlchemyError) -> PersistenceError:
        db.session.rollback()
        logger.error("[STORE] %s failed: %s", operation, exc)
        return PersistenceError(operation, f"{operation} failed: {exc}")

    def insert_missions(self, missions: Sequence[ScheduledMission]) -> list[ScheduledMission]:
        if not missions:
            return []
        stamped = [mission.with_id(str(uuid4())) for mission in missions]
        rows = [{"id": mission.id, **mission.to_record()} for mission in stamped]
        with self.app.app_context():
            try:
                db.session.execute(Mission.__table__.insert(), rows)
                db.session.commit()
            except SQLAlchemyError as exc:
                raise self._fail("insert_missions", exc) from exc
        return stamped

    def _list_profiles(self, operation: str, *, active_only: bool) -> list[ProfileSnapshot]:
        stmt = select(UserProfile).order_by(UserProfile.created_at.asc(), UserProfile.id.asc())
        if active_only:
            stmt = stmt.where(UserProfile.status == "active")
        with self.app.app_context():
            try:
                profiles = db.session.execute(stmt).scalars().all()
                snapshots = [_snapshot(profile) for profile in profiles]
                db.session.commit()
            except SQLAlchemyError as exc:
                raise self._fail(operation, exc) from exc
        return snapshots

    def list_active_users(self) -> list[ProfileSnapshot]:
        return self._list_profiles("list_active_users", active_only=True)

    def list_all_user_profiles(self) -> list[ProfileSnapshot]:
        return self._list_profiles("list_all_user_profiles", active_only=False)

    def insert_user_missions(self, assignments: Sequence[Assignment]) -> int:
        if not assignments:
            return 0
        rows = [
            {
                "id": str(uuid4()),
                "user_id": assignment.user_id,
                "mission_id": assignment.mission_id,
                "progress": assignment.progress,
                "status": assignment.status,
                "assigned_at": ensure_utc(assignment.assigned_at),
            }
            for assignment in assignments
        ]
        with self.app.app_context():
            try:
                db.session.execute(UserMission.__table__.insert(), rows)
                db.session.commit()
            except SQLAlchemyError as exc:
                raise self._fail("insert_user_missions", exc) from exc
        return len(rows)

    def expire_user_missions(self, before: datetime) -> int:
        before = ensure_utc(before)
        elapsed = select(Mission.id).where(Mission.end_date < before)
        stmt = (
            update(UserMission)
            .where(UserMission.status == "active")
            .where(UserMission.mission_id.in_(elapsed))
            .values(status="expired")
            .execution_options(synchronize_session=False)
        )
        with self.app.app_context():
            try:
                result = db.session.execute(stmt)
                expired = int(result.rowcount or 0)
                db.session.commit()
            except SQLAlchemyError as exc:
                raise self._fail("expire_user_missions", exc) from exc
        return expired

    def update_profile_streak(
        self,
        user_id: str,
        current_streak: int,
        longest_streak: int,
        updated_at: datetime,
    ) -> None:
        stmt = (
            update(UserProfile)
            .where(UserProfile.id == user_id)
            .values(
                current_streak=current_streak,
                longest_streak=longest_streak,
                updated_at=ensure_utc(updated_at),
            )
            .execution_options(synchronize_session=False)
        )
        with self.app.app_context():
            try:
                db.session.execute(stmt)
                db.session.commit()
            except SQLAlchemyError as exc:
                raise self._fail("update_profile_streak", exc) from exc


__all__ = ["GamificationStore", "ProfileSnapshot", "SqlAlchemyStore"]
