import time
import uuid
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .models import SilenceScheduleRecord
from .settings import SettingsStore

logger = logging.getLogger(__name__)


class SilenceDuration(Enum):
    ONE_HOUR = 3600
    FOUR_HOURS = 14400
    ONE_DAY = 86400
    INDEFINITE = -1


def parse_time_of_day(value: str) -> int:
    """'HH:MM' -> minutes since midnight"""
    parts = value.split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid time of day: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid time of day: {value!r}")
    return hour * 60 + minute


@dataclass(frozen=True)
class SilenceSchedule:
    """Daily silence window on a set of weekdays (0 = Sunday .. 6 = Saturday)"""
    start_time: str
    end_time: str
    weekdays: FrozenSet[int] = frozenset(range(7))
    is_enabled: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        parse_time_of_day(self.start_time)
        parse_time_of_day(self.end_time)
        object.__setattr__(self, "weekdays", frozenset(int(d) for d in self.weekdays))
        if any(d < 0 or d > 6 for d in self.weekdays):
            raise ValueError(f"Weekdays must be within 0..6: {sorted(self.weekdays)}")

    def is_active(self, now: Optional[datetime] = None) -> bool:
        """True if the window covers the given local time"""
        if not self.is_enabled:
            return False

        now = now or datetime.now()
        weekday = (now.weekday() + 1) % 7
        if weekday not in self.weekdays:
            return False

        current = now.hour * 60 + now.minute
        start = parse_time_of_day(self.start_time)
        end = parse_time_of_day(self.end_time)

        if end > start:
            return start <= current < end
        # Window wraps past midnight
        return current >= start or current < end


class SilenceManager:
    """Manual timed silence plus recurring schedules.

    Either mechanism suppresses notifications only; alert state and history
    are recorded regardless.
    """

    def __init__(self, settings: SettingsStore, session_factory: Optional[sessionmaker] = None):
        self._settings = settings
        self._session_factory = session_factory
        self._lock = threading.RLock()
        self._timer: Optional[threading.Timer] = None
        self._schedules: List[SilenceSchedule] = []

        self.is_silenced = False
        self.silence_until: Optional[float] = None

        self._load_silence_state()
        self._load_schedules()

    # Manual silence

    def silence(self, duration=SilenceDuration.ONE_HOUR, now: Optional[float] = None) -> None:
        """Silence for ``duration`` seconds (or a SilenceDuration); None is indefinite"""
        if isinstance(duration, SilenceDuration):
            seconds = None if duration is SilenceDuration.INDEFINITE else duration.value
        else:
            seconds = duration

        now = time.time() if now is None else now
        with self._lock:
            self.is_silenced = True
            self.silence_until = None if seconds is None else now + float(seconds)
            self._save_silence_state()
            self._schedule_timer()

        if seconds is None:
            logger.info("Alerts silenced indefinitely")
        else:
            logger.info(f"Alerts silenced for {seconds} seconds")

    def end_silence(self) -> None:
        """Clear manual silence and cancel its timer"""
        with self._lock:
            was_silenced = self.is_silenced
            self.is_silenced = False
            self.silence_until = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._save_silence_state()

        if was_silenced:
            logger.info("Silence ended")

    def should_silence(self, now: Optional[float] = None, wall_clock: Optional[datetime] = None) -> bool:
        """True if a manual silence or an active schedule applies"""
        now = time.time() if now is None else now
        with self._lock:
            if self.is_silenced:
                if self.silence_until is None or self.silence_until > now:
                    return True
                # Expired but the timer has not fired yet
                self.end_silence()
            schedules = list(self._schedules)

        wall_clock = wall_clock or datetime.fromtimestamp(now)
        return any(schedule.is_active(wall_clock) for schedule in schedules)

    def _schedule_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self.silence_until is None:
            return

        delay = max(0.0, self.silence_until - time.time())
        self._timer = threading.Timer(delay, self._expire)
        self._timer.daemon = True
        self._timer.start()

    def _expire(self) -> None:
        with self._lock:
            if self.is_silenced and self.silence_until is not None and self.silence_until <= time.time():
                self.end_silence()

    def shutdown(self) -> None:
        """Cancel the expiry timer"""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    # Schedules

    @property
    def schedules(self) -> List[SilenceSchedule]:
        with self._lock:
            return list(self._schedules)

    def add_schedule(self, schedule: SilenceSchedule) -> None:
        """Add and persist a schedule"""
        with self._lock:
            self._schedules.append(schedule)
            self._save_schedules()

    def update_schedule(self, schedule: SilenceSchedule) -> bool:
        """Replace a schedule with the same id"""
        with self._lock:
            for index, existing in enumerate(self._schedules):
                if existing.id == schedule.id:
                    self._schedules[index] = schedule
                    self._save_schedules()
                    return True
        return False

    def remove_schedule(self, schedule_id: str) -> None:
        """Delete a schedule"""
        with self._lock:
            self._schedules = [s for s in self._schedules if s.id != schedule_id]
            self._save_schedules()

    def toggle_schedule(self, schedule_id: str) -> None:
        """Flip whether a schedule is enabled"""
        with self._lock:
            self._schedules = [
                replace(s, is_enabled=not s.is_enabled) if s.id == schedule_id else s
                for s in self._schedules
            ]
            self._save_schedules()

    # Persistence

    def _save_silence_state(self) -> None:
        self._settings.set_value("silence_state", {
            "is_silenced": self.is_silenced,
            "silence_until": self.silence_until,
        })

    def _load_silence_state(self) -> None:
        state = self._settings.get_value("silence_state")
        if not isinstance(state, dict):
            return

        self.is_silenced = bool(state.get("is_silenced", False))
        until = state.get("silence_until")
        self.silence_until = float(until) if until else None

        if self.is_silenced and self.silence_until is not None:
            if self.silence_until <= time.time():
                self.end_silence()
            else:
                self._schedule_timer()

    def _save_schedules(self) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as db:
                db.query(SilenceScheduleRecord).delete()
                for position, schedule in enumerate(self._schedules):
                    db.add(SilenceScheduleRecord(
                        id=schedule.id,
                        start_time=schedule.start_time,
                        end_time=schedule.end_time,
                        weekdays=",".join(str(d) for d in sorted(schedule.weekdays)),
                        is_enabled=schedule.is_enabled,
                        position=position,
                    ))
        except SQLAlchemyError as e:
            logger.error(f"Failed to save silence schedules: {e}")

    def _load_schedules(self) -> None:
        if self._session_factory is None:
            return
        try:
            with session_scope(self._session_factory) as db:
                records = db.query(SilenceScheduleRecord).order_by(SilenceScheduleRecord.position).all()
                loaded = []
                for record in records:
                    try:
                        weekdays = frozenset(int(d) for d in record.weekdays.split(",") if d)
                        loaded.append(SilenceSchedule(
                            id=record.id,
                            start_time=record.start_time,
                            end_time=record.end_time,
                            weekdays=weekdays,
                            is_enabled=bool(record.is_enabled),
                        ))
                    except ValueError as e:
                        logger.warning(f"Skipping invalid silence schedule {record.id}: {e}")
            self._schedules = loaded
        except SQLAlchemyError as e:
            logger.error(f"Failed to load silence schedules: {e}")
            self._schedules = []
