# scheduler.py
import logging
from typing import Optional

import pytz
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from errors import SchedulingError, ExactAlarmDenied
from models import AlarmEvent, now_millis, millis_to_datetime, datetime_to_millis

logger = logging.getLogger(__name__)

JOB_PREFIX = "alarm_"


def job_id_for(alarm_id):
    return f"{JOB_PREFIX}{alarm_id}"


class AlarmScheduler:
    """One-shot alarms on top of an APScheduler scheduler.

    Registrations live in the scheduler's in-memory job store, so they are
    gone after a process restart; RecoveryCoordinator puts them back.
    Scheduling the same alarm id twice replaces the first registration.
    """

    def __init__(self, scheduler, handler, exact_alarm_permission=None,
                 inexact_fallback=True, misfire_grace_seconds=60, clock=now_millis):
        self.scheduler = scheduler
        self.handler = handler
        self._exact_alarm_permission = exact_alarm_permission or (lambda: True)
        self.inexact_fallback = inexact_fallback
        self.misfire_grace_seconds = misfire_grace_seconds
        self._clock = clock

    def can_schedule_exact(self) -> bool:
        return bool(self._exact_alarm_permission())

    def schedule(self, alarm_id: int, fire_at_epoch_millis: int, message: str,
                 chat_id: Optional[int] = None) -> None:
        self._check_future(alarm_id, fire_at_epoch_millis)
        if not self.can_schedule_exact():
            raise ExactAlarmDenied(f"exact alarms are not permitted (alarm {alarm_id})")
        self._add_job(alarm_id, fire_at_epoch_millis, AlarmEvent(alarm_id, message, chat_id),
                      misfire_grace_time=self.misfire_grace_seconds)
        logger.info(f"Alarm {alarm_id} set for {millis_to_datetime(fire_at_epoch_millis)}")

    def schedule_inexact(self, alarm_id: int, fire_at_epoch_millis: int, message: str,
                         chat_id: Optional[int] = None) -> None:
        self._check_future(alarm_id, fire_at_epoch_millis)
        if not self.inexact_fallback:
            raise SchedulingError(f"no inexact alarm fallback available (alarm {alarm_id})")
        # No misfire limit: a late delivery beats a lost one.
        self._add_job(alarm_id, fire_at_epoch_millis, AlarmEvent(alarm_id, message, chat_id),
                      misfire_grace_time=None)
        logger.warning(f"Alarm {alarm_id} set inexactly for {millis_to_datetime(fire_at_epoch_millis)}")

    def cancel(self, alarm_id: int) -> bool:
        try:
            self.scheduler.remove_job(job_id_for(alarm_id))
        except JobLookupError:
            logger.debug(f"Alarm {alarm_id} was not registered")
            return False
        logger.info(f"Alarm {alarm_id} cancelled")
        return True

    def cancel_all(self) -> int:
        removed = 0
        for job in self.scheduler.get_jobs():
            if not job.id.startswith(JOB_PREFIX):
                continue
            try:
                self.scheduler.remove_job(job.id)
                removed += 1
            except JobLookupError:
                pass
        logger.info(f"Cancelled {removed} alarms")
        return removed

    def is_registered(self, alarm_id: int) -> bool:
        return self.scheduler.get_job(job_id_for(alarm_id)) is not None

    def next_fire_millis(self, alarm_id: int) -> Optional[int]:
        job = self.scheduler.get_job(job_id_for(alarm_id))
        if job is None or getattr(job, "next_run_time", None) is None:
            return None
        return datetime_to_millis(job.next_run_time)

    def _check_future(self, alarm_id, fire_at_epoch_millis):
        now = self._clock()
        if fire_at_epoch_millis <= now:
            raise SchedulingError(
                f"alarm {alarm_id} fire time {fire_at_epoch_millis} is not after {now}"
            )

    def _add_job(self, alarm_id, fire_at_epoch_millis, event, misfire_grace_time):
        try:
            self.scheduler.add_job(
                self.handler,
                trigger=DateTrigger(run_date=millis_to_datetime(fire_at_epoch_millis),
                                    timezone=pytz.UTC),
                args=[event],
                id=job_id_for(alarm_id),
                name=f"reminder alarm {alarm_id}",
                replace_existing=True,
                misfire_grace_time=misfire_grace_time,
            )
        except Exception as e:
            logger.error(f"Failed to register alarm {alarm_id}: {e}")
            raise SchedulingError(f"could not register alarm {alarm_id}: {e}") from e
