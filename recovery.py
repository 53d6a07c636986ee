# recovery.py
import logging
from dataclasses import dataclass, field
from typing import List

from errors import ExactAlarmDenied
from models import now_millis

logger = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    rescheduled: List[int] = field(default_factory=list)
    completed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)

    def __str__(self):
        return (
            f"rescheduled={len(self.rescheduled)} completed={len(self.completed)} "
            f"skipped={len(self.skipped)} failed={len(self.failed)}"
        )


class RecoveryCoordinator:
    """Re-derives alarm registrations from the store.

    Runs after a restart (when every registration is gone) and on demand.
    Future reminders get their original alarm id back; reminders whose time
    has passed are completed, never fired late. Each reminder is handled on
    its own so one failure does not stop the pass.
    """

    def __init__(self, store, alarms, clock=now_millis):
        self.store = store
        self.alarms = alarms
        self._clock = clock

    def run(self) -> RecoveryReport:
        report = RecoveryReport()
        reminders = self.store.get_scheduled()
        logger.info(f"Recovery: {len(reminders)} pending reminders")
        for reminder in reminders:
            try:
                self._recover(reminder, report)
            except Exception:
                logger.exception(f"Recovery failed for reminder {reminder.id}")
                report.failed.append(reminder.id)
        logger.info(f"Recovery done: {report}")
        return report

    def _recover(self, reminder, report):
        if reminder.fire_at_epoch_millis > self._clock():
            try:
                self.alarms.schedule(reminder.alarm_id, reminder.fire_at_epoch_millis,
                                     reminder.message, reminder.chat_id)
            except ExactAlarmDenied:
                # Raises SchedulingError when there is no fallback; the reminder stays pending.
                self.alarms.schedule_inexact(reminder.alarm_id, reminder.fire_at_epoch_millis,
                                             reminder.message, reminder.chat_id)
            report.rescheduled.append(reminder.id)
        elif self.alarms.is_registered(reminder.alarm_id):
            # Still queued in this process; the alarm completes it when it runs.
            report.skipped.append(reminder.id)
        else:
            self.store.mark_completed(reminder.id)
            logger.info(f"Reminder {reminder.id} missed its time, completed without firing")
            report.completed.append(reminder.id)
