# service.py
import datetime
import logging
from typing import List, Optional

import pytz

from errors import ValidationError, SchedulingError, ExactAlarmDenied, NotFound
from models import Reminder, now_millis, datetime_to_millis

logger = logging.getLogger(__name__)

MAX_ALARM_ID = 2**31 - 1


class ReminderService:
    """Creates, cancels and lists reminders.

    Creation persists first and schedules second. If scheduling fails after
    the write, the record stays pending and the next recovery pass
    registers it.
    """

    def __init__(self, store, alarms, clock=now_millis, tz=pytz.UTC):
        self.store = store
        self.alarms = alarms
        self._clock = clock
        self.tz = tz

    def create(self, message: str, fire_at_epoch_millis: int,
               chat_id: Optional[int] = None) -> Reminder:
        message = (message or "").strip()
        if not message:
            raise ValidationError("Reminder message cannot be empty")
        now = self._clock()
        if fire_at_epoch_millis <= now:
            raise ValidationError("Reminder time must be in the future")

        reminder = Reminder(
            message=message,
            fire_at_epoch_millis=fire_at_epoch_millis,
            alarm_id=self._new_alarm_id(now),
            is_scheduled=True,
            created_at=now,
            chat_id=chat_id,
        )
        self.store.insert(reminder)
        try:
            try:
                self.alarms.schedule(reminder.alarm_id, fire_at_epoch_millis, message, chat_id)
            except ExactAlarmDenied:
                logger.warning(f"Exact alarm denied for reminder {reminder.id}, trying inexact")
                self.alarms.schedule_inexact(reminder.alarm_id, fire_at_epoch_millis, message, chat_id)
        except SchedulingError as e:
            logger.error(f"Reminder {reminder.id} saved but not scheduled: {e}")
            raise SchedulingError(str(e), reminder_id=reminder.id) from e
        logger.info(f"Reminder {reminder.id} created (alarm {reminder.alarm_id})")
        return reminder

    def create_at_time_of_day(self, message: str, hour: int, minute: int,
                              chat_id: Optional[int] = None) -> Reminder:
        return self.create(message, self.next_time_of_day(hour, minute), chat_id)

    def next_time_of_day(self, hour: int, minute: int) -> int:
        """Next HH:MM in the service timezone; rolls to tomorrow once it has passed."""
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValidationError(f"Invalid time {hour}:{minute:02d}")
        now = datetime.datetime.fromtimestamp(self._clock() / 1000, tz=pytz.UTC).astimezone(self.tz)
        target_date = now.date()
        while True:
            naive = datetime.datetime.combine(target_date, datetime.time(hour, minute))
            candidate = self.tz.normalize(self.tz.localize(naive))
            millis = datetime_to_millis(candidate)
            if millis > self._clock():
                return millis
            target_date += datetime.timedelta(days=1)

    def get(self, reminder_id: int) -> Reminder:
        reminder = self.store.get(reminder_id)
        if reminder is None:
            raise NotFound(f"Reminder {reminder_id} not found")
        return reminder

    def list_scheduled(self, chat_id: Optional[int] = None) -> List[Reminder]:
        return self.store.get_scheduled(chat_id)

    def cancel(self, reminder_id: int) -> bool:
        reminder = self.store.get(reminder_id)
        if reminder is None:
            logger.debug(f"Cancel of unknown reminder {reminder_id} ignored")
            return False
        # Unregister first so no alarm is left pointing at a deleted record.
        self.alarms.cancel(reminder.alarm_id)
        self.store.delete(reminder_id)
        logger.info(f"Reminder {reminder_id} cancelled")
        return True

    def reschedule(self, reminder_id: int, fire_at_epoch_millis: int) -> Reminder:
        old = self.get(reminder_id)
        replacement = self.create(old.message, fire_at_epoch_millis, old.chat_id)
        self.cancel(reminder_id)
        return replacement

    def clear_all(self) -> int:
        self.alarms.cancel_all()
        return self.store.delete_all()

    def _new_alarm_id(self, now):
        candidate = now % MAX_ALARM_ID or 1
        while self.store.alarm_id_in_use(candidate) or self.alarms.is_registered(candidate):
            candidate = candidate % (MAX_ALARM_ID - 1) + 1
        return candidate
