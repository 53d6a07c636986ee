# errors.py


class ReminderError(Exception):
    """Base class for everything the reminder subsystem raises."""


class ValidationError(ReminderError):
    """User input rejected before the store or scheduler is touched."""


class StorageError(ReminderError):
    """A read or write against the reminder store failed; state is unknown."""


class SchedulingError(ReminderError):
    """Alarm registration was refused or failed.

    When raised after the reminder was persisted, ``reminder_id`` names the
    record that stays pending until the next recovery pass.
    """

    def __init__(self, message, reminder_id=None):
        super().__init__(message)
        self.reminder_id = reminder_id


class ExactAlarmDenied(SchedulingError):
    """Exact-time alarms are not permitted right now."""


class NotFound(ReminderError):
    """No reminder matched the given id or alarm id."""
