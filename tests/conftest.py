import itertools
import time

import pytest
import pytz
from apscheduler.schedulers.background import BackgroundScheduler

from database import make_engine, make_session_factory, init_db
from models import Reminder
from receiver import AlarmReceiver
from recovery import RecoveryCoordinator
from scheduler import AlarmScheduler
from service import ReminderService
from store import ReminderStore

HOUR = 3600 * 1000


class FakeClock:
    def __init__(self, millis=None):
        self.millis = millis if millis is not None else int(time.time() * 1000)

    def __call__(self):
        return self.millis

    def advance(self, millis):
        self.millis += millis


class RecordingPresenter:
    def __init__(self):
        self.events = []

    async def present(self, event):
        self.events.append(event)


class Permission:
    def __init__(self, allowed=True):
        self.allowed = allowed

    def __call__(self):
        return self.allowed


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'reminders.db'}")
    init_db(engine)
    yield ReminderStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def aps():
    # Paused: jobs are registered with their run times but never executed.
    scheduler = BackgroundScheduler(timezone=pytz.UTC)
    scheduler.start(paused=True)
    yield scheduler
    scheduler.shutdown(wait=False)


@pytest.fixture
def presenter():
    return RecordingPresenter()


@pytest.fixture
def receiver(store, presenter):
    return AlarmReceiver(store, [presenter])


@pytest.fixture
def permission():
    return Permission()


@pytest.fixture
def alarms(aps, receiver, permission, clock):
    return AlarmScheduler(aps, receiver.on_alarm, exact_alarm_permission=permission, clock=clock)


@pytest.fixture
def service(store, alarms, clock):
    return ReminderService(store, alarms, clock=clock)


@pytest.fixture
def recovery(store, alarms, clock):
    return RecoveryCoordinator(store, alarms, clock=clock)


@pytest.fixture
def make_reminder(store, clock):
    alarm_ids = itertools.count(100)

    def _make(message="Take medication", offset=HOUR, alarm_id=None, chat_id=None):
        reminder = Reminder(
            message=message,
            fire_at_epoch_millis=clock() + offset,
            alarm_id=alarm_id if alarm_id is not None else next(alarm_ids),
            is_scheduled=True,
            created_at=clock(),
            chat_id=chat_id,
        )
        store.insert(reminder)
        return reminder
    return _make
