import pytest

from errors import SchedulingError, ExactAlarmDenied
from models import AlarmEvent
from scheduler import AlarmScheduler, job_id_for

HOUR = 3600 * 1000


def test_schedule_registers_one_job(alarms, aps, clock):
    fire_at = clock() + HOUR
    alarms.schedule(11, fire_at, "Take medication", chat_id=5)

    job = aps.get_job(job_id_for(11))
    assert job is not None
    assert tuple(job.args) == (AlarmEvent(11, "Take medication", 5),)
    assert alarms.next_fire_millis(11) == fire_at
    assert alarms.is_registered(11)


def test_schedule_rejects_past_and_present_times(alarms, clock):
    with pytest.raises(SchedulingError):
        alarms.schedule(1, clock() - 1, "late")
    with pytest.raises(SchedulingError):
        alarms.schedule(1, clock(), "now")
    assert not alarms.is_registered(1)


def test_schedule_denied_without_exact_permission(alarms, permission, clock):
    permission.allowed = False

    with pytest.raises(ExactAlarmDenied):
        alarms.schedule(2, clock() + HOUR, "denied")
    assert not alarms.is_registered(2)


def test_inexact_fallback_has_no_misfire_limit(alarms, aps, permission, clock):
    permission.allowed = False
    alarms.schedule_inexact(3, clock() + HOUR, "best effort")

    assert aps.get_job(job_id_for(3)).misfire_grace_time is None


def test_inexact_fallback_can_be_disabled(aps, receiver, clock):
    alarms = AlarmScheduler(aps, receiver.on_alarm, inexact_fallback=False, clock=clock)

    with pytest.raises(SchedulingError):
        alarms.schedule_inexact(4, clock() + HOUR, "nowhere")


def test_same_alarm_id_last_write_wins(alarms, aps, clock):
    alarms.schedule(5, clock() + HOUR, "first")
    alarms.schedule(5, clock() + 2 * HOUR, "second")

    jobs = [job for job in aps.get_jobs() if job.id == job_id_for(5)]
    assert len(jobs) == 1
    assert jobs[0].args[0].message == "second"
    assert alarms.next_fire_millis(5) == clock() + 2 * HOUR


def test_cancel_is_safe_when_absent(alarms, clock):
    assert alarms.cancel(6) is False
    alarms.schedule(6, clock() + HOUR, "cancel me")
    assert alarms.cancel(6) is True
    assert not alarms.is_registered(6)
    assert alarms.next_fire_millis(6) is None


def test_cancel_all_leaves_foreign_jobs(alarms, aps, clock):
    alarms.schedule(7, clock() + HOUR, "a")
    alarms.schedule(8, clock() + HOUR, "b")
    aps.add_job(print, "interval", minutes=5, id="reconcile")

    assert alarms.cancel_all() == 2
    assert [job.id for job in aps.get_jobs()] == ["reconcile"]


def test_scheduler_failure_is_wrapped(aps, receiver, clock, monkeypatch):
    monkeypatch.setattr(aps, "add_job", _raise)
    alarms = AlarmScheduler(aps, receiver.on_alarm, clock=clock)

    with pytest.raises(SchedulingError):
        alarms.schedule(9, clock() + HOUR, "broken")


def _raise(*args, **kwargs):
    raise RuntimeError("scheduler unavailable")
