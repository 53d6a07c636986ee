from recovery import RecoveryCoordinator

HOUR = 3600 * 1000


def test_future_rescheduled_and_past_completed(store, alarms, recovery, make_reminder, clock):
    future = make_reminder("future", offset=HOUR, alarm_id=21)
    past = make_reminder("past", offset=-HOUR, alarm_id=22)

    report = recovery.run()

    assert report.rescheduled == [future.id]
    assert report.completed == [past.id]
    assert store.get(future.id).is_scheduled is True
    assert alarms.next_fire_millis(21) == future.fire_at_epoch_millis
    assert store.get(past.id).is_scheduled is False
    assert not alarms.is_registered(22)


def test_reminder_due_exactly_now_is_completed(store, recovery, make_reminder):
    due = make_reminder("due", offset=0)

    report = recovery.run()

    assert report.completed == [due.id]
    assert store.get(due.id).is_scheduled is False


def test_denied_exact_alarm_falls_back_to_inexact(recovery, alarms, permission, make_reminder, aps):
    reminder = make_reminder(alarm_id=31)
    permission.allowed = False

    report = recovery.run()

    assert report.rescheduled == [reminder.id]
    assert aps.get_job("alarm_31").misfire_grace_time is None


def test_unschedulable_reminder_stays_pending(store, alarms, permission, make_reminder, clock):
    alarms.inexact_fallback = False
    permission.allowed = False
    reminder = make_reminder(alarm_id=41)
    recovery = RecoveryCoordinator(store, alarms, clock=clock)

    report = recovery.run()

    assert report.failed == [reminder.id]
    assert store.get(reminder.id).is_scheduled is True
    assert not alarms.is_registered(41)


def test_one_failure_does_not_stop_the_pass(store, alarms, clock, make_reminder):
    first = make_reminder("first", offset=HOUR, alarm_id=51)
    second = make_reminder("second", offset=2 * HOUR, alarm_id=52)
    stale = make_reminder("stale", offset=-HOUR, alarm_id=53)
    original = alarms.schedule

    def flaky(alarm_id, *args, **kwargs):
        if alarm_id == 51:
            raise RuntimeError("boom")
        return original(alarm_id, *args, **kwargs)

    alarms.schedule = flaky
    report = RecoveryCoordinator(store, alarms, clock=clock).run()

    assert report.failed == [first.id]
    assert report.rescheduled == [second.id]
    assert report.completed == [stale.id]


def test_stale_reminder_with_live_alarm_is_left_to_fire(store, alarms, recovery, make_reminder, clock):
    reminder = make_reminder(offset=HOUR, alarm_id=61)
    alarms.schedule(61, reminder.fire_at_epoch_millis, reminder.message)
    clock.advance(2 * HOUR)

    report = recovery.run()

    assert report.skipped == [reminder.id]
    assert store.get(reminder.id).is_scheduled is True


def test_recovery_is_repeatable(recovery, make_reminder, alarms):
    make_reminder(alarm_id=71)

    recovery.run()
    report = recovery.run()

    assert len(report.rescheduled) == 1
    assert alarms.is_registered(71)
