import threading
from datetime import datetime, timedelta

from kaisheng.manager import DowntimeMonitor, ScheduleManager


def test_check_reports_transitions(data_dir):
    sm = ScheduleManager()
    sm.add_schedule("Social", "20:00", "23:00", blocked_apps=["Instagram"])
    sm.add_schedule("Bedtime", "22:00", "06:00", block_entire_device=True)

    transitions = []
    monitor = DowntimeMonitor(
        sm,
        on_transition=lambda prev, cur: transitions.append(
            (prev.name if prev else None, cur.name if cur else None)
        ),
    )

    monitor.check(datetime(2024, 1, 1, 19, 0))
    assert not monitor.in_downtime
    assert transitions == []

    monitor.check(datetime(2024, 1, 1, 20, 0))
    monitor.check(datetime(2024, 1, 1, 21, 0))
    assert monitor.active_schedule.name == "Social"

    monitor.check(datetime(2024, 1, 1, 22, 0))
    monitor.check(datetime(2024, 1, 2, 6, 0))

    assert transitions == [
        (None, "Social"),
        ("Social", "Bedtime"),
        ("Bedtime", None),
    ]
    assert not monitor.in_downtime


def test_enforcer_runs_only_during_downtime(data_dir):
    sm = ScheduleManager()
    sm.add_schedule("Work", "09:00", "17:00", blocked_apps=["Steam"])

    enforced = []
    monitor = DowntimeMonitor(sm, enforcer=enforced.append)

    monitor.check(datetime(2024, 1, 1, 8, 0))
    monitor.check(datetime(2024, 1, 1, 9, 30))
    monitor.check(datetime(2024, 1, 1, 10, 30))
    monitor.check(datetime(2024, 1, 1, 17, 30))

    assert len(enforced) == 2
    assert all(p.blocked_apps == ["Steam"] for p in enforced)


def test_check_sees_schedules_added_elsewhere(data_dir):
    monitor = DowntimeMonitor(ScheduleManager())
    assert not monitor.check(datetime(2024, 1, 1, 12, 0)).in_downtime

    ScheduleManager().add_schedule("Lunch", "11:00", "13:00", blocked_apps=["Slack"])
    assert monitor.check(datetime(2024, 1, 1, 12, 0)).in_downtime


def test_get_status_when_idle(data_dir):
    monitor = DowntimeMonitor(ScheduleManager())
    assert monitor.get_status() == {
        "state": "IDLE",
        "active_schedule": None,
        "time_remaining": 0,
    }


def test_background_thread_enforces_and_stops(data_dir):
    now = datetime.now()
    sm = ScheduleManager()
    sm.add_schedule(
        "Now",
        (now - timedelta(hours=1)).strftime("%H:%M"),
        (now + timedelta(hours=1)).strftime("%H:%M"),
        blocked_apps=["Steam"],
    )

    enforced = threading.Event()
    monitor = DowntimeMonitor(sm, check_interval_seconds=1, enforcer=lambda p: enforced.set())
    monitor.start()
    try:
        assert enforced.wait(timeout=5)
        status = monitor.get_status()
        assert status["state"] == "DOWNTIME"
        assert status["active_schedule"] == "Now"
        assert status["time_remaining"] > 0
    finally:
        monitor.stop()

    assert monitor.get_status()["state"] == "IDLE"


def test_background_thread_survives_enforcer_errors(data_dir):
    now = datetime.now()
    sm = ScheduleManager()
    sm.add_schedule(
        "Now",
        (now - timedelta(hours=1)).strftime("%H:%M"),
        (now + timedelta(hours=1)).strftime("%H:%M"),
        block_entire_device=True,
    )

    calls = []
    second_call = threading.Event()

    def flaky(policy):
        calls.append(policy)
        if len(calls) == 1:
            raise RuntimeError("boom")
        second_call.set()

    monitor = DowntimeMonitor(sm, check_interval_seconds=1, enforcer=flaky)
    monitor.start()
    try:
        assert second_call.wait(timeout=5)
    finally:
        monitor.stop()
