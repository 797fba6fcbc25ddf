import json
from datetime import datetime, time
from uuid import UUID, uuid4

import pytest

from kaisheng.manager import ScheduleManager


def test_schedule_manager_persistence(data_dir):
    manager = ScheduleManager()
    manager.add_schedule("Bedtime", "10pm", "6am", block_entire_device=True)

    assert len(manager.schedules) == 1
    assert manager.schedules[0].start_time == time(22, 0)

    # Reload manager
    manager2 = ScheduleManager()
    assert len(manager2.schedules) == 1
    assert manager2.schedules[0].name == "Bedtime"
    assert manager2.schedules[0].block_entire_device
    assert isinstance(manager2.schedules[0].id, UUID)

    saved = json.loads((data_dir / "schedules.json").read_text())
    assert saved[0]["start_time"] == "22:00:00"


def test_add_schedule_with_days_is_recurring(data_dir):
    manager = ScheduleManager()
    s = manager.add_schedule("School", "08:00", "15:00", ["mon", "tue"], ["YouTube"])
    assert s.is_recurring
    assert s.recurring_days == ["Mon", "Tue"]


def test_add_schedule_requires_something_to_block(data_dir):
    manager = ScheduleManager()
    with pytest.raises(ValueError):
        manager.add_schedule("Nothing", "08:00", "09:00")
    assert manager.schedules == []


def test_add_schedule_rejects_empty_window(data_dir):
    manager = ScheduleManager()
    with pytest.raises(ValueError):
        manager.add_schedule("Empty", "08:00", "8am", blocked_apps=["X"])


def test_add_schedule_rejects_bad_time(data_dir):
    manager = ScheduleManager()
    with pytest.raises(ValueError):
        manager.add_schedule("Bad", "soon", "later", blocked_apps=["X"])


def test_schedule_manager_remove(data_dir):
    manager = ScheduleManager()
    s = manager.add_schedule("Focus", "8pm", "9pm", blocked_apps=["Reddit"])
    manager.remove_schedule(s.id)

    assert len(manager.schedules) == 0
    assert ScheduleManager().schedules == []


def test_remove_unknown_schedule(data_dir):
    manager = ScheduleManager()
    with pytest.raises(LookupError):
        manager.remove_schedule(uuid4())


def test_set_enabled_persists(data_dir):
    manager = ScheduleManager()
    s = manager.add_schedule("Focus", "8pm", "9pm", blocked_apps=["Reddit"])

    manager.set_enabled(s.id, False)
    assert not ScheduleManager().get_schedule(s.id).enabled

    manager.set_enabled(str(s.id), True)
    assert ScheduleManager().get_schedule(s.id).enabled


def test_reload_picks_up_changes_from_other_managers(data_dir):
    reader = ScheduleManager()
    assert reader.schedules == []

    ScheduleManager().add_schedule("Focus", "8pm", "9pm", blocked_apps=["Reddit"])
    reader.reload()
    assert [s.name for s in reader.schedules] == ["Focus"]


def test_corrupt_schedule_file_is_ignored(data_dir):
    (data_dir / "schedules.json").write_text("{not json")
    assert ScheduleManager().schedules == []


def test_manager_resolves_policy(data_dir):
    manager = ScheduleManager()
    manager.add_schedule("Social", "20:00", "23:00", blocked_apps=["Instagram"])
    manager.add_schedule("Bedtime", "22:00", "06:00", block_entire_device=True)

    policy = manager.resolve_policy(datetime(2024, 1, 1, 22, 30))
    assert policy.schedule.name == "Bedtime"

    sched, start = manager.next_start(datetime(2024, 1, 1, 12, 0))
    assert sched.name == "Social"
    assert start == datetime(2024, 1, 1, 20, 0)
