from datetime import datetime, timedelta

import pytest

from kaisheng.motion import MotionDetector
from kaisheng.schema import AppCategory

T0 = datetime(2024, 1, 1, 12, 0, 0)
ABOVE = (1.0, 0.5, 0.5)  # ~1.22 g
BELOW = (0.0, 0.0, 1.0)  # 1 g, at rest


def after(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def detector():
    return MotionDetector(
        acceleration_threshold=1.1,
        step_threshold=5,
        start_debounce_seconds=3.0,
        stop_debounce_seconds=2.0,
    )


def test_walking_starts_after_sustained_motion(detector):
    assert not detector.process_acceleration(*ABOVE, at=after(0))
    assert not detector.process_acceleration(*ABOVE, at=after(1))
    assert not detector.process_acceleration(*ABOVE, at=after(2.5))
    assert detector.process_acceleration(*ABOVE, at=after(3))
    assert detector.walk_start_time == after(3)


def test_dip_resets_start_debounce(detector):
    detector.process_acceleration(*ABOVE, at=after(0))
    detector.process_acceleration(*BELOW, at=after(1))
    detector.process_acceleration(*ABOVE, at=after(2))
    assert not detector.process_acceleration(*ABOVE, at=after(4))
    assert detector.process_acceleration(*ABOVE, at=after(5))


def test_walking_stops_after_sustained_rest(detector):
    for second in range(4):
        detector.process_acceleration(*ABOVE, at=after(second))
    assert detector.is_walking

    assert detector.process_acceleration(*BELOW, at=after(4))
    assert detector.process_acceleration(*BELOW, at=after(5))
    # A single step keeps the walk alive
    assert detector.process_acceleration(*ABOVE, at=after(5.5))
    assert detector.process_acceleration(*BELOW, at=after(6))
    assert detector.process_acceleration(*BELOW, at=after(7.5))
    assert not detector.process_acceleration(*BELOW, at=after(8))
    assert detector.walk_start_time is None


def test_activity_updates_are_immediate(detector):
    assert detector.process_activity(walking=True, automotive=False, at=after(0))
    assert not detector.process_activity(walking=True, automotive=True, at=after(1))
    assert detector.process_activity(walking=True, automotive=False, at=after(2))
    assert not detector.process_activity(walking=False, automotive=False, at=after(3))


def test_scrolling_restricted_after_step_threshold(detector):
    detector.record_steps(10)
    assert detector.step_count == 0  # ignored while not walking

    detector.process_activity(walking=True, automotive=False, at=after(0))
    detector.record_steps(4)
    assert not detector.should_restrict_scrolling()

    detector.record_steps(5)
    assert detector.should_restrict_scrolling()
    assert detector.restricts(AppCategory.SOCIAL)
    assert not detector.restricts(AppCategory.GAMES)

    detector.process_activity(walking=False, automotive=False, at=after(60))
    assert detector.step_count == 0
    assert not detector.should_restrict_scrolling()


def test_record_steps_rejects_negative(detector):
    with pytest.raises(ValueError):
        detector.record_steps(-1)


def test_walking_duration(detector):
    assert detector.walking_duration(after(10)) == 0.0
    detector.process_activity(walking=True, automotive=False, at=after(0))
    assert detector.walking_duration(after(90)) == 90.0


def test_listeners_see_each_transition_once(detector):
    events = []
    detector.add_listener(lambda walking, at: events.append((walking, at)))

    detector.process_activity(walking=True, automotive=False, at=after(0))
    detector.process_activity(walking=True, automotive=False, at=after(1))
    detector.process_activity(walking=False, automotive=True, at=after(2))

    assert events == [(True, after(0)), (False, after(2))]
