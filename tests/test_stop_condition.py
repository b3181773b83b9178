import time

import pytest

from eocd.stop_condition import StopCondition


def test_max_evaluations_stops_after_exactly_n():
    condition = StopCondition(max_evaluations=5)
    condition.start()
    for _ in range(4):
        condition.evaluation()
        assert condition.is_running()
    condition.evaluation()
    assert not condition.is_running()
    condition.stop()


def test_max_generations_stops():
    condition = StopCondition(max_generations=3)
    condition.start()
    condition.iteration()
    condition.record_improvement()
    condition.iteration()
    condition.record_improvement()
    assert condition.is_running()
    condition.iteration()
    assert not condition.is_running()
    condition.stop()


def test_stagnation_waits_for_min_generations():
    condition = StopCondition(min_generations=5, max_no_improvement=1)
    condition.start()
    for i in range(4):
        condition.iteration()
        assert condition.is_running(), f"stopped early after {i + 1} generations"
    condition.iteration()
    assert not condition.is_running()
    condition.stop()


def test_improvement_resets_stagnation():
    condition = StopCondition(max_no_improvement=2)
    condition.start()
    for _ in range(10):
        condition.iteration()
        condition.record_improvement()
        assert condition.is_running()
    assert condition.performed_iterations_without_improvement() == 0
    condition.iteration()
    condition.iteration()
    assert not condition.is_running()
    condition.stop()


def test_evaluations_do_not_count_as_stagnation():
    condition = StopCondition(max_no_improvement=1)
    condition.start()
    for _ in range(20):
        condition.evaluation()
    assert condition.is_running()
    condition.stop()


def test_not_running_before_start_and_after_stop():
    condition = StopCondition(max_evaluations=10)
    assert not condition.is_running()
    condition.start()
    assert condition.is_running()
    condition.stop()
    condition.stop()
    assert not condition.is_running()


def test_events_ignored_when_stopped():
    condition = StopCondition()
    condition.evaluation()
    condition.iteration()
    assert condition.performed_evaluations() == 0
    assert condition.performed_iterations() == 0


def test_start_resets_counters():
    condition = StopCondition(max_evaluations=3)
    condition.start()
    for _ in range(3):
        condition.evaluation()
    condition.stop()
    condition.start()
    assert condition.performed_evaluations() == 0
    assert condition.is_running()
    condition.stop()


def test_time_budget():
    condition = StopCondition(max_seconds=0)
    condition.start()
    time.sleep(0.01)
    assert not condition.is_running()
    condition.stop()


def test_unbounded_maxima():
    condition = StopCondition(max_evaluations=-1, max_generations=None)
    condition.start()
    for _ in range(1000):
        condition.evaluation()
        condition.iteration()
    assert condition.is_running()
    assert condition.max_allowed_evaluations() is None
    condition.stop()


def test_min_greater_than_max_rejected():
    with pytest.raises(ValueError):
        StopCondition(min_evaluations=10, max_evaluations=5)
    with pytest.raises(ValueError):
        StopCondition(min_generations=-1)


def test_str_reports_progress():
    condition = StopCondition(max_evaluations=2000, max_generations=100, max_no_improvement=100, max_seconds=120)
    condition.start()
    condition.evaluation()
    condition.iteration()
    condition.stop()
    text = str(condition)
    assert text.startswith("StopCondition:")
    assert "Steps(1/100)" in text
    assert "Evaluations(1/2000)" in text
    assert "Seconds(0/120)" in text


def test_str_shows_zero_bound():
    condition = StopCondition(max_evaluations=0)
    text = str(condition)
    assert "Evaluations(0/0)" in text
    assert "Steps(0)" in text
