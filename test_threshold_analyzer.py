from datetime import datetime

import pytest

from errors import ConfigError
from log_parser import parse_line
from threshold_analyzer import Window, build_reason, compute_window, find_offenders


def _insert(store, lines):
    with store.transaction():
        store.insert_entries([parse_line(line) for line in lines])


def test_compute_window_hourly():
    assert compute_window('2017-01-01.13:00:00', 'hourly') == Window(
        start=datetime(2017, 1, 1, 13, 0, 0), end=datetime(2017, 1, 1, 14, 0, 0))


def test_compute_window_daily():
    assert compute_window('2017-01-01.13:00:00', 'daily').end == datetime(2017, 1, 2, 13, 0, 0)


def test_compute_window_accepts_datetime():
    start = datetime(2017, 12, 31, 23, 30)
    assert compute_window(start, 'hourly').end == datetime(2018, 1, 1, 0, 30)


@pytest.mark.parametrize('start, duration', [
    ('2017-01-01 13:00:00', 'hourly'),
    ('2017-01-01.25:00:00', 'hourly'),
    ('2017-01-01.13:00:00', 'weekly'),
])
def test_compute_window_rejects_invalid_input(start, duration):
    with pytest.raises(ConfigError):
        compute_window(start, duration)


def test_build_reason():
    assert build_reason('hourly') == 'Hourly request threshold exceeded'
    assert build_reason('daily') == 'Daily request threshold exceeded'


def test_find_offenders_above_threshold_only(store, sample_lines):
    _insert(store, sample_lines)

    with store.transaction():
        offenders = list(find_offenders(store, compute_window('2017-01-01.13:00:00', 'hourly'), 3))

    assert offenders == [('192.168.1.1', 5)]


def test_find_offenders_ordered_by_ascending_count(store, log_line):
    lines = [log_line('2017-01-01 13:05:00.000', '10.0.0.3')] * 4
    lines += [log_line('2017-01-01 13:05:00.000', '10.0.0.1')] * 2
    lines += [log_line('2017-01-01 13:05:00.000', '10.0.0.2')] * 3
    _insert(store, lines)

    with store.transaction():
        offenders = list(find_offenders(store, compute_window('2017-01-01.13:00:00', 'hourly'), 1))

    assert offenders == [('10.0.0.1', 2), ('10.0.0.2', 3), ('10.0.0.3', 4)]


def test_window_bounds_are_inclusive(store, log_line):
    _insert(store, [
        log_line('2017-01-01 12:59:59.999', '10.0.0.1'),
        log_line('2017-01-01 13:00:00.000', '10.0.0.1'),
        log_line('2017-01-01 14:00:00.000', '10.0.0.1'),
        log_line('2017-01-01 14:00:00.001', '10.0.0.1'),
    ])

    with store.transaction():
        offenders = list(find_offenders(store, compute_window('2017-01-01.13:00:00', 'hourly'), 1))

    assert offenders == [('10.0.0.1', 2)]


def test_find_offenders_is_lazy(store):
    with store.transaction():
        offenders = find_offenders(store, compute_window('2017-01-01.13:00:00', 'daily'), 1)

        assert iter(offenders) is offenders
        assert list(offenders) == []
