"""Unit tests for Schedule parsing and validation."""

import pytest

from pondcontrol.scheduler.schedule_types import (
    Schedule,
    RepeatPolicy,
    TransitionKind,
    parse_time_to_minutes,
    parse_remote_schedules,
    validate_schedule_record,
)


def make_schedule(**overrides):
    record = {
        'id': 'abc',
        'deviceType': 'pump',
        'startTime': '06:30',
        'endTime': '07:15',
    }
    record.update(overrides)
    return Schedule(record)


class TestParseTime:
    """Test HH:MM parsing."""

    def test_valid_times(self):
        assert parse_time_to_minutes('00:00') == 0
        assert parse_time_to_minutes('08:05') == 485
        assert parse_time_to_minutes('23:59') == 1439

    @pytest.mark.parametrize('value', ['24:00', '8', 'abc', '12:60', None, 800])
    def test_invalid_times(self, value):
        with pytest.raises(ValueError):
            parse_time_to_minutes(value)


class TestScheduleDefaults:
    """Test defaults applied to sparse records."""

    def test_minimal_record(self):
        schedule = make_schedule()

        assert schedule.device_id == 'pump'
        assert schedule.device_name == 'pump'
        assert schedule.enabled is True
        assert schedule.days_of_week == [0, 1, 2, 3, 4, 5, 6]
        assert schedule.repeat is RepeatPolicy.DAILY
        assert schedule.start_minute == 390
        assert schedule.end_minute == 435
        assert schedule.last_executed is None

    def test_disabled_by_either_flag(self):
        assert make_schedule(enabled=False).enabled is False
        assert make_schedule(isActive=False).enabled is False
        assert make_schedule(enabled=True, isActive=True).enabled is True

    def test_days_as_index_keyed_object(self):
        schedule = make_schedule(daysOfWeek={'0': 1, '1': 3, '2': 5})
        assert schedule.days_of_week == [1, 3, 5]

    def test_unknown_repeat_falls_back_to_daily(self):
        assert make_schedule(repeat='weekly').repeat is RepeatPolicy.DAILY

    def test_once(self):
        assert make_schedule(repeat='once').is_once() is True
        assert make_schedule(repeat='custom').is_once() is False

    def test_targets(self):
        schedule = make_schedule()
        assert schedule.target_minute(TransitionKind.ON) == 390
        assert schedule.target_minute(TransitionKind.OFF) == 435
        assert schedule.target_time(TransitionKind.OFF) == '07:15'
        assert TransitionKind.ON.state == 1
        assert TransitionKind.OFF.state == 0


class TestScheduleValidation:
    """Test rejection of malformed records."""

    @pytest.mark.parametrize('overrides', [
        {'id': ''},
        {'deviceType': None},
        {'startTime': '25:00'},
        {'daysOfWeek': [7]},
        {'daysOfWeek': [True]},
        {'daysOfWeek': 'mon'},
    ])
    def test_invalid_records(self, overrides):
        with pytest.raises(ValueError):
            make_schedule(**overrides)

    def test_missing_end_time(self):
        with pytest.raises(ValueError, match="endTime"):
            Schedule({'id': 'x', 'deviceType': 'pump', 'startTime': '06:00'})

    def test_validate_schedule_record(self):
        assert validate_schedule_record({'startTime': '06:00', 'endTime': '07:00'}) == (True, None)

        is_valid, error = validate_schedule_record({'startTime': 'soon', 'endTime': '07:00'})
        assert is_valid is False
        assert 'soon' in error


class TestParseRemoteSchedules:
    """Test flattening of the schedules subtree."""

    def test_flattens_and_sorts(self):
        data = {
            'pump': {
                'b': {'startTime': '09:00', 'endTime': '10:00'},
                'a': {'startTime': '07:00', 'endTime': '08:00'},
            },
            'aerator': {
                'c': {'startTime': '12:00', 'endTime': '13:00', 'deviceId': 'aerator2'},
            },
        }

        schedules = parse_remote_schedules(data)

        assert [s.id for s in schedules] == ['c', 'a', 'b']
        assert schedules[0].device_type == 'aerator'
        assert schedules[0].device_id == 'aerator2'

    def test_skips_malformed(self):
        data = {
            'pump': {
                'good': {'startTime': '07:00', 'endTime': '08:00'},
                'bad': {'startTime': 'never', 'endTime': '08:00'},
                'junk': 'not a record',
            },
            'light': ['not', 'a', 'dict'],
        }

        schedules = parse_remote_schedules(data)

        assert [s.id for s in schedules] == ['good']

    def test_empty(self):
        assert parse_remote_schedules(None) == []
        assert parse_remote_schedules({}) == []
        assert parse_remote_schedules('nope') == []

    def test_to_dict_round_trips_fields(self):
        schedule = make_schedule(repeat='once', lastExecuted=123, daysOfWeek=[1, 2])
        record = schedule.to_dict()

        assert record['repeat'] == 'once'
        assert record['lastExecuted'] == 123
        assert record['daysOfWeek'] == [1, 2]
        assert record['enabled'] is True
