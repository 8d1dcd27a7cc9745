"""Tests for backup schedules and the scheduler tick."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from app.errors import BackupCreationFailed, ScheduleInvalid, ScheduleNotFound
from app.models.alert import BackupAlert
from app.models.backup import Backup, BackupType
from app.models.schedule import ScheduleFrequency
from app.services.common import ensure_utc, utcnow
from app.services.schedule_service import ScheduleService, compute_next_run, parse_time_of_day

# Monday
MONDAY_9AM = datetime(2026, 10, 19, 9, 0, tzinfo=UTC)


class TestComputeNextRun:
    def test_daily_later_today(self):
        assert compute_next_run("daily", "10:30", MONDAY_9AM) == datetime(2026, 10, 19, 10, 30, tzinfo=UTC)

    def test_daily_rolls_to_tomorrow_once_passed(self):
        assert compute_next_run("daily", "08:00", MONDAY_9AM) == datetime(2026, 10, 20, 8, 0, tzinfo=UTC)

    def test_daily_exact_time_is_not_due_again(self):
        assert compute_next_run("daily", "09:00", MONDAY_9AM) == datetime(2026, 10, 20, 9, 0, tzinfo=UTC)

    def test_weekly_defaults_to_sunday(self):
        assert compute_next_run(ScheduleFrequency.weekly, "02:00", MONDAY_9AM) == datetime(
            2026, 10, 25, 2, 0, tzinfo=UTC
        )

    def test_weekly_same_day_still_ahead(self):
        assert compute_next_run("weekly", "10:00", MONDAY_9AM, weekday=0) == datetime(2026, 10, 19, 10, 0, tzinfo=UTC)

    def test_weekly_same_day_passed_goes_a_week_out(self):
        assert compute_next_run("weekly", "08:00", MONDAY_9AM, weekday=0) == datetime(2026, 10, 26, 8, 0, tzinfo=UTC)

    def test_monthly_is_first_of_next_month(self):
        assert compute_next_run("monthly", "03:15", MONDAY_9AM) == datetime(2026, 11, 1, 3, 15, tzinfo=UTC)

    def test_monthly_wraps_the_year(self):
        december = datetime(2026, 12, 31, 23, 0, tzinfo=UTC)
        assert compute_next_run("monthly", "00:00", december) == datetime(2027, 1, 1, 0, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["24:00", "9:00", "12:60", "", "noon"])
    def test_invalid_time_of_day(self, value):
        with pytest.raises(ScheduleInvalid):
            parse_time_of_day(value)

    def test_invalid_frequency(self):
        with pytest.raises(ScheduleInvalid):
            compute_next_run("hourly", "01:00", MONDAY_9AM)

    def test_invalid_weekday(self):
        with pytest.raises(ScheduleInvalid):
            compute_next_run("weekly", "01:00", MONDAY_9AM, weekday=7)


@pytest.fixture()
def schedule_service(db_session, backup_service, health_service):
    return ScheduleService(db_session, backup_service=backup_service, health_service=health_service)


def _due_schedule(svc, name="nightly", **kwargs):
    """A daily schedule whose first run is already in the past."""
    return svc.schedule(name, kwargs.pop("backup_type", "full"), "daily", "00:00", now=utcnow() - timedelta(days=2), **kwargs)


class TestScheduleCrud:
    def test_schedule_computes_first_run(self, schedule_service):
        sched = schedule_service.schedule("nightly", "full", "daily", "10:30", now=MONDAY_9AM)

        assert ensure_utc(sched.next_run_at) == datetime(2026, 10, 19, 10, 30, tzinfo=UTC)
        assert sched.enabled is True
        assert sched.weekday is None

    def test_weekday_only_kept_for_weekly(self, schedule_service):
        weekly = schedule_service.schedule("weekly", "full", "weekly", "01:00", weekday=2, now=MONDAY_9AM)
        daily = schedule_service.schedule("daily", "full", "daily", "01:00", weekday=2, now=MONDAY_9AM)

        assert weekly.weekday == 2
        assert ensure_utc(weekly.next_run_at) == datetime(2026, 10, 21, 1, 0, tzinfo=UTC)
        assert daily.weekday is None

    def test_rejects_bad_input(self, schedule_service):
        with pytest.raises(ScheduleInvalid):
            schedule_service.schedule("", "full", "daily", "01:00")
        with pytest.raises(ScheduleInvalid):
            schedule_service.schedule("x", "differential", "daily", "01:00")
        with pytest.raises(ScheduleInvalid):
            schedule_service.schedule("x", "full", "daily", "25:00")
        with pytest.raises(ScheduleInvalid):
            schedule_service.schedule("x", "full", "daily", "01:00", retention_days=0)

    def test_update_recomputes_next_run(self, schedule_service):
        sched = schedule_service.schedule("nightly", "full", "daily", "10:30", now=MONDAY_9AM)

        updated = schedule_service.update_schedule(sched.schedule_id, now=MONDAY_9AM, time_of_day="11:45")

        assert ensure_utc(updated.next_run_at) == datetime(2026, 10, 19, 11, 45, tzinfo=UTC)

    def test_update_of_notify_keeps_next_run(self, schedule_service):
        sched = schedule_service.schedule("nightly", "full", "daily", "10:30", now=MONDAY_9AM)
        before = sched.next_run_at

        schedule_service.update_schedule(sched.schedule_id, notify=False)

        assert sched.notify is False
        assert sched.next_run_at == before

    def test_delete_and_require(self, schedule_service):
        sched = schedule_service.schedule("nightly", "full", "daily", "10:30")
        schedule_service.delete_schedule(sched.schedule_id)

        with pytest.raises(ScheduleNotFound):
            schedule_service.require(sched.schedule_id)

    def test_list_filters_by_enabled(self, schedule_service):
        schedule_service.schedule("on", "full", "daily", "01:00")
        schedule_service.schedule("off", "full", "daily", "01:00", enabled=False)

        assert [s.name for s in schedule_service.list_schedules(enabled=True)] == ["on"]
        assert len(schedule_service.list_schedules()) == 2


class TestTick:
    def test_due_schedule_fires_and_advances(self, schedule_service, db_session, notifier):
        sched = _due_schedule(schedule_service, retention_days=9)
        now = utcnow()

        result = schedule_service.tick(now)

        assert result["fired"] == [str(sched.schedule_id)]
        assert result["failed"] == []
        backup = db_session.query(Backup).one()
        assert backup.schedule_id == sched.schedule_id
        assert backup.retention_days == 9
        assert sched.last_backup_id == backup.backup_id
        assert ensure_utc(sched.last_run_at) == now
        assert ensure_utc(sched.next_run_at) > now
        assert notifier.sent and notifier.sent[0][0] == "success"

    def test_future_and_disabled_schedules_do_not_fire(self, schedule_service, db_session):
        schedule_service.schedule("later", "full", "daily", "00:00", now=utcnow() + timedelta(days=1))
        _due_schedule(schedule_service, name="off", enabled=False)

        result = schedule_service.tick()

        assert result["fired"] == []
        assert db_session.query(Backup).count() == 0

    def test_one_failure_does_not_stop_the_others(self, schedule_service, backup_service, db_session, notifier):
        bad = _due_schedule(schedule_service, name="bad")
        good = _due_schedule(schedule_service, name="good")
        real_create_full = backup_service.create_full

        def _create_full(**kwargs):
            if kwargs["name"].startswith("bad"):
                raise BackupCreationFailed("storage unavailable")
            return real_create_full(**kwargs)

        with patch.object(backup_service, "create_full", side_effect=_create_full):
            result = schedule_service.tick()

        assert result["failed"] == [str(bad.schedule_id)]
        assert result["fired"] == [str(good.schedule_id)]
        assert bad.last_run_at is not None
        assert ensure_utc(bad.next_run_at) > utcnow() - timedelta(seconds=5)
        kinds = sorted(kind for kind, _ in notifier.sent)
        assert kinds == ["error", "success"]
        assert db_session.query(BackupAlert).count() == 2

    def test_quiet_schedule_sends_no_alert(self, schedule_service, notifier):
        _due_schedule(schedule_service, notify=False)

        schedule_service.tick()

        assert notifier.sent == []

    def test_incremental_schedule_bootstraps_with_full(self, schedule_service, db_session):
        sched = _due_schedule(schedule_service, backup_type="incremental")

        schedule_service.tick()
        first = db_session.get(Backup, sched.last_backup_id)
        assert first.backup_type == BackupType.full
        assert sched.last_full_backup_id == first.backup_id

        sched.next_run_at = utcnow() - timedelta(minutes=1)
        db_session.flush()
        schedule_service.tick()

        second = db_session.get(Backup, sched.last_backup_id)
        assert second.backup_type == BackupType.incremental
        assert second.base_backup_id == first.backup_id

    def test_tick_runs_retention(self, schedule_service, backup_service):
        expired = backup_service.create_full(retention_days=1)

        result = schedule_service.tick(utcnow() + timedelta(days=5))

        assert str(expired.backup_id) in result["retention"]["deleted"]
