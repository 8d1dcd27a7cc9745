"""Tests for chain-safe retention."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest

from app.errors import BackupCreationFailed, StorageError
from app.models.backup import Backup, BackupStatus
from app.services.common import utcnow
from app.services.retention_service import RetentionService, expires_at_for, is_pinned, pin


def _later(days: int = 100):
    return utcnow() + timedelta(days=days)


def test_expires_at_for_adds_retention_days():
    created = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
    assert expires_at_for(created, 30) == datetime(2026, 1, 31, 12, 0, tzinfo=UTC)


def test_unexpired_backups_are_kept(backup_service, db_session, storage):
    backup = backup_service.create_full(retention_days=30)

    result = RetentionService(db_session, storage).cleanup_expired(utcnow() + timedelta(days=1))

    assert result == {"deleted": [], "skipped_protected": [], "errors": 0}
    assert db_session.get(Backup, backup.backup_id) is not None


def test_expired_backup_is_deleted_with_payload(backup_service, db_session, storage):
    backup = backup_service.create_full(retention_days=1)
    location = backup.location

    result = RetentionService(db_session, storage).cleanup_expired(_later())

    assert result["deleted"] == [str(backup.backup_id)]
    assert location not in storage.objects
    assert db_session.get(Backup, backup.backup_id) is None


def test_expired_chain_is_released_newest_first(backup_service, db_session, storage):
    base = backup_service.create_full(retention_days=1)
    inc = backup_service.create_incremental(base.backup_id)

    result = RetentionService(db_session, storage).cleanup_expired(_later())

    assert result["deleted"] == [str(inc.backup_id), str(base.backup_id)]
    assert result["skipped_protected"] == []


def test_base_with_live_incremental_is_protected(backup_service, db_session, storage):
    base = backup_service.create_full(retention_days=1)
    inc = backup_service.create_incremental(base.backup_id, retention_days=365)

    result = RetentionService(db_session, storage).cleanup_expired(_later(10))

    assert result["deleted"] == []
    assert result["skipped_protected"] == [str(base.backup_id)]
    assert db_session.get(Backup, base.backup_id) is not None
    assert db_session.get(Backup, inc.backup_id) is not None
    assert base.location in storage.objects


def test_pinned_backup_is_protected(backup_service, db_session, storage):
    backup = backup_service.create_full(retention_days=1)

    with pin([backup.backup_id]):
        assert is_pinned(backup.backup_id)
        result = RetentionService(db_session, storage).cleanup_expired(_later())

    assert result["skipped_protected"] == [str(backup.backup_id)]
    assert not is_pinned(backup.backup_id)


def test_nested_pins_release_independently(backup_service):
    backup = backup_service.create_full()

    with pin([backup.backup_id]):
        with pin([backup.backup_id]):
            pass
        assert is_pinned(backup.backup_id)
    assert not is_pinned(backup.backup_id)


def test_running_backup_is_never_deleted(backup_service, db_session, storage):
    with patch("app.tasks.backups.run_backup.delay"):
        backup = backup_service.submit_full(retention_days=1)

    result = RetentionService(db_session, storage).cleanup_expired(_later())

    assert result["skipped_protected"] == [str(backup.backup_id)]
    assert db_session.get(Backup, backup.backup_id).status == BackupStatus.pending


def test_storage_failure_is_counted_and_record_kept(backup_service, db_session, storage):
    backup = backup_service.create_full(retention_days=1)

    with patch.object(storage, "delete", side_effect=StorageError("read-only filesystem")):
        result = RetentionService(db_session, storage).cleanup_expired(_later())

    assert result["errors"] == 1
    assert result["deleted"] == []
    assert db_session.get(Backup, backup.backup_id) is not None


def test_failed_backups_expire_too(backup_service, db_session, storage):
    storage.fail_writes = True
    with pytest.raises(BackupCreationFailed):
        backup_service.create_full(retention_days=1)
    storage.fail_writes = False
    failed = db_session.query(Backup).one()

    result = RetentionService(db_session, storage).cleanup_expired(_later())

    assert result["deleted"] == [str(failed.backup_id)]
