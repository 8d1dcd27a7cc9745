"""Tests for the operator CLI."""

import json
import uuid

import pytest

from scripts import backupctl


@pytest.fixture()
def cli(db_session, storage, data_source, cipher, notifier, monkeypatch):
    class _Session:
        def __call__(self):
            return self

        def __enter__(self):
            return db_session

        def __exit__(self, *exc):
            return False

    monkeypatch.setattr(backupctl, "SessionLocal", _Session())
    monkeypatch.setattr(backupctl, "configure_logging", lambda: None)
    monkeypatch.setattr(backupctl, "get_storage", lambda: storage)
    for module in ("app.services.backup_service", "app.services.restore_service", "app.services.health_service"):
        monkeypatch.setattr(f"{module}.get_storage", lambda: storage)
    for module in ("app.services.backup_service", "app.services.restore_service"):
        monkeypatch.setattr(f"{module}.get_data_source", lambda: data_source)
        monkeypatch.setattr(f"{module}.get_cipher", lambda: cipher)
    monkeypatch.setattr("app.services.health_service.get_notifier", lambda: notifier)
    return backupctl.main


def test_full_backup_prints_record(cli, capsys):
    assert cli(["full", "--name", "from-cli", "--tag", "ops", "--retention-days", "3"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["name"] == "from-cli"
    assert out["tags"] == ["ops"]
    assert out["created_by"] == "cli"
    assert out["status"] == "completed"


def test_restore_of_last_backup(cli, capsys, data_source):
    cli(["full"])
    backup_id = json.loads(capsys.readouterr().out)["backup_id"]

    assert cli(["restore", backup_id, "--target", "/tmp/restore"]) == 0

    point = json.loads(capsys.readouterr().out)
    assert point["backup_id"] == backup_id
    assert data_source.applied[0][1] == "/tmp/restore"


def test_engine_error_exits_non_zero(cli, capsys):
    assert cli(["restore", str(uuid.uuid4())]) == 1

    assert "backup_not_found" in capsys.readouterr().err


def test_stats_and_health(cli, capsys):
    cli(["stats"])
    assert json.loads(capsys.readouterr().out)["total"] == 0

    cli(["health"])
    assert json.loads(capsys.readouterr().out)["status"] == "critical"


def test_subcommand_is_required():
    with pytest.raises(SystemExit):
        backupctl.build_parser().parse_args([])
