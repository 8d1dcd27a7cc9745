"""Tests for the default storage, data source, cipher and notifier collaborators."""

import os
import time
from datetime import UTC, datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.errors import StorageError
from app.services.data_source import DataSourceError, DirectoryDataSource
from app.services.encryption import AesGcmCipher, EncryptedEnvelope, EncryptionError
from app.services.notifier import LogNotifier, WebhookNotifier
from app.services.script_runner import SubprocessScriptRunner
from app.services.storage import FileSystemStorage, sha256_hex


class TestFileSystemStorage:
    def test_write_read_delete(self, tmp_path):
        storage = FileSystemStorage(tmp_path)

        stored = storage.write("full/abc.bak", b"payload")

        assert stored.location == "full/abc.bak"
        assert stored.size == 7
        assert stored.checksum == sha256_hex(b"payload")
        assert storage.read("full/abc.bak") == b"payload"
        storage.delete("full/abc.bak")
        assert not (tmp_path / "full" / "abc.bak").exists()

    def test_rewrite_replaces_object(self, tmp_path):
        storage = FileSystemStorage(tmp_path)
        storage.write("full/abc.bak", b"first")
        storage.write("full/abc.bak", b"second")

        assert storage.read("full/abc.bak") == b"second"
        assert sorted(p.name for p in (tmp_path / "full").iterdir()) == ["abc.bak"]

    def test_delete_missing_is_noop(self, tmp_path):
        FileSystemStorage(tmp_path).delete("full/none.bak")

    @pytest.mark.parametrize("key", ["../escape.bak", "/etc/passwd", "full/../../x", ""])
    def test_rejects_unsafe_keys(self, tmp_path, key):
        with pytest.raises(StorageError):
            FileSystemStorage(tmp_path).write(key, b"x")

    def test_read_missing_raises_storage_error(self, tmp_path):
        with pytest.raises(StorageError):
            FileSystemStorage(tmp_path).read("full/missing.bak")

    def test_ping(self, tmp_path):
        assert FileSystemStorage(tmp_path / "nested").ping() is True


class TestDirectoryDataSource:
    def test_full_then_delta_export(self, tmp_path):
        source = tmp_path / "source"
        source.mkdir()
        (source / "old.txt").write_text("old")
        old_mtime = time.time() - 3600
        os.utime(source / "old.txt", (old_mtime, old_mtime))
        cutoff = datetime.fromtimestamp(time.time() - 60, UTC)
        (source / "sub").mkdir()
        (source / "sub" / "new.txt").write_text("new")
        ds = DirectoryDataSource(source)

        restore_full = tmp_path / "full"
        ds.apply(ds.export(), str(restore_full))
        restore_delta = tmp_path / "delta"
        ds.apply(ds.export(since=cutoff), str(restore_delta))

        assert (restore_full / "old.txt").read_text() == "old"
        assert (restore_full / "sub" / "new.txt").read_text() == "new"
        assert not (restore_delta / "old.txt").exists()
        assert (restore_delta / "sub" / "new.txt").read_text() == "new"

    def test_apply_refuses_to_overwrite_by_default(self, tmp_path):
        source = tmp_path / "source"
        source.mkdir()
        (source / "a.txt").write_text("a")
        ds = DirectoryDataSource(source)
        payload = ds.export()
        target = tmp_path / "target"
        target.mkdir()
        (target / "a.txt").write_text("existing")

        assert ds.conflicts(payload, str(target)) == [str(target / "a.txt")]
        with pytest.raises(DataSourceError, match="overwrite is disabled"):
            ds.apply(payload, str(target))
        ds.apply(payload, str(target), overwrite=True)
        assert (target / "a.txt").read_text() == "a"

    def test_garbage_payload_is_a_data_source_error(self, tmp_path):
        ds = DirectoryDataSource(tmp_path)

        with pytest.raises(DataSourceError):
            ds.apply(b"not a tarball", str(tmp_path / "out"), overwrite=True)

    def test_missing_source_exports_empty_archive(self, tmp_path):
        ds = DirectoryDataSource(tmp_path / "absent")
        target = tmp_path / "out"

        ds.apply(ds.export(), str(target))

        assert list(target.iterdir()) == []


class TestAesGcmCipher:
    def test_encrypt_decrypt(self):
        cipher = AesGcmCipher("secret", iterations=1000)

        envelope = cipher.encrypt(b"data")

        assert envelope.algorithm == "AES-256-GCM"
        assert len(envelope.iv) == 12
        assert len(envelope.salt) == 16
        assert cipher.decrypt(EncryptedEnvelope.from_bytes(envelope.to_bytes())) == b"data"

    def test_each_payload_gets_fresh_salt_and_iv(self):
        cipher = AesGcmCipher("secret", iterations=1000)
        a, b = cipher.encrypt(b"data"), cipher.encrypt(b"data")
        assert a.salt != b.salt
        assert a.iv != b.iv
        assert a.ciphertext != b.ciphertext

    def test_tampering_is_detected(self):
        cipher = AesGcmCipher("secret", iterations=1000)
        envelope = cipher.encrypt(b"data")
        tampered = EncryptedEnvelope(
            ciphertext=bytes([envelope.ciphertext[0] ^ 1]) + envelope.ciphertext[1:],
            iv=envelope.iv,
            salt=envelope.salt,
        )
        with pytest.raises(EncryptionError):
            cipher.decrypt(tampered)

    def test_wrong_key_fails(self):
        envelope = AesGcmCipher("one", iterations=1000).encrypt(b"data")
        with pytest.raises(EncryptionError):
            AesGcmCipher("two", iterations=1000).decrypt(envelope)

    def test_malformed_envelope(self):
        with pytest.raises(EncryptionError):
            EncryptedEnvelope.from_bytes(b"not json")

    def test_unknown_algorithm(self):
        cipher = AesGcmCipher("secret", iterations=1000)
        envelope = cipher.encrypt(b"data")
        odd = EncryptedEnvelope(ciphertext=envelope.ciphertext, iv=envelope.iv, salt=envelope.salt, algorithm="ROT13")
        with pytest.raises(EncryptionError):
            cipher.decrypt(odd)

    def test_empty_key_rejected(self):
        with pytest.raises(EncryptionError):
            AesGcmCipher("")


class TestNotifiers:
    def test_log_notifier(self, caplog):
        with caplog.at_level("ERROR"):
            assert LogNotifier().send("error", "backup failed") is True
        assert "BACKUP ALERT [ERROR]: backup failed" in caplog.text

    def test_webhook_posts_payload(self):
        response = MagicMock(status_code=200)
        with patch("app.services.notifier.httpx.post", return_value=response) as post:
            assert WebhookNotifier("https://hooks.example.com/x").send("warning", "disk") is True

        payload = post.call_args.kwargs["json"]
        assert payload["text"] == "[WARNING] disk"
        assert payload["attachments"][0]["color"] == "#daa520"

    def test_webhook_failure_returns_false(self):
        with patch("app.services.notifier.httpx.post", side_effect=httpx.ConnectError("refused")):
            assert WebhookNotifier("https://hooks.example.com/x").send("error", "x") is False

    def test_webhook_error_status_returns_false(self):
        response = MagicMock(status_code=500, text="oops")
        with patch("app.services.notifier.httpx.post", return_value=response):
            assert WebhookNotifier("https://hooks.example.com/x").send("error", "x") is False


class TestSubprocessScriptRunner:
    def test_success(self):
        result = SubprocessScriptRunner().run("true")
        assert result.ok

    def test_non_zero_exit_is_an_issue(self):
        result = SubprocessScriptRunner().run("false")
        assert result.issues == ["Script exited with 1"]

    def test_missing_binary_is_an_issue(self):
        result = SubprocessScriptRunner().run("/nonexistent/recover.sh")
        assert result.issues and "could not start" in result.issues[0]

    def test_timeout_is_an_issue(self):
        result = SubprocessScriptRunner().run("sleep 5", timeout=0.1)
        assert result.issues == ["Script timed out after 0.1s"]
