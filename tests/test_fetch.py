"""Tests for kvmdeploy.fetch module."""

from __future__ import annotations

import hashlib
import stat
from unittest.mock import MagicMock

import pytest
import requests

from kvmdeploy.exceptions import SourceUnreachable, TransferFailed
from kvmdeploy.fetch import (
    checksum_path,
    download_file,
    ensure_fetched,
    is_complete,
    probe_url,
    recorded_digest,
)
from kvmdeploy.models import FetchTarget

URL = "https://example.com/disk.qcow2"
PAYLOAD = b"QFI\xfb" + b"\x01" * 60


@pytest.fixture
def target(tmp_path):
    return FetchTarget("disk image", URL, tmp_path / "images" / "disk.qcow2")


class TestProbe:
    def test_reachable(self, fake_response):
        session = MagicMock()
        session.head.return_value = fake_response(status_code=200)
        probe_url(URL, session)
        session.head.assert_called_once()
        assert session.head.call_args.kwargs["allow_redirects"] is True

    def test_connection_error(self):
        session = MagicMock()
        session.head.side_effect = requests.ConnectionError("no route")
        with pytest.raises(SourceUnreachable, match="is not accessible"):
            probe_url(URL, session)

    def test_not_found(self, fake_response):
        session = MagicMock()
        session.head.return_value = fake_response(status_code=404)
        with pytest.raises(SourceUnreachable, match="HTTP 404"):
            probe_url(URL, session)

    def test_head_rejected_falls_back_to_get(self, fake_response):
        session = MagicMock()
        session.head.return_value = fake_response(status_code=405)
        get_resp = fake_response(status_code=200)
        session.get.return_value = get_resp
        probe_url(URL, session)
        assert session.get.call_args.kwargs["stream"] is True
        assert get_resp.closed


class TestCompleteness:
    def test_missing_file(self, target):
        assert is_complete(target) is False

    def test_empty_file_is_incomplete(self, target):
        target.path.parent.mkdir(parents=True)
        target.path.write_bytes(b"")
        assert is_complete(target) is False

    def test_present_file_without_digest(self, target):
        target.path.parent.mkdir(parents=True)
        target.path.write_bytes(PAYLOAD)
        assert is_complete(target) is True

    def test_expected_digest_mismatch(self, target):
        target.path.parent.mkdir(parents=True)
        target.path.write_bytes(PAYLOAD[:10])
        expected = target._replace(sha256=hashlib.sha256(PAYLOAD).hexdigest())
        assert is_complete(expected) is False

    def test_recorded_digest_mismatch(self, target):
        target.path.parent.mkdir(parents=True)
        target.path.write_bytes(PAYLOAD[:10])
        checksum_path(target.path).write_text(f"{hashlib.sha256(PAYLOAD).hexdigest()}  disk.qcow2\n")
        assert is_complete(target) is False

    def test_recorded_digest_parsing(self, tmp_path):
        path = tmp_path / "fw.fd"
        assert recorded_digest(path) is None
        checksum_path(path).write_text("ABCDEF  fw.fd\n")
        assert recorded_digest(path) == "abcdef"


class TestDownload:
    def test_success_writes_atomically(self, tmp_path, fake_response):
        destination = tmp_path / "disk.qcow2"
        session = MagicMock()
        session.get.return_value = fake_response(PAYLOAD)
        digest = download_file(URL, destination, session=session)
        assert destination.read_bytes() == PAYLOAD
        assert digest == hashlib.sha256(PAYLOAD).hexdigest()
        assert [p.name for p in tmp_path.iterdir()] == ["disk.qcow2"]

    def test_http_error(self, tmp_path, fake_response):
        session = MagicMock()
        session.get.return_value = fake_response(status_code=500)
        with pytest.raises(TransferFailed, match="HTTP error downloading"):
            download_file(URL, tmp_path / "disk.qcow2", session=session)

    def test_short_body_is_rejected(self, tmp_path, fake_response):
        destination = tmp_path / "disk.qcow2"
        session = MagicMock()
        session.get.return_value = fake_response(PAYLOAD, content_length=len(PAYLOAD) + 100)
        with pytest.raises(TransferFailed, match="Incomplete download"):
            download_file(URL, destination, session=session)
        assert list(tmp_path.iterdir()) == []

    def test_interrupted_stream_leaves_nothing(self, tmp_path, fake_response):
        session = MagicMock()
        session.get.return_value = fake_response(PAYLOAD, error=requests.ConnectionError("reset"))
        with pytest.raises(TransferFailed, match="interrupted"):
            download_file(URL, tmp_path / "disk.qcow2", session=session)
        assert list(tmp_path.iterdir()) == []

    def test_keyboard_interrupt_leaves_no_partial_file(self, tmp_path, fake_response):
        session = MagicMock()
        session.get.return_value = fake_response(PAYLOAD, error=KeyboardInterrupt())
        with pytest.raises(KeyboardInterrupt):
            download_file(URL, tmp_path / "disk.qcow2", session=session)
        assert list(tmp_path.iterdir()) == []
        assert session.get.return_value.closed

    def test_checksum_mismatch(self, tmp_path, fake_response):
        session = MagicMock()
        session.get.return_value = fake_response(PAYLOAD)
        with pytest.raises(TransferFailed, match="SHA-256 mismatch"):
            download_file(URL, tmp_path / "disk.qcow2", session=session, expected_sha256="0" * 64)
        assert list(tmp_path.iterdir()) == []


class TestEnsureFetched:
    def test_fetches_missing_file(self, target, make_session):
        session = make_session({URL: PAYLOAD})
        assert ensure_fetched(target, session) is True
        assert target.path.read_bytes() == PAYLOAD
        assert recorded_digest(target.path) == hashlib.sha256(PAYLOAD).hexdigest()
        assert stat.S_IMODE(checksum_path(target.path).stat().st_mode) == 0o644

    def test_second_call_transfers_nothing(self, target, make_session):
        session = make_session({URL: PAYLOAD})
        ensure_fetched(target, session)
        assert ensure_fetched(target, session) is False
        assert session.head.call_count == 1
        assert session.get.call_count == 1

    def test_existing_file_skips_network(self, target):
        target.path.parent.mkdir(parents=True)
        target.path.write_bytes(b"already here")
        session = MagicMock()
        assert ensure_fetched(target, session) is False
        session.head.assert_not_called()
        session.get.assert_not_called()

    def test_truncated_file_is_refetched(self, target, make_session):
        target.path.parent.mkdir(parents=True)
        target.path.write_bytes(b"")
        session = make_session({URL: PAYLOAD})
        assert ensure_fetched(target, session) is True
        assert target.path.read_bytes() == PAYLOAD

    def test_unreachable_source_writes_nothing(self, target, make_session):
        session = make_session({}, head_status=404)
        with pytest.raises(SourceUnreachable):
            ensure_fetched(target, session)
        assert not target.path.parent.exists()
        session.get.assert_not_called()
