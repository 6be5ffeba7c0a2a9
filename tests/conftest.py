"""Shared test fixtures."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional
from unittest.mock import MagicMock

import pytest
import requests
import yaml

from kvmdeploy.models import ProvisionConfig


class FakeResponse:
    """Minimal stand-in for a streamed ``requests.Response``."""

    def __init__(
        self,
        payload: bytes = b"",
        status_code: int = 200,
        content_length: Optional[int] = None,
        error: Optional[Exception] = None,
    ):
        self.payload = payload
        self.status_code = status_code
        length = len(payload) if content_length is None else content_length
        self.headers: Dict[str, str] = {"Content-Length": str(length)}
        self.error = error
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.payload), 4):
            yield self.payload[i : i + 4]
        if self.error is not None:
            raise self.error

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_response():
    return FakeResponse


@pytest.fixture
def make_session():
    """Build a session whose HEAD answers ``head_status`` and GET serves ``payloads[url]``."""

    def _make(payloads: Dict[str, bytes], head_status: int = 200) -> MagicMock:
        session = MagicMock()
        session.head.side_effect = lambda url, **kw: FakeResponse(status_code=head_status)
        session.get.side_effect = lambda url, **kw: FakeResponse(payloads[url])
        return session

    return _make


@pytest.fixture
def config_data(tmp_path) -> Dict[str, object]:
    return {
        "vm_name": "test-vm",
        "memory": 4096,
        "cpus": 2,
        "os_variant": "rhel9.0",
        "firmware_dir": str(tmp_path / "ovmf"),
        "ovmf_base_url": "https://example.com/fw/",
        "ovmf_code": "OVMF_CODE.fd",
        "ovmf_vars": "OVMF_VARS.fd",
        "check_packages": False,
        "qcow2_image_url": "https://example.com/disk.qcow2",
        "qcow2_image_path": str(tmp_path / "images" / "disk.qcow2"),
    }


@pytest.fixture
def write_config(tmp_path):
    """Write a config mapping to disk as JSON, or YAML for .yaml names."""

    def _write(data, name: str = "kvm-config.json") -> Path:
        path = tmp_path / name
        if path.suffix in (".yaml", ".yml"):
            path.write_text(yaml.safe_dump(data))
        else:
            path.write_text(json.dumps(data))
        return path

    return _write


@pytest.fixture
def default_config(tmp_path) -> ProvisionConfig:
    """Return a ProvisionConfig whose artifacts live under tmp_path."""
    return ProvisionConfig(
        vm_name="test-vm",
        memory=4096,
        cpus=2,
        os_variant="rhel9.0",
        firmware_dir=tmp_path / "ovmf",
        ovmf_base_url="https://example.com/fw/",
        ovmf_code="OVMF_CODE.fd",
        ovmf_vars="OVMF_VARS.fd",
        check_packages=False,
        qcow2_image_url="https://example.com/disk.qcow2",
        qcow2_image_path=tmp_path / "images" / "disk.qcow2",
    )


@pytest.fixture
def artifact_payloads() -> Dict[str, bytes]:
    return {
        "https://example.com/fw/OVMF_CODE.fd": b"code" * 64,
        "https://example.com/fw/OVMF_VARS.fd": b"vars" * 32,
        "https://example.com/disk.qcow2": b"QFI\xfb" + b"\x00" * 252,
    }
