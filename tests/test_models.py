"""Tests for kvmdeploy.models module."""

import dataclasses
from pathlib import Path

import pytest

from kvmdeploy.models import FetchTarget, ProvisionConfig


class TestFetchTarget:
    def test_is_named_tuple(self):
        target = FetchTarget("disk image", "https://example.com/d.qcow2", Path("/tmp/d.qcow2"))
        assert target[0] == "disk image"
        assert target.sha256 is None


class TestProvisionConfig:
    def test_defaults(self, default_config):
        assert default_config.interactive is False
        assert default_config.fix_permissions is True
        assert default_config.packages == ("virt-manager", "libvirt-daemon-system", "libvirt-clients")
        assert default_config.disk_bus == "virtio"
        assert default_config.video == "qxl"
        assert default_config.graphics == "spice"
        assert default_config.machine == "q35"
        assert default_config.watchdog == "i6300esb,action=reset"

    def test_firmware_paths_join_directory(self, default_config, tmp_path):
        assert default_config.ovmf_code_path == tmp_path / "ovmf" / "OVMF_CODE.fd"
        assert default_config.ovmf_vars_path == tmp_path / "ovmf" / "OVMF_VARS.fd"

    def test_firmware_urls_concatenate_base(self, default_config):
        assert default_config.ovmf_code_url == "https://example.com/fw/OVMF_CODE.fd"
        assert default_config.ovmf_vars_url == "https://example.com/fw/OVMF_VARS.fd"

    def test_fetch_targets_order_and_digests(self, default_config):
        cfg = dataclasses.replace(default_config, qcow2_image_sha256="a" * 64)
        targets = cfg.fetch_targets()
        assert [t.label for t in targets] == ["firmware code", "firmware vars", "disk image"]
        assert targets[2].url == "https://example.com/disk.qcow2"
        assert targets[2].sha256 == "a" * 64
        assert targets[0].sha256 is None

    def test_frozen(self, default_config):
        with pytest.raises(dataclasses.FrozenInstanceError):
            default_config.vm_name = "other"
