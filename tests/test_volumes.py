"""Tests for the volume provisioner."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from mcnode.errors import FilesystemError, ValidationError
from mcnode.identity import resolve
from mcnode.volumes import VolumeProvisioner

LOBBY = resolve("lobby", "alice@example.com")


class TestEnsure:
    def test_creates_directory_and_parents(self, tmp_path: Path):
        root = tmp_path / "deep" / "volume"
        path = VolumeProvisioner(root).ensure(LOBBY)
        assert path == root / "lobby-alice"
        assert path.is_dir()

    def test_second_call_is_noop(self, tmp_path: Path):
        volumes = VolumeProvisioner(tmp_path)
        first = volumes.ensure(LOBBY)
        (first / "world.dat").write_text("keep me")
        second = volumes.ensure(LOBBY)
        assert first == second
        assert (second / "world.dat").read_text() == "keep me"
        assert [p.name for p in tmp_path.iterdir()] == ["lobby-alice"]

    def test_mkdir_failure_becomes_filesystem_error(self, tmp_path: Path):
        volumes = VolumeProvisioner(tmp_path)
        with patch.object(Path, "mkdir", side_effect=PermissionError("denied")):
            with pytest.raises(FilesystemError, match="denied"):
                volumes.ensure(LOBBY)

    def test_file_in_the_way_is_filesystem_error(self, tmp_path: Path):
        (tmp_path / "lobby-alice").write_text("not a dir")
        with pytest.raises(FilesystemError):
            VolumeProvisioner(tmp_path).ensure(LOBBY)


class TestResolveFile:
    def test_joins_relative_path(self, tmp_path: Path):
        volumes = VolumeProvisioner(tmp_path)
        target = volumes.resolve_file(LOBBY, "plugins/config.yml")
        assert target == (tmp_path / "lobby-alice" / "plugins" / "config.yml").resolve()

    def test_empty_path_is_volume_root(self, tmp_path: Path):
        volumes = VolumeProvisioner(tmp_path)
        assert volumes.resolve_file(LOBBY, "") == (tmp_path / "lobby-alice").resolve()

    @pytest.mark.parametrize("bad", ["../other-bob/secret", "a/../../x", "/etc/passwd"])
    def test_rejects_escapes(self, tmp_path: Path, bad: str):
        with pytest.raises(ValidationError):
            VolumeProvisioner(tmp_path).resolve_file(LOBBY, bad)

    def test_rejects_symlink_escape(self, tmp_path: Path):
        volumes = VolumeProvisioner(tmp_path / "volume")
        base = volumes.ensure(LOBBY)
        outside = tmp_path / "outside"
        outside.mkdir()
        (base / "link").symlink_to(outside)
        with pytest.raises(ValidationError):
            volumes.resolve_file(LOBBY, "link/file.txt")
