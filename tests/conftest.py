"""Shared fixtures for the Mini-Runc test suite."""

import tempfile

import pytest

from tests.helpers import dir_entry, file_entry, symlink_entry, write_image

ALPINE_VERSION = b"3.20.3\n"


@pytest.fixture
def alpine_layer():
    """A single layer shaped like a tiny Alpine rootfs."""
    return [
        dir_entry("etc"),
        file_entry("etc/alpine-release", ALPINE_VERSION),
        dir_entry("usr"),
        dir_entry("usr/bin"),
        symlink_entry("bin", "usr/bin"),
    ]


@pytest.fixture
def alpine_image(tmp_path, alpine_layer):
    """(archive path, digest) for a one-layer image."""
    source = tmp_path / "images"
    source.mkdir()
    return write_image(str(source), [alpine_layer])


@pytest.fixture
def scratch_tmp(tmp_path, monkeypatch):
    """Point tempfile at an empty directory so leftovers can be counted."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    return str(scratch)


@pytest.fixture
def state_root(tmp_path):
    root = tmp_path / "state"
    root.mkdir()
    return str(root)


@pytest.fixture
def workdir(tmp_path):
    path = tmp_path / "work"
    path.mkdir()
    return str(path)
