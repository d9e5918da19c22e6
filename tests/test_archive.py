"""Tests for the streaming tar.gz codec."""

import gzip
import io
import os
import tarfile

import pytest

from mini_runc.archive import (create_file, create_tar_gz, extract_file,
                               extract_tar_gz)
from mini_runc.exceptions import ArchiveError
from tests.helpers import (dir_entry, fifo_entry, file_entry, hardlink_entry,
                           snapshot, symlink_entry, tar_bytes, tar_gz_bytes)


def extract(entries, destination, **kwargs):
    extract_tar_gz(io.BytesIO(tar_gz_bytes(entries)), destination, **kwargs)


def read(path):
    with open(path, "rb") as f:
        return f.read()


def archive_members(data):
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
        return [(m.name.rstrip("/"), m) for m in tar.getmembers()]


class TestExtract:
    """Extraction of each supported entry type."""

    def test_directories_and_files(self, workdir):
        extract(
            [
                dir_entry("etc"),
                file_entry("etc/alpine-release", b"3.20.3\n"),
                file_entry("etc/script.sh", b"#!/bin/sh\n", mode=0o755),
            ],
            workdir,
        )

        assert os.path.isdir(os.path.join(workdir, "etc"))
        assert read(os.path.join(workdir, "etc/alpine-release")) == b"3.20.3\n"
        assert os.access(os.path.join(workdir, "etc/script.sh"), os.X_OK)

    def test_existing_directory_is_not_an_error(self, workdir):
        entries = [dir_entry("etc"), file_entry("etc/hostname", b"box\n")]
        extract(entries, workdir)
        extract(entries, workdir)

        assert read(os.path.join(workdir, "etc/hostname")) == b"box\n"

    def test_later_entries_overwrite_files(self, workdir):
        extract([dir_entry("etc"), file_entry("etc/motd", b"first layer\n")], workdir)
        extract([dir_entry("etc"), file_entry("etc/motd", b"second\n")], workdir)

        assert read(os.path.join(workdir, "etc/motd")) == b"second\n"

    def test_symlink_target_need_not_exist(self, workdir):
        extract([symlink_entry("dangling", "does/not/exist")], workdir)

        path = os.path.join(workdir, "dangling")
        assert os.path.islink(path)
        assert os.readlink(path) == "does/not/exist"

    def test_symlink_replaced_by_later_layer(self, workdir):
        extract([symlink_entry("bin", "usr/bin")], workdir)
        extract([symlink_entry("bin", "usr/local/bin")], workdir)

        assert os.readlink(os.path.join(workdir, "bin")) == "usr/local/bin"

    def test_regular_file_never_written_through_symlink(self, tmp_path, workdir):
        outside = tmp_path / "outside.txt"
        outside.write_bytes(b"untouched")

        extract([dir_entry("etc"), symlink_entry("etc/passwd", str(outside))], workdir)
        extract([dir_entry("etc"), file_entry("etc/passwd", b"root:x:0:0\n")], workdir)

        path = os.path.join(workdir, "etc/passwd")
        assert not os.path.islink(path)
        assert read(path) == b"root:x:0:0\n"
        assert outside.read_bytes() == b"untouched"

    def test_parent_symlink_outside_destination_refused(self, tmp_path, workdir):
        host = tmp_path / "host"
        host.mkdir()

        with pytest.raises(ArchiveError, match="outside destination"):
            extract(
                [symlink_entry("evil", str(host)), file_entry("evil/pwned", b"owned")],
                workdir,
            )

        assert not (host / "pwned").exists()

    def test_parent_symlink_outside_refused_for_directories(self, tmp_path, workdir):
        host = tmp_path / "host"
        host.mkdir()

        with pytest.raises(ArchiveError, match="outside destination"):
            extract([symlink_entry("evil", str(host)), dir_entry("evil/sub")], workdir)

        assert not (host / "sub").exists()

    def test_parent_symlink_outside_refused_in_later_layer(self, tmp_path, workdir):
        host = tmp_path / "host"
        host.mkdir()
        extract([symlink_entry("etc", "../host")], workdir)

        with pytest.raises(ArchiveError, match="outside destination"):
            extract([file_entry("etc/passwd", b"root::0:0\n")], workdir)

        assert os.listdir(str(host)) == []

    def test_hard_link_through_outside_symlink_refused(self, tmp_path, workdir):
        host = tmp_path / "host"
        host.mkdir()
        (host / "shadow").write_bytes(b"secret")

        with pytest.raises(ArchiveError, match="outside destination"):
            extract(
                [symlink_entry("evil", str(host)), hardlink_entry("stolen", "evil/shadow")],
                workdir,
            )

        assert not os.path.exists(os.path.join(workdir, "stolen"))

    def test_parent_symlink_inside_destination_allowed(self, workdir):
        extract(
            [
                dir_entry("usr"),
                dir_entry("usr/bin"),
                symlink_entry("bin", "usr/bin"),
                file_entry("bin/sh", b"#!"),
            ],
            workdir,
        )

        assert read(os.path.join(workdir, "usr/bin/sh")) == b"#!"

    def test_absolute_names_land_inside_destination(self, workdir):
        extract([dir_entry("/etc"), file_entry("/etc/hosts", b"127.0.0.1\n")], workdir)

        assert read(os.path.join(workdir, "etc/hosts")) == b"127.0.0.1\n"

    def test_archive_root_entry_is_skipped(self, workdir):
        extract([dir_entry("."), file_entry("./a.txt", b"a")], workdir)

        assert read(os.path.join(workdir, "a.txt")) == b"a"

    def test_missing_end_of_archive_marker(self, workdir):
        # One header block plus one data block, without the trailing zero blocks
        raw = tar_bytes([file_entry("hello.txt", b"hello\n")])[:1024]
        extract_tar_gz(io.BytesIO(gzip.compress(raw)), workdir)

        assert read(os.path.join(workdir, "hello.txt")) == b"hello\n"


class TestHardLinks:
    """Deferred hard link resolution."""

    def test_link_before_its_target(self, workdir):
        extract(
            [
                dir_entry("data"),
                hardlink_entry("data/link", "data/target"),
                file_entry("data/target", b"shared content"),
            ],
            workdir,
        )

        link = os.path.join(workdir, "data/link")
        target = os.path.join(workdir, "data/target")
        assert os.path.samefile(link, target)
        assert read(link) == b"shared content"

    def test_link_after_its_target(self, workdir):
        extract(
            [file_entry("target", b"x"), hardlink_entry("link", "target")],
            workdir,
        )

        assert os.stat(os.path.join(workdir, "link")).st_nlink == 2

    def test_overwrite_in_later_layer_breaks_the_link(self, workdir):
        extract(
            [
                dir_entry("bin"),
                file_entry("bin/busybox", b"BUSYBOX"),
                hardlink_entry("bin/ls", "bin/busybox"),
            ],
            workdir,
        )
        extract([dir_entry("bin"), file_entry("bin/ls", b"GNU-LS")], workdir)

        busybox = os.path.join(workdir, "bin/busybox")
        ls = os.path.join(workdir, "bin/ls")
        assert read(busybox) == b"BUSYBOX"
        assert read(ls) == b"GNU-LS"
        assert not os.path.samefile(busybox, ls)
        assert os.stat(busybox).st_nlink == 1

    def test_unresolved_target_is_fatal(self, workdir):
        with pytest.raises(ArchiveError, match="Unresolved hard link"):
            extract([hardlink_entry("link", "missing")], workdir)


class TestExtractErrors:
    """Extraction failures."""

    def test_unrecognized_entry_type(self, workdir):
        with pytest.raises(ArchiveError, match="Unrecognized tar entry type"):
            extract([fifo_entry("pipe")], workdir)

    def test_path_outside_destination(self, tmp_path, workdir):
        with pytest.raises(ArchiveError, match="outside destination"):
            extract([file_entry("../evil", b"x")], workdir)

        assert not (tmp_path / "evil").exists()

    def test_not_gzip(self, workdir):
        with pytest.raises(ArchiveError):
            extract_tar_gz(io.BytesIO(b"this is not gzip data"), workdir)

    def test_truncated_member(self, workdir):
        raw = tar_bytes([file_entry("big.bin", b"x" * 4096)])[:1024]
        with pytest.raises(ArchiveError):
            extract_tar_gz(io.BytesIO(gzip.compress(raw)), workdir)

    def test_missing_archive_file(self, tmp_path, workdir):
        with pytest.raises(ArchiveError, match="not found"):
            extract_file(str(tmp_path / "nope.tar.gz"), workdir)


class TestWhiteouts:
    """Optional whiteout handling."""

    LOWER = [
        dir_entry("etc"),
        file_entry("etc/a", b"a"),
        file_entry("etc/b", b"b"),
        dir_entry("opt"),
        file_entry("opt/x", b"x"),
    ]
    UPPER = [
        dir_entry("etc"),
        file_entry("etc/.wh.a", b""),
        dir_entry("opt"),
        file_entry("opt/.wh..wh..opq", b""),
        file_entry("opt/y", b"y"),
    ]

    def test_markers_kept_by_default(self, workdir):
        extract(self.LOWER, workdir)
        extract(self.UPPER, workdir)

        assert os.path.exists(os.path.join(workdir, "etc/a"))
        assert os.path.exists(os.path.join(workdir, "etc/.wh.a"))

    def test_markers_applied_when_enabled(self, workdir):
        extract(self.LOWER, workdir, whiteouts=True)
        extract(self.UPPER, workdir, whiteouts=True)

        assert sorted(os.listdir(os.path.join(workdir, "etc"))) == ["b"]
        assert sorted(os.listdir(os.path.join(workdir, "opt"))) == ["y"]


class TestCreate:
    """Archive creation."""

    @pytest.fixture
    def source(self, tmp_path):
        src = tmp_path / "src"
        (src / "a_dir").mkdir(parents=True)
        (src / "a_dir" / "inner.txt").write_bytes(b"inner")
        (src / "b.txt").write_bytes(b"bee")
        (src / "z_dir").mkdir()
        os.symlink("missing", str(src / "dangling"))
        os.symlink("b.txt", str(src / "link"))

        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.txt").write_bytes(b"secret")
        os.symlink(str(outside), str(src / "outside_link"))
        return str(src)

    def test_lexical_depth_first_order(self, source):
        buf = io.BytesIO()
        create_tar_gz(source, buf)

        names = [name for name, _ in archive_members(buf.getvalue())]
        assert names == [
            "a_dir",
            "a_dir/inner.txt",
            "b.txt",
            "dangling",
            "link",
            "outside_link",
            "z_dir",
        ]

    def test_symlinks_are_not_followed(self, source):
        buf = io.BytesIO()
        create_tar_gz(source, buf)

        members = dict(archive_members(buf.getvalue()))
        assert members["outside_link"].issym()
        assert members["outside_link"].linkname.endswith("outside")
        assert members["dangling"].issym()
        assert members["dangling"].linkname == "missing"
        assert not any(name.startswith("outside_link/") for name in members)

    def test_hard_links_archived_once(self, source):
        os.link(os.path.join(source, "b.txt"), os.path.join(source, "c_hard.txt"))
        buf = io.BytesIO()
        create_tar_gz(source, buf)

        members = dict(archive_members(buf.getvalue()))
        assert members["b.txt"].isreg()
        assert members["c_hard.txt"].islnk()
        assert members["c_hard.txt"].linkname == "b.txt"

    def test_missing_source(self, tmp_path):
        with pytest.raises(ArchiveError, match="Not a directory"):
            create_tar_gz(str(tmp_path / "missing"), io.BytesIO())

    def test_create_file(self, source, tmp_path):
        archive = str(tmp_path / "out.tar.gz")
        create_file(source, archive, compresslevel=1)

        destination = tmp_path / "dest"
        destination.mkdir()
        extract_file(archive, str(destination))
        assert read(str(destination / "a_dir" / "inner.txt")) == b"inner"


class TestRoundTrip:
    """Extract followed by create reproduces the tree."""

    def test_files_dirs_and_symlinks(self, tmp_path):
        entries = [
            dir_entry("etc"),
            file_entry("etc/alpine-release", b"3.20.3\n"),
            file_entry("etc/profile", b"export PATH\n", mode=0o600),
            dir_entry("usr"),
            dir_entry("usr/bin"),
            file_entry("usr/bin/tool", b"\x7fELF", mode=0o755),
            symlink_entry("bin", "usr/bin"),
        ]
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()

        extract(entries, str(first))
        buf = io.BytesIO()
        create_tar_gz(str(first), buf)
        buf.seek(0)
        extract_tar_gz(buf, str(second))

        assert snapshot(str(first)) == snapshot(str(second))
        assert snapshot(str(second))["bin"] == ("symlink", "usr/bin")

    def test_hard_links_survive(self, tmp_path):
        entries = [hardlink_entry("b", "a"), file_entry("a", b"same")]
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()

        extract(entries, str(first))
        buf = io.BytesIO()
        create_tar_gz(str(first), buf)
        buf.seek(0)
        extract_tar_gz(buf, str(second))

        assert os.path.samefile(str(second / "a"), str(second / "b"))
