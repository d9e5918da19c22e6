#!/usr/bin/env python3
"""
Streaming tar.gz codec for Mini-Runc.

Extraction reads the archive in a single forward pass. Hard links are
recorded as they are seen and only created once the whole stream has been
consumed, because tar does not guarantee that a link's target precedes it.
Symbolic links are created immediately since their targets need not exist.

Creation walks a directory depth-first in lexical order, never following
symbolic links, and writes entry names relative to the source directory:

    rootfs/
    ├── bin -> usr/bin        "bin"          (symlink, header only)
    ├── etc/                  "etc/"         (directory, header only)
    │   └── alpine-release    "etc/alpine-release"
    └── usr/ ...

Whiteouts
=========

Image layers may carry overlayfs-style deletion markers. They are only
interpreted when asked to (whiteouts=True):

    .wh.<name>      remove <name> from the tree built so far
    .wh..wh..opq    empty the marker's directory
"""

import logging
import os
import posixpath
import shutil
import tarfile
import zlib
from typing import BinaryIO, List, Optional, Tuple

from mini_runc.exceptions import ArchiveError

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."
WHITEOUT_OPAQUE = ".wh..wh..opq"
COPY_BUFSIZE = 1024 * 1024


def _resolve_member_path(destination: str, name: str) -> Optional[str]:
    """
    Map a tar entry name onto the destination directory.

    Returns:
        Absolute path, or None for the archive root itself

    Raises:
        ArchiveError: If the name escapes the destination
    """
    relpath = posixpath.normpath(name.lstrip("/"))
    if relpath in ("", "."):
        return None
    if relpath == ".." or relpath.startswith("../"):
        raise ArchiveError(f"Refusing to extract path outside destination: {name}")
    return os.path.join(destination, relpath)


def _check_parent_inside(destination: str, path: str, name: str) -> None:
    """
    Refuse a path whose parent directory resolves outside the destination.

    Symbolic links planted by earlier entries are resolved here, so a link
    in any parent component must stay inside the destination.

    Raises:
        ArchiveError: If a parent symlink leads outside the destination
    """
    root = os.path.realpath(destination)
    parent = os.path.realpath(os.path.dirname(path))
    if parent != root and not parent.startswith(root + os.sep):
        raise ArchiveError(
            f"Refusing to extract {name} through a symlink outside destination"
        )


def _is_real_directory(path: str) -> bool:
    return os.path.isdir(path) and not os.path.islink(path)


def _replace_non_directory(path: str) -> None:
    """Unlink whatever an earlier layer left at path, unless it is a directory."""
    if os.path.lexists(path) and not _is_real_directory(path):
        os.unlink(path)


def _remove_path(path: str) -> None:
    if not os.path.lexists(path):
        return
    if _is_real_directory(path):
        shutil.rmtree(path)
    else:
        os.unlink(path)


def _apply_whiteout(destination: str, relpath: str) -> bool:
    """
    Apply a whiteout marker.

    Returns:
        True if relpath was a marker (and must not be extracted)
    """
    basename = posixpath.basename(relpath)
    parent = posixpath.dirname(relpath)

    if basename == WHITEOUT_OPAQUE:
        target_dir = os.path.join(destination, parent)
        if _is_real_directory(target_dir):
            for entry in os.listdir(target_dir):
                _remove_path(os.path.join(target_dir, entry))
        logger.debug("opaque whiteout: %s", parent or "/")
        return True

    if basename.startswith(WHITEOUT_PREFIX):
        target = posixpath.join(parent, basename[len(WHITEOUT_PREFIX):])
        _remove_path(os.path.join(destination, target))
        logger.debug("whiteout: %s", target)
        return True

    return False


def _extract_member(
    tar: tarfile.TarFile,
    member: tarfile.TarInfo,
    destination: str,
    hard_links: List[Tuple[str, str]],
    whiteouts: bool,
) -> None:
    """Extract a single entry (hard links are only recorded)."""
    path = _resolve_member_path(destination, member.name)
    if path is None:
        if member.isdir():
            return
        raise ArchiveError(f"Archive root entry is not a directory: {member.name!r}")

    _check_parent_inside(destination, path, member.name)

    if whiteouts and _apply_whiteout(destination, os.path.relpath(path, destination)):
        return

    if member.isdir():
        try:
            os.mkdir(path, member.mode & 0o7777)
        except FileExistsError:
            pass
    elif member.isreg():
        # New inode: hard-linked siblings from earlier layers keep their content
        _replace_non_directory(path)
        fd = os.open(path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, member.mode & 0o7777)
        with os.fdopen(fd, "wb") as out:
            source = tar.extractfile(member)
            if source is not None:
                shutil.copyfileobj(source, out, COPY_BUFSIZE)
    elif member.islnk():
        target = _resolve_member_path(destination, member.linkname)
        if target is None:
            raise ArchiveError(
                f"Hard link {member.name} points at the archive root"
            )
        hard_links.append((path, target))
    elif member.issym():
        _replace_non_directory(path)
        os.symlink(member.linkname, path)
    else:
        raise ArchiveError(
            f"Unrecognized tar entry type {member.type!r} in {member.name}"
        )


def _resolve_hard_links(destination: str, hard_links: List[Tuple[str, str]]) -> None:
    """Create every deferred hard link; any missing target is fatal."""
    for link_path, target_path in hard_links:
        _check_parent_inside(destination, link_path, link_path)
        _check_parent_inside(destination, target_path, target_path)
        try:
            _replace_non_directory(link_path)
            os.link(target_path, link_path, follow_symlinks=False)
        except FileNotFoundError as e:
            raise ArchiveError(
                f"Unresolved hard link {link_path} -> {target_path}: {e}"
            ) from e
        except OSError as e:
            raise ArchiveError(
                f"Failed to create hard link {link_path} -> {target_path}: {e}"
            ) from e


def extract_tar_gz(stream: BinaryIO, destination: str, whiteouts: bool = False) -> None:
    """
    Extract a gzip-compressed tar stream into a directory.

    Directories that already exist are reused, so several layers can be
    applied onto the same tree. Later entries overwrite earlier files.

    Args:
        stream: Readable binary stream of tar.gz data
        destination: Existing directory to extract into
        whiteouts: Interpret .wh.* deletion markers

    Raises:
        ArchiveError: On any I/O failure, unsafe path, unsupported entry
            type or unresolved hard link
    """
    hard_links: List[Tuple[str, str]] = []
    current = None

    try:
        with tarfile.open(fileobj=stream, mode="r|gz") as tar:
            for member in tar:
                current = member.name
                _extract_member(tar, member, destination, hard_links, whiteouts)
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        where = f" at {current}" if current else ""
        raise ArchiveError(f"Failed to extract into {destination}{where}: {e}") from e

    _resolve_hard_links(destination, hard_links)
    logger.debug(
        "extracted into %s (%d deferred hard links)", destination, len(hard_links)
    )


def extract_file(archive_path: str, destination: str, whiteouts: bool = False) -> None:
    """Extract a tar.gz file on disk into a directory."""
    try:
        with open(archive_path, "rb") as f:
            extract_tar_gz(f, destination, whiteouts=whiteouts)
    except FileNotFoundError as e:
        raise ArchiveError(f"Archive not found: {archive_path}") from e


def _add_entry(tar: tarfile.TarFile, path: str, arcname: str) -> None:
    """Add one filesystem entry; headers come from lstat, never through links."""
    tarinfo = tar.gettarinfo(path, arcname)
    if tarinfo is None:
        logger.debug("skipping %s: unsupported file type", path)
        return

    if tarinfo.isreg():
        with open(path, "rb") as f:
            tar.addfile(tarinfo, f)
    else:
        tar.addfile(tarinfo)


def _add_tree(tar: tarfile.TarFile, directory: str, prefix: str) -> None:
    with os.scandir(directory) as it:
        entries = sorted(it, key=lambda entry: entry.name)

    for entry in entries:
        arcname = posixpath.join(prefix, entry.name) if prefix else entry.name
        _add_entry(tar, entry.path, arcname)
        if entry.is_dir(follow_symlinks=False):
            _add_tree(tar, entry.path, arcname)


def create_tar_gz(source: str, stream: BinaryIO, compresslevel: int = 9) -> None:
    """
    Write a gzip-compressed tar of a directory tree to a stream.

    Args:
        source: Directory to archive (not itself included as an entry)
        stream: Writable binary stream
        compresslevel: gzip level 0-9

    Raises:
        ArchiveError: On any I/O failure; the stream may hold partial output
    """
    source = os.path.abspath(source)
    if not _is_real_directory(source):
        raise ArchiveError(f"Not a directory: {source}")

    try:
        with tarfile.open(
            fileobj=stream, mode="w:gz", compresslevel=compresslevel
        ) as tar:
            _add_tree(tar, source, "")
    except (tarfile.TarError, OSError) as e:
        raise ArchiveError(f"Failed to archive {source}: {e}") from e


def create_file(source: str, archive_path: str, compresslevel: int = 9) -> None:
    """Write a tar.gz of a directory tree to a file on disk."""
    try:
        with open(archive_path, "wb") as f:
            create_tar_gz(source, f, compresslevel=compresslevel)
    except OSError as e:
        raise ArchiveError(f"Cannot write archive {archive_path}: {e}") from e
