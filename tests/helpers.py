"""Helpers for building archives and image fixtures in tests."""

import gzip
import hashlib
import io
import json
import os
import tarfile
from typing import Dict, List, Optional, Sequence, Tuple

Entry = Tuple[tarfile.TarInfo, Optional[bytes]]


def file_entry(name: str, data: bytes, mode: int = 0o644) -> Entry:
    info = tarfile.TarInfo(name)
    info.type = tarfile.REGTYPE
    info.size = len(data)
    info.mode = mode
    return info, data


def dir_entry(name: str, mode: int = 0o755) -> Entry:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = mode
    return info, None


def symlink_entry(name: str, target: str) -> Entry:
    info = tarfile.TarInfo(name)
    info.type = tarfile.SYMTYPE
    info.linkname = target
    info.mode = 0o777
    return info, None


def hardlink_entry(name: str, target: str) -> Entry:
    info = tarfile.TarInfo(name)
    info.type = tarfile.LNKTYPE
    info.linkname = target
    info.mode = 0o644
    return info, None


def fifo_entry(name: str) -> Entry:
    info = tarfile.TarInfo(name)
    info.type = tarfile.FIFOTYPE
    info.mode = 0o644
    return info, None


def tar_bytes(entries: Sequence[Entry]) -> bytes:
    """Uncompressed tar stream holding entries in the given order."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w") as tar:
        for info, data in entries:
            tar.addfile(info, io.BytesIO(data) if data is not None else None)
    return buf.getvalue()


def tar_gz_bytes(entries: Sequence[Entry], compresslevel: int = 9) -> bytes:
    return gzip.compress(tar_bytes(entries), compresslevel=compresslevel)


def write_tar_gz(path: str, entries: Sequence[Entry], compresslevel: int = 9) -> str:
    with open(path, "wb") as f:
        f.write(tar_gz_bytes(entries, compresslevel=compresslevel))
    return path


def sha256_of_tar(entries: Sequence[Entry]) -> str:
    return hashlib.sha256(tar_bytes(entries)).hexdigest()


def write_image(
    directory: str,
    layers: List[Sequence[Entry]],
    manifest: Optional[list] = None,
    name: str = "image.tar.gz",
    manifest_bytes: Optional[bytes] = None,
) -> Tuple[str, str]:
    """
    Write a docker-save style image archive.

    Args:
        directory: Where to put the archive
        layers: Entries for each layer, in order
        manifest: manifest.json content (default: one entry listing the layers)
        name: Archive filename
        manifest_bytes: Raw manifest.json content, overriding manifest

    Returns:
        (archive path, digest of its decompressed tar)
    """
    members: List[Entry] = []
    layer_names = []
    diff_ids = []
    for entries in layers:
        digest = sha256_of_tar(entries)
        layer_name = f"{digest}.tar.gz"
        if layer_name not in layer_names:
            members.append(file_entry(layer_name, tar_gz_bytes(entries)))
        layer_names.append(layer_name)
        diff_ids.append(f"sha256:{digest}")

    config = json.dumps(
        {
            "architecture": "amd64",
            "os": "linux",
            "rootfs": {"type": "layers", "diff_ids": diff_ids},
        }
    ).encode()
    config_name = f"{hashlib.sha256(config).hexdigest()}.json"
    members.append(file_entry(config_name, config))

    if manifest is None:
        manifest = [
            {"Config": config_name, "RepoTags": ["test:latest"], "Layers": layer_names}
        ]
    if manifest_bytes is None:
        manifest_bytes = json.dumps(manifest).encode()
    members.insert(0, file_entry("manifest.json", manifest_bytes))

    path = os.path.join(directory, name)
    write_tar_gz(path, members)
    return path, sha256_of_tar(members)


def snapshot(root: str) -> Dict[str, tuple]:
    """Describe a directory tree: files with content, dirs, symlink targets."""
    result = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = os.path.join(dirpath, name)
            rel = os.path.relpath(path, root)
            if os.path.islink(path):
                result[rel] = ("symlink", os.readlink(path))
            elif os.path.isdir(path):
                result[rel] = ("dir",)
            else:
                with open(path, "rb") as f:
                    result[rel] = ("file", f.read(), os.stat(path).st_mode & 0o777)
    return result
