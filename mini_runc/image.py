#!/usr/bin/env python3
"""
Image archive loading for Mini-Runc.

An image archive is a tar.gz in the layout produced by `docker save`:

    image.tar.gz
    ├── manifest.json         # [{"Config": ..., "RepoTags": [...], "Layers": [...]}]
    ├── <config>.json         # image configuration blob
    └── <digest>.tar.gz       # one blob per layer

Loading validates the archive digest, extracts it into a working directory
and applies every layer, in manifest order, onto <working dir>/rootfs.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, List

from mini_runc.archive import extract_file
from mini_runc.digest import verify_archive_digest
from mini_runc.exceptions import EmptyImageError, ManifestError
from mini_runc.utils import MANIFEST_FILENAME, ROOTFS_DIRNAME

logger = logging.getLogger(__name__)


@dataclass
class Manifest:
    """A single manifest.json entry."""

    config: str = ""
    layers: List[str] = field(default_factory=list)
    repo_tags: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {"Config": self.config}
        if self.repo_tags:
            data["RepoTags"] = list(self.repo_tags)
        data["Layers"] = list(self.layers)
        return data


@dataclass
class Image:
    """An image materialized in a working directory."""

    working_dir: str
    rootfs: str
    manifest: Manifest
    digest: str = ""


def _string_list(entry: dict, key: str, path: str) -> List[str]:
    value = entry.get(key) or []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ManifestError(f"{path}: {key} must be a list of strings")
    return value


def parse_manifest(data: Any, path: str = MANIFEST_FILENAME) -> Manifest:
    """
    Parse decoded manifest.json content.

    Args:
        data: Decoded JSON value
        path: Source path, for error messages

    Returns:
        Manifest for the single entry

    Raises:
        ManifestError: If the manifest is not a one-element list of objects
    """
    if not isinstance(data, list):
        raise ManifestError(f"{path}: expected a JSON list, got {type(data).__name__}")
    if len(data) == 0:
        raise ManifestError(f"{path}: manifest has no entries")
    if len(data) > 1:
        raise ManifestError(
            f"{path}: ambiguous manifest, expected 1 entry but found {len(data)}"
        )

    entry = data[0]
    if not isinstance(entry, dict):
        raise ManifestError(f"{path}: manifest entry must be an object")

    config = entry.get("Config", "")
    if not isinstance(config, str):
        raise ManifestError(f"{path}: Config must be a string")

    return Manifest(
        config=config,
        layers=_string_list(entry, "Layers", path),
        repo_tags=_string_list(entry, "RepoTags", path),
    )


def read_manifest(path: str) -> Manifest:
    """Load and parse a manifest.json file."""
    if not os.path.exists(path):
        raise ManifestError(f"{MANIFEST_FILENAME} not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ManifestError(f"Invalid JSON in {path}: {e}") from e
    except (ValueError, OSError) as e:
        raise ManifestError(f"Cannot read {path}: {e}") from e

    return parse_manifest(data, path)


def load_image(
    archive_path: str,
    working_dir: str,
    expected_digest: str,
    whiteouts: bool = False,
) -> Image:
    """
    Validate, extract and assemble an image archive.

    Args:
        archive_path: Path to the image .tar.gz
        working_dir: Existing directory to extract into
        expected_digest: Expected decompressed-tar digest, or the skip sentinel
        whiteouts: Interpret .wh.* markers while applying layers

    Returns:
        Image with its assembled rootfs

    Raises:
        DigestMismatchError: If the archive digest is wrong
        ArchiveError: If an archive cannot be extracted
        ManifestError: If the manifest is malformed or references missing layers
        EmptyImageError: If the manifest lists no layers
    """
    digest = verify_archive_digest(archive_path, expected_digest)
    return assemble_image(archive_path, working_dir, digest=digest, whiteouts=whiteouts)


def assemble_image(
    archive_path: str,
    working_dir: str,
    digest: str = "",
    whiteouts: bool = False,
) -> Image:
    """
    Extract an already validated image archive and apply its layers.

    The manifest's own order is the layer order; nothing else is consulted.
    """
    extract_file(archive_path, working_dir)
    manifest = read_manifest(os.path.join(working_dir, MANIFEST_FILENAME))

    if not manifest.layers:
        raise EmptyImageError(f"{archive_path}: empty image, no layer data")

    layer_paths = []
    for layer in manifest.layers:
        layer_path = os.path.join(working_dir, layer)
        if not os.path.isfile(layer_path):
            raise ManifestError(f"{archive_path}: layer {layer} missing from archive")
        layer_paths.append(layer_path)

    rootfs = os.path.join(working_dir, ROOTFS_DIRNAME)
    os.mkdir(rootfs, 0o755)

    for layer, layer_path in zip(manifest.layers, layer_paths):
        logger.info("extracting %s", layer)
        extract_file(layer_path, rootfs, whiteouts=whiteouts)

    return Image(working_dir=working_dir, rootfs=rootfs, manifest=manifest, digest=digest)
