#!/usr/bin/env python3
"""
Output image builder for Mini-Runc.

Repackages a (possibly modified) root filesystem as a single-layer image
archive in the same layout Mini-Runc loads:

    output.tar.gz
    ├── manifest.json             # [{"Config": "<cfg>.json", "Layers": ["<d>.tar.gz"]}]
    ├── <cfg>.json                # image config, named by its own SHA-256
    └── <d>.tar.gz                # the rootfs, named by its decompressed SHA-256

The image config lists the layer digest as its only diff_id, so the result
loads with `docker load` and other tools that accept this layout.
"""

import json
import logging
import os
import platform
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from mini_runc.archive import create_file
from mini_runc.digest import DIGEST_PREFIX, bytes_sha256, tar_sha256
from mini_runc.exceptions import BuildError, MiniRuncError
from mini_runc.image import Manifest
from mini_runc.utils import MANIFEST_FILENAME

logger = logging.getLogger(__name__)

DEFAULT_ENV = ["PATH=/bin:/usr/bin"]

# uname -m -> GOARCH, as image configs spell it
ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv7l": "arm",
    "armv6l": "arm",
    "i386": "386",
    "i686": "386",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def host_architecture() -> str:
    """Architecture of this machine in image-config notation."""
    machine = platform.machine().lower()
    return ARCHITECTURES.get(machine, machine or "amd64")


def _dump_json(data) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


@dataclass
class OutputImage:
    """Result of an image build."""

    path: str
    layer_digest: str
    config_digest: str
    manifest: Manifest = field(default_factory=Manifest)


class ImageBuilder:
    """
    Build single-layer image archives from a root filesystem.

    Example:
        builder = ImageBuilder()
        image = builder.build("/tmp/mini-runc-abc/rootfs", "out.tar.gz")
        print(image.layer_digest)
    """

    def __init__(
        self,
        architecture: Optional[str] = None,
        os_name: str = "linux",
        env: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
    ):
        self.architecture = architecture or host_architecture()
        self.os_name = os_name
        self.env = list(env) if env is not None else list(DEFAULT_ENV)
        self.tags = list(tags or [])

    def image_config(self, layer_digest: str) -> Dict:
        """Image configuration document for a single layer."""
        return {
            "architecture": self.architecture,
            "os": self.os_name,
            "config": {"Env": list(self.env)},
            "rootfs": {
                "type": "layers",
                "diff_ids": [f"{DIGEST_PREFIX}{layer_digest}"],
            },
        }

    def _write_layer(self, rootfs: str, staging: str) -> str:
        layer_path = os.path.join(staging, "rootfs.tar.gz")
        create_file(rootfs, layer_path)
        layer_digest = tar_sha256(layer_path)
        os.rename(layer_path, os.path.join(staging, f"{layer_digest}.tar.gz"))
        return layer_digest

    def _write_config(self, layer_digest: str, staging: str) -> str:
        data = _dump_json(self.image_config(layer_digest))
        config_digest = bytes_sha256(data)
        with open(os.path.join(staging, f"{config_digest}.json"), "wb") as f:
            f.write(data)
        return config_digest

    def build(
        self, rootfs: str, output_path: str, staging_dir: Optional[str] = None
    ) -> OutputImage:
        """
        Package a root filesystem as an image archive.

        Args:
            rootfs: Root filesystem directory
            output_path: Where to write the image .tar.gz
            staging_dir: Parent for the temporary staging directory

        Returns:
            OutputImage describing the archive

        Raises:
            BuildError: If the image cannot be written; a partial output
                file is removed
        """
        if not os.path.isdir(rootfs):
            raise BuildError(f"Root filesystem not found: {rootfs}")

        staging = tempfile.mkdtemp(prefix="mini-runc-output-", dir=staging_dir)
        logger.debug("output staging directory: %s", staging)

        try:
            layer_digest = self._write_layer(rootfs, staging)
            config_digest = self._write_config(layer_digest, staging)

            manifest = Manifest(
                config=f"{config_digest}.json",
                layers=[f"{layer_digest}.tar.gz"],
                repo_tags=self.tags,
            )
            with open(os.path.join(staging, MANIFEST_FILENAME), "wb") as f:
                f.write(_dump_json([manifest.to_dict()]))

            try:
                create_file(staging, output_path)
            except MiniRuncError:
                if os.path.lexists(output_path):
                    os.unlink(output_path)
                raise
        except (OSError, MiniRuncError) as e:
            raise BuildError(f"Failed to build image {output_path}: {e}") from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.info("wrote image %s (layer sha256:%s)", output_path, layer_digest)
        return OutputImage(
            path=output_path,
            layer_digest=layer_digest,
            config_digest=config_digest,
            manifest=manifest,
        )
