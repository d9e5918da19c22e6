"""
Mini-Runc: run commands from container image archives.

This package implements:
- Streaming tar.gz extraction and creation with deferred hard links
- Content digests of decompressed tar streams
- Image archive loading (manifest.json + ordered layers)
- OCI runtime configuration synthesis
- Ephemeral and reentrant container lifecycles on top of an external runtime
- Single-layer output image export

Isolation itself is delegated to the runtime (runc by default).

License: MIT
"""

__version__ = "1.0.0"
__all__ = [
    "Container",
    "RunConfig",
    "RuntimeClient",
    "ImageBuilder",
    "extract_tar_gz",
    "create_tar_gz",
    "tar_sha256",
    "load_image",
]

from mini_runc.archive import create_tar_gz, extract_tar_gz
from mini_runc.config import RunConfig
from mini_runc.container import Container
from mini_runc.digest import tar_sha256
from mini_runc.image import load_image
from mini_runc.image_builder import ImageBuilder
from mini_runc.runtime import RuntimeClient
