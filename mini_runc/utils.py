#!/usr/bin/env python3
"""
Utility functions for Mini-Runc.

Provides:
- Random container name generation (12 ASCII letters)
- Container name validation
- Working directory lifecycles (ephemeral and reentrant)
- Path utilities

Container Naming Strategy
=========================

The external runtime keys its state table by container name, and reentrant
working directories are stored under that same name, so a name has to be
safe both as a runtime identifier and as a single path component.

1. Generated names
   - 12 characters drawn from [A-Za-z] (case-sensitive)
   - Examples: "qWbTzRkLmNaP", "HxoeUiVbAlRt"
   - Only used for ephemeral runs; reentrant runs require --name

2. User-supplied names
   - Format: ^[A-Za-z0-9][A-Za-z0-9_.-]*$
   - Examples: "test2", "ci-suite.alpine"

Working Directory Layout
========================

    <working dir>/
    ├── manifest.json        # extracted from the image archive
    ├── <config blob>        # extracted from the image archive
    ├── <digest>.tar.gz      # layer blobs, extracted from the image archive
    ├── config.json          # runtime configuration document
    └── rootfs/              # layers applied in manifest order
"""

import os
import random
import re
import shutil
import string
import tempfile
from typing import Optional

# Root directory for reentrant working directories
if os.environ.get("MINI_RUNC_ROOT"):
    MINI_RUNC_ROOT = os.environ["MINI_RUNC_ROOT"]
else:
    MINI_RUNC_ROOT = tempfile.gettempdir()

# External runtime binary
DEFAULT_RUNTIME = os.environ.get("MINI_RUNC_RUNTIME", "runc")

ROOTFS_DIRNAME = "rootfs"
RUNTIME_CONFIG_FILENAME = "config.json"
MANIFEST_FILENAME = "manifest.json"

NAME_LENGTH = 12
NAME_ALPHABET = string.ascii_letters
NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def generate_container_name(length: int = NAME_LENGTH) -> str:
    """
    Generate a random container name.

    Args:
        length: Number of characters

    Returns:
        str: Name like "qWbTzRkLmNaP"
    """
    return "".join(random.choices(NAME_ALPHABET, k=length))


def is_valid_container_name(name: str) -> bool:
    """Check that a name is usable as a runtime id and a path component."""
    return bool(name) and bool(NAME_PATTERN.match(name))


def get_reentrant_path(name: str, root: Optional[str] = None) -> str:
    """Get the persistent working directory for a named container."""
    return os.path.join(root or MINI_RUNC_ROOT, name)


class WorkingDirectory:
    """
    A container's working directory.

    Ephemeral directories are randomly named and removed by cleanup() unless
    keep is set. Reentrant directories are keyed by container name and are
    never removed here.

    Example:
        with WorkingDirectory.ephemeral(name) as workdir:
            load_image(image, workdir.path, digest)
    """

    def __init__(self, path: str, reentrant: bool = False, keep: bool = False):
        self.path = path
        self.reentrant = reentrant
        self.keep = keep

    @classmethod
    def ephemeral(
        cls, name: str, keep: bool = False, parent: Optional[str] = None
    ) -> "WorkingDirectory":
        """Create a fresh, randomly named working directory."""
        path = tempfile.mkdtemp(prefix=f"mini-runc-{name}-", dir=parent)
        return cls(path, reentrant=False, keep=keep)

    @classmethod
    def reentrant_for(cls, name: str, root: Optional[str] = None) -> "WorkingDirectory":
        """Reference (without creating) the persistent directory for a name."""
        return cls(get_reentrant_path(name, root), reentrant=True, keep=True)

    @property
    def rootfs(self) -> str:
        return os.path.join(self.path, ROOTFS_DIRNAME)

    @property
    def runtime_config_path(self) -> str:
        return os.path.join(self.path, RUNTIME_CONFIG_FILENAME)

    def exists(self) -> bool:
        return os.path.isdir(self.path)

    def create(self) -> None:
        """Create the directory; it must not exist yet."""
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        os.mkdir(self.path, 0o755)

    def remove(self) -> None:
        """Remove the directory and everything in it."""
        if os.path.lexists(self.path):
            shutil.rmtree(self.path)

    def cleanup(self) -> None:
        """Remove an ephemeral directory unless it is being kept."""
        if self.reentrant or self.keep:
            return
        self.remove()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup()
        return False

    def __repr__(self) -> str:
        kind = "reentrant" if self.reentrant else "ephemeral"
        return f"WorkingDirectory({self.path!r}, {kind})"
