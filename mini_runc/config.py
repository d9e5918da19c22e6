#!/usr/bin/env python3
"""
Run configuration for Mini-Runc.

A RunConfig is built once (normally from the command line) and handed to
every component that needs it; nothing reads process-wide flags.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from mini_runc.exceptions import ConfigError
from mini_runc.oci import RuntimeOptions
from mini_runc.utils import (DEFAULT_RUNTIME, MINI_RUNC_ROOT,
                             generate_container_name, is_valid_container_name)


@dataclass(frozen=True)
class RunConfig:
    """Complete configuration of one invocation."""

    image: str
    expected_digest: str
    command: str
    name: Optional[str] = None

    # Working directory
    keep: bool = False
    reentrant: bool = False
    state_root: str = MINI_RUNC_ROOT

    # Runtime configuration document
    host_network: bool = False
    bind_local_dir: bool = False
    interactive: bool = False
    template: Optional[str] = None

    # Image handling
    whiteouts: bool = False
    output: Optional[str] = None
    architecture: Optional[str] = None
    tags: Tuple[str, ...] = field(default_factory=tuple)

    # External runtime binary
    runtime: str = DEFAULT_RUNTIME

    def validate(self) -> None:
        """
        Check the configuration before anything touches the filesystem.

        Raises:
            ConfigError: If the configuration cannot be run
        """
        if not self.command:
            raise ConfigError("a command is required")
        if self.reentrant and not self.name:
            raise ConfigError("the --reentrant mode requires a --name value")
        if self.name is not None and not is_valid_container_name(self.name):
            raise ConfigError(
                f"invalid container name {self.name!r}: use letters, digits, "
                "'_', '.' and '-', starting with a letter or digit"
            )

    def with_name(self) -> "RunConfig":
        """Return a copy that has a container name, generating one if needed."""
        if self.name:
            return self
        return replace(self, name=generate_container_name())

    def runtime_options(self, keep_alive: bool = False, local_dir: Optional[str] = None) -> RuntimeOptions:
        """Settings for the runtime configuration document."""
        return RuntimeOptions(
            command=self.command,
            host_network=self.host_network,
            bind_local_dir=self.bind_local_dir,
            interactive=self.interactive,
            keep_alive=keep_alive,
            local_dir=local_dir,
        )
