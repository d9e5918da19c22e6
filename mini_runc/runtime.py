#!/usr/bin/env python3
"""
External container runtime client.

Mini-Runc does no isolation of its own; it drives an OCI runtime (runc by
default) through its command line, always with the working directory set
to the container's bundle:

    runc state <name>              JSON with at least {"status": ...}
    runc run <name>                foreground, blocks until the container exits
    runc run --detach <name>       returns once the container has started
    runc exec <name> <argv...>     runs a process in a running container
    runc delete --force <name>     removes the container's runtime state

A missing container is reported by `state` on stderr with the text
"container does not exist".
"""

import json
import logging
import subprocess
import tempfile
from typing import Dict, List, Optional

from mini_runc.exceptions import RuntimeCommandError
from mini_runc.utils import DEFAULT_RUNTIME

logger = logging.getLogger(__name__)

CONTAINER_NOT_EXIST = "container does not exist"


class RuntimeClient:
    """
    Thin wrapper around the runtime's CLI.

    Example:
        runtime = RuntimeClient("runc")
        if runtime.state("test2") is None:
            runtime.run_detached("test2", "/tmp/test2")
        code = runtime.exec("test2", "/tmp/test2", ["/bin/sh", "-c", "echo foo"])
    """

    def __init__(self, binary: str = DEFAULT_RUNTIME):
        self.binary = binary

    def _spawn(self, args: List[str], **kwargs) -> subprocess.CompletedProcess:
        cmd = [self.binary] + args
        logger.debug("running %s", " ".join(cmd))
        try:
            return subprocess.run(cmd, **kwargs)
        except FileNotFoundError as e:
            raise RuntimeCommandError(f"Container runtime not found: {self.binary}") from e

    def state(self, name: str, bundle: Optional[str] = None) -> Optional[Dict]:
        """
        Query a container's state.

        Returns:
            State document, or None if the container does not exist

        Raises:
            RuntimeCommandError: For any other failure, with the runtime's stderr
        """
        result = self._spawn(
            ["state", name], cwd=bundle, capture_output=True, text=True
        )
        if result.returncode != 0:
            if CONTAINER_NOT_EXIST in result.stderr:
                return None
            raise RuntimeCommandError(
                f"{self.binary} state {name} failed", result.returncode, result.stderr
            )

        try:
            state = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise RuntimeCommandError(
                f"{self.binary} state {name} returned invalid JSON: {e}"
            )
        if not isinstance(state, dict):
            raise RuntimeCommandError(
                f"{self.binary} state {name} returned {type(state).__name__}, "
                "expected an object"
            )
        return state

    def run(self, name: str, bundle: str, interactive: bool = False) -> None:
        """
        Run a container in the foreground and wait for it to exit.

        Stdout and stderr are inherited. Stdin is only connected when
        interactive.

        Raises:
            RuntimeCommandError: If the runtime exits non-zero
        """
        stdin = None if interactive else subprocess.DEVNULL
        result = self._spawn(["run", name], cwd=bundle, stdin=stdin)
        if result.returncode != 0:
            raise RuntimeCommandError(
                f"{self.binary} run {name} exited with status {result.returncode}",
                result.returncode,
            )

    def run_detached(self, name: str, bundle: str) -> None:
        """
        Start a container in the background and return once it is running.

        The detached container keeps whatever stdio it is given, so it gets
        /dev/null and an unlinked temporary file rather than pipes; waiting on
        a pipe the container still holds would hang callers that pipe our
        output elsewhere.

        Raises:
            RuntimeCommandError: If the start fails, with the runtime's stderr
        """
        with tempfile.TemporaryFile(mode="w+") as errors:
            result = self._spawn(
                ["run", "--detach", name],
                cwd=bundle,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=errors,
                start_new_session=True,
            )
            if result.returncode != 0:
                errors.seek(0)
                raise RuntimeCommandError(
                    f"{self.binary} run --detach {name} exited with status "
                    f"{result.returncode}",
                    result.returncode,
                    errors.read(),
                )

    def exec(
        self, name: str, bundle: str, argv: List[str], interactive: bool = False
    ) -> int:
        """
        Execute a process inside a running container.

        Returns:
            The process exit code, unchanged
        """
        args = ["exec"]
        if interactive:
            args.append("--tty")
        args.append(name)
        args.extend(argv)

        stdin = None if interactive else subprocess.DEVNULL
        result = self._spawn(args, cwd=bundle, stdin=stdin)
        return result.returncode

    def delete(self, name: str, force: bool = True) -> bool:
        """
        Delete a container's runtime state.

        Returns:
            True if deleted, False if it did not exist
        """
        args = ["delete"]
        if force:
            args.append("--force")
        args.append(name)

        result = self._spawn(args, capture_output=True, text=True)
        if result.returncode != 0:
            if CONTAINER_NOT_EXIST in result.stderr:
                return False
            raise RuntimeCommandError(
                f"{self.binary} delete {name} failed", result.returncode, result.stderr
            )
        return True
