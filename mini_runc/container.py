#!/usr/bin/env python3
"""
Container lifecycle control for Mini-Runc.

Brings the pieces together: image loading, runtime configuration and the
external runtime.

Container Lifecycle:
    no-such-container → created → running → exited       (ephemeral)
                                          → persistent   (reentrant)

Ephemeral runs extract the image into a fresh working directory, run the
command in the foreground and remove the directory afterwards.

Reentrant runs keep a named container alive between invocations:

    1. ask the runtime for the container's state
    2. if it does not exist, extract the image into <root>/<name> (unless
       that directory is already there) and start a keep-alive process
       detached
    3. exec the command in the running container and return its exit code

Callers must not run two reentrant invocations for the same name at the
same time; nothing here locks.
"""

import logging
from typing import Dict, Optional

from mini_runc.config import RunConfig
from mini_runc.digest import verify_archive_digest
from mini_runc.exceptions import ContainerStateError
from mini_runc.image import Image, assemble_image
from mini_runc.image_builder import ImageBuilder, OutputImage
from mini_runc.oci import (default_template, load_template, synthesize_config,
                           write_runtime_config)
from mini_runc.runtime import RuntimeClient
from mini_runc.utils import MINI_RUNC_ROOT, WorkingDirectory

logger = logging.getLogger(__name__)

NO_SUCH_CONTAINER = "no-such-container"
CREATED = "created"
RUNNING = "running"
EXITED = "exited"
PERSISTENT = "persistent"


class Container:
    """
    Run one command from an image archive under the external runtime.

    Example:
        config = RunConfig(image="alpine.tar.gz", expected_digest=digest,
                           command="cat /etc/alpine-release")
        exit_code = Container(config).run()
    """

    def __init__(
        self,
        config: RunConfig,
        runtime: Optional[RuntimeClient] = None,
        builder: Optional[ImageBuilder] = None,
    ):
        config.validate()
        self.config = config.with_name()
        self.runtime = runtime or RuntimeClient(self.config.runtime)
        self.builder = builder or ImageBuilder(
            architecture=self.config.architecture, tags=list(self.config.tags)
        )
        self.status = NO_SUCH_CONTAINER
        self.working_dir: Optional[WorkingDirectory] = None
        self.image: Optional[Image] = None
        self.output: Optional[OutputImage] = None

        if not config.name:
            logger.info("using random container name %s", self.name)

    @property
    def name(self) -> str:
        return self.config.name

    def run(self) -> int:
        """
        Run the configured command.

        Returns:
            Exit code for the caller: 0 for a successful ephemeral run, the
            exec'd command's own exit code in reentrant mode

        Raises:
            MiniRuncError: On any validation, image, runtime or state failure
        """
        if self.config.reentrant:
            return self._run_reentrant()
        return self._run_ephemeral()

    def _template(self) -> Dict:
        if self.config.template:
            return load_template(self.config.template)
        return default_template()

    def _assemble(self, workdir: WorkingDirectory, digest: str) -> None:
        self.image = assemble_image(
            self.config.image,
            workdir.path,
            digest=digest,
            whiteouts=self.config.whiteouts,
        )

    def _write_runtime_config(
        self, workdir: WorkingDirectory, template: Dict, keep_alive: bool
    ) -> None:
        options = self.config.runtime_options(keep_alive=keep_alive)
        write_runtime_config(workdir.path, synthesize_config(template, options))

    def _build_output(self, workdir: WorkingDirectory) -> None:
        if not self.config.output:
            return
        logger.info("outputting image to %s", self.config.output)
        self.output = self.builder.build(workdir.rootfs, self.config.output)

    # Ephemeral

    def _run_ephemeral(self) -> int:
        template = self._template()
        digest = verify_archive_digest(self.config.image, self.config.expected_digest)

        workdir = WorkingDirectory.ephemeral(self.name, keep=self.config.keep)
        self.working_dir = workdir
        if self.config.keep:
            logger.warning("keeping temporary working directory: %s", workdir.path)

        with workdir:
            self._assemble(workdir, digest)
            self._write_runtime_config(workdir, template, keep_alive=False)
            self.status = CREATED

            logger.info("running %s", self.config.runtime)
            self.status = RUNNING
            self.runtime.run(self.name, workdir.path, interactive=self.config.interactive)
            self.status = EXITED

            self._build_output(workdir)

        return 0

    # Reentrant

    def query_state(self, workdir: Optional[WorkingDirectory] = None) -> str:
        """
        Ask the runtime whether the named container exists and runs.

        Returns:
            NO_SUCH_CONTAINER or RUNNING

        Raises:
            ContainerStateError: If the container exists in any other state
            RuntimeCommandError: If the query itself fails
        """
        bundle = workdir.path if workdir is not None and workdir.exists() else None
        state = self.runtime.state(self.name, bundle)
        if state is None:
            return NO_SUCH_CONTAINER

        status = state.get("status")
        if status != RUNNING:
            raise ContainerStateError(
                f"container {self.name} is {status!r}, expected 'running'; "
                f"remove it with `mini-runc rm {self.name}` and retry"
            )
        return RUNNING

    def _prepare_reentrant_dir(self, workdir: WorkingDirectory) -> None:
        if workdir.exists():
            logger.info(
                "reentrant mode found existing directory %s; skipping creation step",
                workdir.path,
            )
            return

        logger.info(
            "reentrant mode did not find existing directory %s; it will create it",
            workdir.path,
        )
        digest = verify_archive_digest(self.config.image, self.config.expected_digest)
        workdir.create()
        try:
            self._assemble(workdir, digest)
        except Exception:
            # A half-extracted directory would be mistaken for a finished one
            workdir.remove()
            raise

    def _run_reentrant(self) -> int:
        template = self._template()
        workdir = WorkingDirectory.reentrant_for(self.name, self.config.state_root)
        self.working_dir = workdir

        self.status = self.query_state(workdir)
        if self.status == NO_SUCH_CONTAINER:
            self._prepare_reentrant_dir(workdir)
            self._write_runtime_config(workdir, template, keep_alive=True)
            self.status = CREATED

            logger.info("starting %s detached", self.name)
            self.runtime.run_detached(self.name, workdir.path)
            self.status = RUNNING
        else:
            logger.info("container %s already running", self.name)

        argv = ["/bin/sh", "-c", self.config.command]
        exit_code = self.runtime.exec(
            self.name, workdir.path, argv, interactive=self.config.interactive
        )
        self.status = PERSISTENT
        logger.info("exec in %s exited with status %d", self.name, exit_code)

        if exit_code == 0:
            self._build_output(workdir)
        elif self.config.output:
            logger.warning(
                "command exited with status %d; not writing %s",
                exit_code,
                self.config.output,
            )

        return exit_code


def teardown(
    name: str,
    runtime: Optional[RuntimeClient] = None,
    state_root: Optional[str] = None,
) -> bool:
    """
    Remove a reentrant container: its runtime state and its working directory.

    Args:
        name: Container name
        runtime: Runtime client (default: RuntimeClient())
        state_root: Root holding reentrant directories

    Returns:
        True if anything was removed
    """
    runtime = runtime or RuntimeClient()
    workdir = WorkingDirectory.reentrant_for(name, state_root or MINI_RUNC_ROOT)

    deleted = runtime.delete(name, force=True)
    if deleted:
        logger.info("deleted container %s", name)

    existed = workdir.exists()
    workdir.remove()
    if existed:
        logger.info("removed %s", workdir.path)

    return deleted or existed
