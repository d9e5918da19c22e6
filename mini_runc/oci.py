#!/usr/bin/env python3
"""
OCI Runtime Configuration for Mini-Runc.

Produces the config.json consumed by the external runtime, following the
OCI Runtime Spec: https://github.com/opencontainers/runtime-spec

The working directory doubles as the OCI bundle:
    bundle/
    ├── config.json    # written here, read only by the runtime
    └── rootfs/        # assembled image layers

A run starts from a template (the built-in baseline or a user file) and
only ever *adds* to it:
    - process.args       ["sh", "-c", <command>] or a keep-alive loop
    - process.terminal   when running interactively
    - linux.namespaces   + {"type": "network"} unless sharing the host network
    - mounts             + a bind of the local directory on /local-dir
"""

import copy
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from mini_runc.exceptions import OCIError
from mini_runc.utils import ROOTFS_DIRNAME, RUNTIME_CONFIG_FILENAME

logger = logging.getLogger(__name__)

KEEP_ALIVE_SCRIPT = "while true; do sleep 1; done"
LOCAL_DIR_DESTINATION = "/local-dir"


@dataclass
class OCIMount:
    """OCI Mount configuration."""

    destination: str = ""
    type: str = ""
    source: str = ""
    options: List[str] = field(default_factory=list)


@dataclass
class OCINamespace:
    """OCI Linux namespace configuration."""

    type: str = ""
    path: Optional[str] = None


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop unset optional fields before serializing."""
    return {k: v for k, v in data.items() if v is not None and v != []}


@dataclass(frozen=True)
class RuntimeOptions:
    """Per-run settings applied on top of a template."""

    command: str = ""
    host_network: bool = False
    bind_local_dir: bool = False
    interactive: bool = False
    keep_alive: bool = False
    local_dir: Optional[str] = None

    def process_args(self) -> List[str]:
        if self.keep_alive:
            return ["sh", "-c", KEEP_ALIVE_SCRIPT]
        return ["sh", "-c", self.command]


def default_template() -> Dict:
    """
    Baseline runtime configuration.

    Mirrors `runc spec` with a writable rootfs and without a network
    namespace, which is added per run unless host networking is requested.
    """
    capabilities = ["CAP_AUDIT_WRITE", "CAP_KILL", "CAP_NET_BIND_SERVICE"]

    return {
        "ociVersion": "1.0.2-dev",
        "process": {
            "terminal": False,
            "user": {"uid": 0, "gid": 0},
            "args": ["sh"],
            "env": [
                "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
                "TERM=xterm",
            ],
            "cwd": "/",
            "capabilities": {
                "bounding": list(capabilities),
                "effective": list(capabilities),
                "permitted": list(capabilities),
            },
            "rlimits": [{"type": "RLIMIT_NOFILE", "hard": 1024, "soft": 1024}],
            "noNewPrivileges": True,
        },
        "root": {
            "path": ROOTFS_DIRNAME,
            "readonly": False,
        },
        "hostname": "mini-runc",
        "mounts": [
            {"destination": "/proc", "type": "proc", "source": "proc"},
            {
                "destination": "/dev",
                "type": "tmpfs",
                "source": "tmpfs",
                "options": ["nosuid", "strictatime", "mode=755", "size=65536k"],
            },
            {
                "destination": "/dev/pts",
                "type": "devpts",
                "source": "devpts",
                "options": [
                    "nosuid",
                    "noexec",
                    "newinstance",
                    "ptmxmode=0666",
                    "mode=0620",
                    "gid=5",
                ],
            },
            {
                "destination": "/dev/shm",
                "type": "tmpfs",
                "source": "shm",
                "options": ["nosuid", "noexec", "nodev", "mode=1777", "size=65536k"],
            },
            {
                "destination": "/dev/mqueue",
                "type": "mqueue",
                "source": "mqueue",
                "options": ["nosuid", "noexec", "nodev"],
            },
            {
                "destination": "/sys",
                "type": "sysfs",
                "source": "sysfs",
                "options": ["nosuid", "noexec", "nodev", "ro"],
            },
            {
                "destination": "/sys/fs/cgroup",
                "type": "cgroup",
                "source": "cgroup",
                "options": ["nosuid", "noexec", "nodev", "relatime", "ro"],
            },
        ],
        "linux": {
            "resources": {"devices": [{"allow": False, "access": "rwm"}]},
            "namespaces": [
                {"type": "pid"},
                {"type": "ipc"},
                {"type": "uts"},
                {"type": "mount"},
                {"type": "cgroup"},
            ],
            "maskedPaths": [
                "/proc/acpi",
                "/proc/asound",
                "/proc/kcore",
                "/proc/keys",
                "/proc/latency_stats",
                "/proc/timer_list",
                "/proc/timer_stats",
                "/proc/sched_debug",
                "/sys/firmware",
                "/proc/scsi",
            ],
            "readonlyPaths": [
                "/proc/bus",
                "/proc/fs",
                "/proc/irq",
                "/proc/sys",
                "/proc/sysrq-trigger",
            ],
        },
    }


def load_template(path: str) -> Dict:
    """
    Load a runtime configuration template from disk.

    Args:
        path: Path to a config.json-style file

    Returns:
        Template dictionary

    Raises:
        OCIError: If the file is missing or not a JSON object
    """
    if not os.path.exists(path):
        raise OCIError(f"Runtime config template not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise OCIError(f"Invalid JSON in {path}: {e}") from e
    except (ValueError, OSError) as e:
        raise OCIError(f"Cannot read runtime config template {path}: {e}") from e

    if not isinstance(data, dict):
        raise OCIError(f"Runtime config template must be a JSON object: {path}")

    return data


def _section(document: Dict, key: str, path: str) -> Dict:
    section = document.setdefault(key, {})
    if not isinstance(section, dict):
        raise OCIError(f"Template field {path} must be an object")
    return section


def _list(section: Dict, key: str, path: str) -> List:
    value = section.get(key)
    if value is None:
        value = section[key] = []
    if not isinstance(value, list):
        raise OCIError(f"Template field {path} must be a list")
    return value


def synthesize_config(template: Dict, options: RuntimeOptions) -> Dict:
    """
    Build a runtime configuration document for one run.

    The template is deep-copied and never modified. Template namespaces and
    mounts are kept as they are; this only appends.

    Args:
        template: Baseline document (see default_template)
        options: Per-run settings

    Returns:
        New configuration dictionary
    """
    document = copy.deepcopy(template)

    process = _section(document, "process", "process")
    process["args"] = options.process_args()
    if options.interactive and not options.keep_alive:
        process["terminal"] = True

    linux = _section(document, "linux", "linux")
    namespaces = _list(linux, "namespaces", "linux.namespaces")
    has_network = any(
        isinstance(ns, dict) and ns.get("type") == "network" for ns in namespaces
    )
    if not options.host_network:
        if not has_network:
            namespaces.append(_compact(asdict(OCINamespace(type="network"))))
    elif has_network:
        logger.warning("template isolates the network; host networking not applied")

    if options.bind_local_dir:
        mounts = _list(document, "mounts", "mounts")
        mount = OCIMount(
            destination=LOCAL_DIR_DESTINATION,
            type="bind",
            source=options.local_dir or os.getcwd(),
            options=["rbind", "rprivate", "rw"],
        )
        mounts.append(asdict(mount))

    return document


def write_runtime_config(working_dir: str, document: Dict) -> str:
    """
    Write config.json into a working directory.

    Returns:
        Path to the written file
    """
    config_path = os.path.join(working_dir, RUNTIME_CONFIG_FILENAME)
    with open(config_path, "w") as f:
        json.dump(document, f, indent=2)
    logger.debug("wrote runtime config %s", config_path)
    return config_path
