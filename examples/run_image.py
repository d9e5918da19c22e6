#!/usr/bin/env python3
"""
Run Image Example

This example drives Mini-Runc from Python instead of the command line:
1. Compute the digest of an image archive
2. Run a one-shot command in a throwaway container
3. Run two commands in a named reentrant container
4. Export the modified root filesystem as a new image
5. Tear the reentrant container down

Run with: sudo python3 run_image.py alpine.tar.gz
"""

import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mini_runc.config import RunConfig
from mini_runc.container import Container, teardown
from mini_runc.digest import tar_sha256
from mini_runc.exceptions import MiniRuncError
from mini_runc.logger import configure_logging


def print_header(text: str) -> None:
    """Print a formatted header."""
    print(f"\n{'='*60}")
    print(f"  {text}")
    print(f"{'='*60}\n")


def print_step(text: str) -> None:
    """Print a step indicator."""
    print(f"[+] {text}")


def check_root() -> bool:
    """Check if running as root."""
    if os.geteuid() != 0:
        print("Error: This example requires root privileges.")
        print("Please run with: sudo python3 run_image.py <image.tar.gz>")
        return False
    return True


def example_ephemeral(image: str, digest: str) -> bool:
    """
    Example 1: One-shot run.

    The image is extracted into a temporary directory that is removed
    once the command exits.
    """
    print_header("Example 1: Ephemeral Container")

    config = RunConfig(image=image, expected_digest=digest, command="cat /etc/os-release")
    try:
        exit_code = Container(config).run()
    except MiniRuncError as e:
        print(f"Error: {e}")
        return False

    print_step(f"Container exited with code: {exit_code}")
    return True


def example_reentrant(image: str, digest: str) -> bool:
    """
    Example 2: Reentrant container with an output image.

    The first run starts the container; the second reuses it and sees the
    file the first one wrote. The second run also exports the rootfs.
    """
    print_header("Example 2: Reentrant Container")

    output = os.path.abspath("reentrant-output.tar.gz")
    commands = [
        ("echo 'hello from run 1' > /greeting", None),
        ("cat /greeting", output),
    ]

    try:
        for command, target in commands:
            config = RunConfig(
                image=image,
                expected_digest=digest,
                command=command,
                name="example-reentrant",
                reentrant=True,
                output=target,
            )
            print_step(f"Running: {command}")
            exit_code = Container(config).run()
            print_step(f"Exited with code: {exit_code}")
    except MiniRuncError as e:
        print(f"Error: {e}")
        return False
    finally:
        teardown("example-reentrant")

    print_step(f"Exported image: {output} (digest {tar_sha256(output)})")
    return True


def main():
    """Run all examples."""
    if len(sys.argv) != 2:
        print("Usage: sudo python3 run_image.py <image.tar.gz>")
        sys.exit(1)

    if not check_root():
        sys.exit(1)

    configure_logging(1)

    image = sys.argv[1]
    print_step(f"Hashing {image}...")
    digest = tar_sha256(image)
    print_step(f"sha256: {digest}")

    results = [example_ephemeral(image, digest), example_reentrant(image, digest)]

    print_header("Summary")
    print_step(f"{sum(results)}/{len(results)} examples succeeded")


if __name__ == "__main__":
    main()
