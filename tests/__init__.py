"""
Mini-Runc Test Suite
====================

Unit tests for Mini-Runc. Everything except test_e2e.py runs unprivileged:
the container runtime is replaced by a recording fake or by small shell
scripts.

Test Categories:
    - test_basic.py: Imports, naming and working directories
    - test_archive.py: tar.gz extraction and creation
    - test_digest.py: Decompressed-content digests
    - test_image.py: Manifest parsing and layer assembly
    - test_oci.py: Runtime configuration synthesis
    - test_runtime.py: Runtime CLI client
    - test_container.py: Ephemeral and reentrant lifecycles
    - test_image_builder.py: Output image export
    - test_cli.py: Command line interface
    - test_e2e.py: Real runc (root only)

Running Tests:
    pytest tests/ -v
"""

import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
