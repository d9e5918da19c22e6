#!/usr/bin/env python3
"""
Mini-Runc entry point.
Allows running as: python3 -m mini_runc <command>
"""

import sys

from mini_runc.cli import main

if __name__ == "__main__":
    sys.exit(main())
