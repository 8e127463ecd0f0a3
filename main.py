#!/usr/bin/env python3
"""
Server provisioner CLI.

- Create a server and follow its install progress
- List, delete and locate servers of a project

This script supports running directly from a source checkout. It adds the
local `src/` directory to sys.path so the modules import without installing
the project. For production use, prefer installing the project and using the
provided console script.
"""

import os
import sys

# Add src/ to path to import modules directly
REPO_ROOT = os.path.dirname(os.path.abspath(__file__))
SRC_PATH = os.path.join(REPO_ROOT, "src")
if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

from cli import main

if __name__ == "__main__":
    sys.exit(main())
