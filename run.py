#!/usr/bin/env python
"""
Launcher script for the batchline command-line tool.

This script ensures the src directory is on the Python path before running.
"""

import sys
from pathlib import Path

# Add the src directory to the Python path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from batchline.main import main

if __name__ == "__main__":
    sys.exit(main())
