"""Pytest configuration shared by every suite.

What:
  Make the ``mailwake/src`` tree importable so tests run against the working
  copy rather than an installed wheel.

How:
  Compute the project root relative to this file and prepend the source
  directory to ``sys.path`` when it exists.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "mailwake" / "src"
if SRC_DIR.exists():
    sys.path.insert(0, str(SRC_DIR))
