"""Pytest configuration for path setup.

The test suite imports the ``netlayer`` package from ``netlayer/src`` and
the helpers under ``tests/helpers``.  When pytest is executed as an
installed script, neither directory is automatically on ``sys.path``, so
this file adds both the project root and ``netlayer/src``.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]

for path in (ROOT, ROOT / "netlayer" / "src"):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
