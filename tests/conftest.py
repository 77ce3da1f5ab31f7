"""Shared pytest configuration for the Word Pilot project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
EXTRA_PATHS = [ROOT, ROOT / "libs/python"]
for extra in EXTRA_PATHS:
    if str(extra) not in sys.path:
        sys.path.insert(0, str(extra))
