"""Pytest configuration.

The packages can be used without installing the project. When `pytest` runs
from a checkout without the repository root on `sys.path`, imports like
`import book_core` break; this file makes the root importable, along with
this directory for the shared `_books` helpers.
"""

from __future__ import annotations

import sys
from pathlib import Path


HERE = Path(__file__).resolve().parent
ROOT = HERE.parent
for path in (ROOT, HERE):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))
