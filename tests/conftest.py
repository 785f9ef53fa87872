"""Root pytest configuration: makes claude_glance importable from the source tree."""

import sys
from pathlib import Path

TOOLS_DIR = Path(__file__).resolve().parent.parent / "home-modules" / "tools"


def pytest_configure(config):
    """Prefer the in-tree package over any installed copy."""
    if str(TOOLS_DIR) not in sys.path:
        sys.path.insert(0, str(TOOLS_DIR))
