"""Puts the repository root on ``sys.path`` so ``pos_core``, ``pos_api`` and
``ws_clients`` import without an editable install, and so test helpers can be
imported as ``tests._stores``.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
