"""treeflow: configuration-driven task trees applied to work-item trees."""

from __future__ import annotations

__version__ = "1.0.0"
