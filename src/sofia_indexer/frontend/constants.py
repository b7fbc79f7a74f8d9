"""Shared constants for the Textual UI."""

from __future__ import annotations

from pathlib import Path

SOFIA_VIOLET = "#8B5CF6"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
EXPORTS_DIR = PROJECT_ROOT / "exports"
