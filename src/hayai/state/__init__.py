"""State persistence helpers for hayai."""
from __future__ import annotations

from .registry import INSTANCES_FILE, PORTS_FILE, StateRegistry, StateStore, write_text_atomic

__all__ = ["INSTANCES_FILE", "PORTS_FILE", "StateRegistry", "StateStore", "write_text_atomic"]
