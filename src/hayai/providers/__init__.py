"""Provider interfaces for hayai."""
from __future__ import annotations

from .compose import ComposeProvider

__all__ = ["ComposeProvider"]
