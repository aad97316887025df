from __future__ import annotations

from . import pty

__all__ = ["pty"]
