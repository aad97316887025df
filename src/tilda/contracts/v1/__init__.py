from __future__ import annotations

from .ipc import RelayErrorInfo, RelayRequest, RelayResponse

__all__ = [
    "RelayErrorInfo",
    "RelayRequest",
    "RelayResponse",
]
