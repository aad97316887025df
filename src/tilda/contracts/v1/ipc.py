from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RelayRequest(BaseModel):
    v: int = 1
    serial: int = 0
    path: str
    interface: str
    method: str
    args: List[Any] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")


class RelayErrorInfo(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")


class RelayResponse(BaseModel):
    v: int = 1
    serial: int = 0
    ok: bool
    result: List[Any] = Field(default_factory=list)
    error: Optional[RelayErrorInfo] = None

    model_config = ConfigDict(extra="forbid")
