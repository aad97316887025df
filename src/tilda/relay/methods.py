"""Remote method descriptor and wire framing shared by server and client.

The descriptor is fixed knowledge on both sides; it is never negotiated.
Frames are single lines of UTF-8 JSON validated by the v1 contracts.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..contracts.v1 import RelayErrorInfo, RelayRequest, RelayResponse

INTERFACE_NAME = "org.tilda.GDBus.TildaInterface"
OBJECT_PATH = "/org/tilda/GDBus/TildaInstance"

# Reply for a served addtab; the add-tab outcome itself is not reported.
ADDTAB_SUCCESS = 0

MAX_LINE_BYTES = 1 << 20

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


class RelayMethod(str, Enum):
    ADDTAB = "addtab"


class SignatureError(ValueError):
    """Arguments do not match a method signature."""


def _check_value(type_code: str, value: Any) -> Any:
    if type_code == "s":
        if not isinstance(value, str):
            raise SignatureError(f"expected string, got {type(value).__name__}")
        return value
    if type_code == "i":
        if isinstance(value, bool) or not isinstance(value, int):
            raise SignatureError(f"expected int32, got {type(value).__name__}")
        if not INT32_MIN <= value <= INT32_MAX:
            raise SignatureError(f"int32 out of range: {value}")
        return value
    raise SignatureError(f"unsupported type code: {type_code}")


@dataclass(frozen=True)
class Arg:
    name: str
    type_code: str


@dataclass(frozen=True)
class MethodSpec:
    method: RelayMethod
    in_args: Tuple[Arg, ...]
    out_args: Tuple[Arg, ...]

    @property
    def in_signature(self) -> str:
        return "".join(a.type_code for a in self.in_args)

    @property
    def out_signature(self) -> str:
        return "".join(a.type_code for a in self.out_args)

    def check_in(self, values: Sequence[Any]) -> Tuple[Any, ...]:
        return _check_all(self.in_args, values, self.in_signature)

    def check_out(self, values: Sequence[Any]) -> Tuple[Any, ...]:
        return _check_all(self.out_args, values, self.out_signature)


def _check_all(args: Tuple[Arg, ...], values: Sequence[Any], signature: str) -> Tuple[Any, ...]:
    if len(values) != len(args):
        raise SignatureError(f"expected ({signature}), got {len(values)} argument(s)")
    return tuple(_check_value(a.type_code, v) for a, v in zip(args, values))


@dataclass(frozen=True)
class InterfaceDescriptor:
    name: str
    methods: Tuple[MethodSpec, ...]

    def lookup(self, method_name: str) -> Optional[MethodSpec]:
        for spec in self.methods:
            if spec.method.value == method_name:
                return spec
        return None

    def introspection_xml(self) -> str:
        parts = ["<node>", f"  <interface name='{self.name}'>"]
        for spec in self.methods:
            parts.append(f"    <method name='{spec.method.value}'>")
            for a in spec.in_args:
                parts.append(f"      <arg type='{a.type_code}' name='{a.name}' direction='in'/>")
            for a in spec.out_args:
                parts.append(f"      <arg type='{a.type_code}' name='{a.name}' direction='out'/>")
            parts.append("    </method>")
        parts.extend(["  </interface>", "</node>"])
        return "\n".join(parts)


ADDTAB = MethodSpec(
    method=RelayMethod.ADDTAB,
    in_args=(Arg("command", "s"),),
    out_args=(Arg("response", "i"),),
)

TILDA_INTERFACE = InterfaceDescriptor(name=INTERFACE_NAME, methods=(ADDTAB,))


def encode_frame(obj: Dict[str, Any]) -> bytes:
    return (json.dumps(obj, ensure_ascii=False) + "\n").encode("utf-8")


def decode_frame(line: bytes) -> Dict[str, Any]:
    """Parse one frame; raises ValueError on anything that is not a JSON object."""
    obj = json.loads(line.decode("utf-8"))
    if not isinstance(obj, dict):
        raise ValueError("frame is not a JSON object")
    return obj


def make_request(method: RelayMethod, args: List[Any], *, serial: int = 1) -> RelayRequest:
    return RelayRequest(serial=serial, path=OBJECT_PATH, interface=INTERFACE_NAME, method=method.value, args=args)


def error_response(code: str, message: str, *, serial: int = 0, details: Optional[Dict[str, Any]] = None) -> RelayResponse:
    return RelayResponse(serial=serial, ok=False, error=RelayErrorInfo(code=code, message=message, details=(details or {})))
