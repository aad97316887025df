from __future__ import annotations

from .address import RelayAddress, address_for
from .arbitration import Arbitration, Role, arbitrate, relay_command
from .client import RelayClient, connect, send_add_tab
from .errors import (
    BindError,
    CallError,
    CallRejectedError,
    CallTransportError,
    ConnectError,
    ConnectTransportError,
    NoServerError,
    RelayError,
)
from .methods import ADDTAB_SUCCESS, INTERFACE_NAME, OBJECT_PATH, TILDA_INTERFACE, RelayMethod
from .server import PeerCredentials, RelayHandle, start

__all__ = [
    "ADDTAB_SUCCESS",
    "Arbitration",
    "BindError",
    "CallError",
    "CallRejectedError",
    "CallTransportError",
    "ConnectError",
    "ConnectTransportError",
    "INTERFACE_NAME",
    "NoServerError",
    "OBJECT_PATH",
    "PeerCredentials",
    "RelayAddress",
    "RelayClient",
    "RelayError",
    "RelayHandle",
    "RelayMethod",
    "Role",
    "TILDA_INTERFACE",
    "address_for",
    "arbitrate",
    "connect",
    "relay_command",
    "send_add_tab",
    "start",
]
