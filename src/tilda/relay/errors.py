from __future__ import annotations

from typing import Any, Dict, Optional


class RelayError(Exception):
    """Base error for the relay; carries a stable code like the wire errors do."""

    code = "relay_error"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message
        self.details = details or {}


class BindError(RelayError):
    """Raised by the server when it cannot own the endpoint address."""

    ADDRESS_IN_USE = "address_in_use"
    TRANSPORT = "transport"

    def __init__(self, message: str, *, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=reason, details=details)
        self.reason = reason

    @property
    def address_in_use(self) -> bool:
        return self.reason == self.ADDRESS_IN_USE


class ConnectError(RelayError):
    code = "connect_error"


class NoServerError(ConnectError):
    """Nothing is listening on the address; the caller should become the server."""

    code = "no_server"


class ConnectTransportError(ConnectError):
    code = "transport"


class CallError(RelayError):
    code = "call_error"


class CallRejectedError(CallError):
    """The server answered with an error reply."""

    code = "rejected"


class CallTransportError(CallError):
    """The connection dropped, timed out, or produced an unreadable reply."""

    code = "transport"
