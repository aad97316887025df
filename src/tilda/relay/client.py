"""Relay client: deliver one command to the running instance and report the outcome."""
from __future__ import annotations

import errno
import logging
import socket
import time
from typing import Any, List, Optional

from pydantic import ValidationError

from ..contracts.v1 import RelayResponse
from .address import RelayAddress, address_for
from .errors import CallRejectedError, CallTransportError, ConnectTransportError, NoServerError
from .methods import ADDTAB, MAX_LINE_BYTES, MethodSpec, SignatureError, decode_frame, encode_frame, make_request

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT_S = 1.0
DEFAULT_CALL_TIMEOUT_S = 5.0

# ECONNREFUSED is what an abstract address with no listener yields; ENOENT covers path sockets.
_NO_SERVER_ERRNOS = (errno.ECONNREFUSED, errno.ENOENT)


class RelayClient:
    """A connection to one relay server. One-shot: closed after its call."""

    def __init__(self, sock: socket.socket, address: RelayAddress):
        self._sock: Optional[socket.socket] = sock
        self.address = address

    @classmethod
    def connect(cls, instance_id: int, *, timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S) -> "RelayClient":
        address = address_for(instance_id)
        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        except OSError as e:
            raise ConnectTransportError(f"cannot create socket: {e}", details={"address": address.dbus_address}) from e
        try:
            sock.settimeout(timeout_s)
            sock.connect(address.sockaddr)
        except OSError as e:
            sock.close()
            details = {"address": address.dbus_address, "errno": e.errno}
            if isinstance(e, socket.timeout):
                raise ConnectTransportError(f"timed out connecting to {address}", details=details) from e
            if e.errno in _NO_SERVER_ERRNOS:
                raise NoServerError(f"no server at {address}", details=details) from e
            raise ConnectTransportError(f"error connecting to {address}: {e}", details=details) from e
        return cls(sock, address)

    @property
    def closed(self) -> bool:
        return self._sock is None

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

    def __enter__(self) -> "RelayClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def call(self, spec: MethodSpec, args: List[Any], *, timeout_s: float = DEFAULT_CALL_TIMEOUT_S) -> List[Any]:
        """Issue one call and block for its reply; the connection is closed afterwards."""
        sock = self._sock
        if sock is None:
            raise CallTransportError("connection is closed", details={"address": self.address.dbus_address})
        try:
            request = make_request(spec.method, list(spec.check_in(args)))
        except SignatureError as e:
            self.close()
            raise CallRejectedError(str(e), code="invalid_args", details={"signature": spec.in_signature}) from e
        frame = encode_frame(request.model_dump())
        if len(frame) > MAX_LINE_BYTES:
            # Same limit and code the server enforces.
            self.close()
            raise CallRejectedError(
                f"request exceeds {MAX_LINE_BYTES} bytes", code="request_too_large", details={"size": len(frame)}
            )
        try:
            deadline = time.monotonic() + float(timeout_s)
            sock.settimeout(timeout_s)
            sock.sendall(frame)
            line = _recv_line(sock, deadline)
        except socket.timeout as e:
            raise CallTransportError(
                f"no reply to {spec.method.value}() within {timeout_s}s", details={"address": self.address.dbus_address}
            ) from e
        except OSError as e:
            raise CallTransportError(
                f"connection lost during {spec.method.value}(): {e}", details={"address": self.address.dbus_address}
            ) from e
        finally:
            self.close()

        try:
            resp = RelayResponse.model_validate(decode_frame(line))
        except (ValueError, ValidationError) as e:
            raise CallTransportError(f"malformed reply: {e}", details={"address": self.address.dbus_address}) from e
        if resp.serial != request.serial:
            raise CallTransportError(f"reply serial {resp.serial} does not match request {request.serial}")
        if not resp.ok:
            err = resp.error
            code = err.code if err else "rejected"
            message = err.message if err else "call rejected"
            raise CallRejectedError(message, code=code, details=(err.details if err else {}))
        try:
            return list(spec.check_out(resp.result))
        except SignatureError as e:
            raise CallTransportError(f"malformed reply: {e}") from e

    def send_add_tab(self, command: str, *, timeout_s: float = DEFAULT_CALL_TIMEOUT_S) -> int:
        (response,) = self.call(ADDTAB, [command], timeout_s=timeout_s)
        return int(response)


def _recv_line(sock: socket.socket, deadline: float) -> bytes:
    buf = b""
    while b"\n" not in buf:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("timed out")
        sock.settimeout(remaining)
        chunk = sock.recv(65536)
        if not chunk:
            raise ConnectionResetError("server closed the connection before replying")
        buf += chunk
        if len(buf) > MAX_LINE_BYTES:
            raise ConnectionError("reply exceeds line limit")
    return buf.split(b"\n", 1)[0]


def connect(instance_id: int, *, timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S) -> RelayClient:
    return RelayClient.connect(instance_id, timeout_s=timeout_s)


def send_add_tab(client: RelayClient, command: str, *, timeout_s: float = DEFAULT_CALL_TIMEOUT_S) -> int:
    """Blocking `addtab(command)`; returns the server's status code."""
    status = client.send_add_tab(command, timeout_s=timeout_s)
    logger.debug("addtab delivered", extra={"instance_id": client.address.instance_id, "method": "addtab"})
    return status
