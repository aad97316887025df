"""Relay server: owns the instance address and serves `addtab` on the asyncio loop.

PUBLIC API:
  - start: bind the address for an instance id and begin accepting
  - RelayHandle: the running server; close/stop releases the address
"""
from __future__ import annotations

import asyncio
import errno
import itertools
import logging
import socket
import struct
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from pydantic import ValidationError

from ..contracts.v1 import RelayRequest, RelayResponse
from .address import RelayAddress, address_for
from .errors import BindError
from .methods import (
    ADDTAB_SUCCESS,
    MAX_LINE_BYTES,
    OBJECT_PATH,
    TILDA_INTERFACE,
    InterfaceDescriptor,
    RelayMethod,
    SignatureError,
    decode_frame,
    encode_frame,
    error_response,
)

__all__ = ["RelayHandle", "PeerCredentials", "start"]

logger = logging.getLogger(__name__)

AddTabCallback = Callable[[str], Any]
Handler = Callable[..., Tuple[Any, ...]]


@dataclass(frozen=True)
class PeerCredentials:
    pid: int
    uid: int
    gid: int

    def __str__(self) -> str:
        return f"pid={self.pid} uid={self.uid} gid={self.gid}"


def peer_credentials(sock: Any) -> Optional[PeerCredentials]:
    """Best-effort SO_PEERCRED lookup. Used for logging only, never for access control."""
    so_peercred = getattr(socket, "SO_PEERCRED", None)
    if sock is None or so_peercred is None:
        return None
    try:
        raw = sock.getsockopt(socket.SOL_SOCKET, so_peercred, struct.calcsize("3i"))
        pid, uid, gid = struct.unpack("3i", raw)
    except (OSError, struct.error):
        return None
    return PeerCredentials(pid=pid, uid=uid, gid=gid)


def _bind(address: RelayAddress) -> socket.socket:
    try:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as e:
        raise BindError(
            f"cannot create socket for {address}: {e}",
            reason=BindError.TRANSPORT,
            details={"address": address.dbus_address, "errno": e.errno},
        ) from e
    try:
        sock.bind(address.sockaddr)
        sock.listen(50)
        sock.setblocking(False)
    except OSError as e:
        sock.close()
        reason = BindError.ADDRESS_IN_USE if e.errno == errno.EADDRINUSE else BindError.TRANSPORT
        raise BindError(
            f"cannot bind {address}: {e}",
            reason=reason,
            details={"address": address.dbus_address, "errno": e.errno},
        ) from e
    return sock


@dataclass
class _Registration:
    registration_id: int
    path: str
    interface: InterfaceDescriptor
    handlers: Dict[RelayMethod, Handler]


class _PeerConnection:
    """One accepted connection; serves requests in receipt order until the peer closes."""

    def __init__(self, handle: "RelayHandle", reader: StreamReader, writer: StreamWriter):
        self._handle = handle
        self._reader = reader
        self._writer = writer
        self._registrations: Dict[Tuple[str, str], _Registration] = {}
        creds = peer_credentials(writer.get_extra_info("socket"))
        self.peer = str(creds) if creds else ""

    def register_object(self, path: str, interface: InterfaceDescriptor, handlers: Dict[RelayMethod, Handler]) -> int:
        missing = [spec.method for spec in interface.methods if spec.method not in handlers]
        if missing:
            raise ValueError(f"no handler for {', '.join(m.value for m in missing)}")
        reg = _Registration(
            registration_id=next(self._handle._registration_ids),
            path=path,
            interface=interface,
            handlers=dict(handlers),
        )
        self._registrations[(path, interface.name)] = reg
        return reg.registration_id

    def abort(self) -> None:
        self._writer.close()

    async def serve(self) -> None:
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except ValueError:
                    # Line limit overrun; the stream cannot be resynchronised.
                    await self._reply(error_response("request_too_large", f"request exceeds {MAX_LINE_BYTES} bytes"))
                    break
                if not line:
                    break
                resp = self.dispatch(line)
                await self._reply(resp)
        except ConnectionError as e:
            logger.info("Client connection lost: %s", e, extra={"peer": self.peer})
        finally:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _reply(self, resp: RelayResponse) -> None:
        self._writer.write(encode_frame(resp.model_dump()))
        await self._writer.drain()

    def dispatch(self, line: bytes) -> RelayResponse:
        try:
            req = RelayRequest.model_validate(decode_frame(line))
        except (ValueError, ValidationError) as e:
            logger.warning("Rejected malformed request: %s", e, extra={"peer": self.peer})
            return error_response("invalid_request", "invalid request", details={"error": str(e)})

        if req.path not in {path for path, _ in self._registrations}:
            return self._reject(req, "unknown_object", f"no object at path {req.path!r}")
        reg = self._registrations.get((req.path, req.interface))
        if reg is None:
            return self._reject(req, "unknown_interface", f"no interface {req.interface!r} at {req.path!r}")
        spec = reg.interface.lookup(req.method)
        if spec is None:
            return self._reject(req, "unknown_method", f"no method {req.method!r} on {req.interface!r}")
        try:
            args = spec.check_in(req.args)
        except SignatureError as e:
            return self._reject(req, "invalid_args", str(e), details={"signature": spec.in_signature})

        out = reg.handlers[spec.method](*args)
        return RelayResponse(serial=req.serial, ok=True, result=list(spec.check_out(out)))

    def _reject(self, req: RelayRequest, code: str, message: str, *, details: Optional[Dict[str, Any]] = None) -> RelayResponse:
        logger.warning("Rejected call: %s", message, extra={"peer": self.peer, "method": req.method})
        return error_response(code, message, serial=req.serial, details=details)


class RelayHandle:
    """A running relay server bound to one instance address.

    Closing it stops listening, releases the address and forcibly closes
    connections that are still open.
    """

    def __init__(self, address: RelayAddress, add_tab: AddTabCallback):
        self.address = address
        self._add_tab = add_tab
        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[_PeerConnection] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._registration_ids = itertools.count(1)
        self._closed = False

    @property
    def instance_id(self) -> int:
        return self.address.instance_id

    @property
    def serving(self) -> bool:
        return self._server is not None and not self._closed

    def _handle_addtab(self, command: str) -> Tuple[int]:
        logger.info(
            "Client send: %r:%r",
            RelayMethod.ADDTAB.value,
            command,
            extra={"instance_id": self.instance_id, "method": RelayMethod.ADDTAB.value},
        )
        try:
            self._add_tab(command)
        except Exception:
            # The reply stays ADDTAB_SUCCESS; the outcome is not part of the wire contract.
            logger.exception("add_tab failed", extra={"instance_id": self.instance_id})
        return (ADDTAB_SUCCESS,)

    async def _on_new_connection(self, reader: StreamReader, writer: StreamWriter) -> None:
        conn = _PeerConnection(self, reader, writer)
        if self._closed:
            conn.abort()
            return
        logger.info(
            "Client connected. Peer credentials: %s",
            conn.peer or "no credentials available",
            extra={"instance_id": self.instance_id, "peer": conn.peer},
        )
        registration_id = conn.register_object(OBJECT_PATH, TILDA_INTERFACE, {RelayMethod.ADDTAB: self._handle_addtab})
        logger.debug("Registered %s", OBJECT_PATH, extra={"registration_id": registration_id, "peer": conn.peer})

        task = asyncio.current_task()
        self._connections.add(conn)
        if task is not None:
            self._tasks.add(task)
        try:
            await conn.serve()
        finally:
            self._connections.discard(conn)
            if task is not None:
                self._tasks.discard(task)

    async def _serve_on(self, sock: socket.socket) -> None:
        self._server = await asyncio.start_unix_server(self._on_new_connection, sock=sock, limit=MAX_LINE_BYTES)
        logger.info(
            "Server is listening at: %s",
            self.address.dbus_address,
            extra={"instance_id": self.instance_id, "address": self.address.dbus_address},
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._server is not None:
            self._server.close()
        for conn in list(self._connections):
            conn.abort()
        logger.info("Server stopped", extra={"instance_id": self.instance_id, "address": self.address.dbus_address})

    async def wait_closed(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()

    async def stop(self) -> None:
        self.close()
        await self.wait_closed()

    async def __aenter__(self) -> "RelayHandle":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()


async def start(instance_id: int, add_tab: AddTabCallback) -> RelayHandle:
    """Bind the address for `instance_id` and serve `addtab` on the running loop.

    The bind happens before the first suspension point, so a BindError
    surfaces to the caller directly. Raises BindError with reason
    `address_in_use` when another server owns the address.
    """
    address = address_for(instance_id)
    sock = _bind(address)
    handle = RelayHandle(address, add_tab)
    try:
        await handle._serve_on(sock)
    except OSError as e:
        sock.close()
        raise BindError(f"cannot serve {address}: {e}", reason=BindError.TRANSPORT) from e
    return handle
