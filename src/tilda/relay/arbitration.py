"""Decide whether this process serves an instance id or relays to the one that does."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from . import client as relay_client
from .errors import BindError, ConnectTransportError, NoServerError
from .server import AddTabCallback, RelayHandle, start

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SERVER = "server"
    CLIENT = "client"


@dataclass
class Arbitration:
    role: Role
    handle: Optional[RelayHandle] = None
    status: Optional[int] = None


def relay_command(
    instance_id: int,
    command: str,
    *,
    connect_timeout_s: float = relay_client.DEFAULT_CONNECT_TIMEOUT_S,
    call_timeout_s: float = relay_client.DEFAULT_CALL_TIMEOUT_S,
) -> Optional[int]:
    """Send `command` to the running instance.

    Returns the reply status, or None when no server is reachable. A
    transport failure while connecting is logged and treated as no server;
    CallError propagates.
    """
    try:
        conn = relay_client.connect(instance_id, timeout_s=connect_timeout_s)
    except NoServerError:
        return None
    except ConnectTransportError as e:
        logger.warning("Connect failed, assuming no server: %s", e, extra={"instance_id": instance_id})
        return None
    return relay_client.send_add_tab(conn, command, timeout_s=call_timeout_s)


async def arbitrate(
    instance_id: int,
    add_tab: AddTabCallback,
    command: str,
    *,
    connect_timeout_s: float = relay_client.DEFAULT_CONNECT_TIMEOUT_S,
    call_timeout_s: float = relay_client.DEFAULT_CALL_TIMEOUT_S,
) -> Arbitration:
    """Relay `command` to an existing server, or become the server.

    A lost bind race falls back to the client role with one more connect.
    """

    async def _relay() -> Optional[int]:
        # Blocking client calls stay off the loop so a server on it keeps serving.
        return await asyncio.to_thread(
            relay_command,
            instance_id,
            command,
            connect_timeout_s=connect_timeout_s,
            call_timeout_s=call_timeout_s,
        )

    status = await _relay()
    if status is not None:
        return Arbitration(role=Role.CLIENT, status=status)

    try:
        handle = await start(instance_id, add_tab)
    except BindError as e:
        if not e.address_in_use:
            raise
        logger.info("Lost the race to serve, relaying instead", extra={"instance_id": instance_id})
        status = await _relay()
        if status is None:
            raise
        return Arbitration(role=Role.CLIENT, status=status)
    return Arbitration(role=Role.SERVER, handle=handle)
