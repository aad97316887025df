"""Endpoint addressing for the single-instance relay.

Each instance id owns one socket in the Linux abstract namespace, so nothing
is left on the filesystem when the owning process dies.
"""
from __future__ import annotations

from dataclasses import dataclass

ADDRESS_PREFIX = "tilda_"


@dataclass(frozen=True)
class RelayAddress:
    instance_id: int
    name: str

    @property
    def sockaddr(self) -> str:
        # Leading NUL selects the abstract namespace.
        return "\0" + self.name

    @property
    def dbus_address(self) -> str:
        return f"unix:abstract={self.name}"

    def __str__(self) -> str:
        return self.dbus_address


def address_for(instance_id: int) -> RelayAddress:
    iid = int(instance_id)
    return RelayAddress(instance_id=iid, name=f"{ADDRESS_PREFIX}{iid}")
