"""Tunnel payload types: link layer kinds, CSTP/DTLS packet types and the payload record.

CSTP framing puts an 8-byte header in front of each packet:

* bytes 0-3: ``S``, ``T``, ``F``, ``0x01``
* bytes 4-5: length of the packet that follows, big endian
* byte 6: the payload type (see :class:`PayloadType`)
* byte 7: ``0x00``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum


class LinkType(IntEnum):
    """What a payload's data holds: a whole Ethernet frame or a bare IP packet."""

    ETHERNET = 1
    IP_DATA = 2


class PayloadType(IntEnum):
    """Packet types carried in the tunnel header."""

    DATA = 0x00
    DPD_REQ = 0x03
    DPD_RESP = 0x04
    DISCONNECT = 0x05
    KEEPALIVE = 0x07
    COMPRESSED_DATA = 0x08
    TERMINATE = 0x09


@dataclass
class Payload:
    """One packet moving through a tunnel."""

    ltype: LinkType = LinkType.IP_DATA
    ptype: PayloadType = PayloadType.DATA
    data: bytes = field(default=b"")

    def __post_init__(self) -> None:
        self.ltype = LinkType(self.ltype)
        self.ptype = PayloadType(self.ptype)
        self.data = bytes(self.data)

    @property
    def is_ip_data(self) -> bool:
        """True for an IP packet carrying user data."""
        return self.ltype == LinkType.IP_DATA and self.ptype == PayloadType.DATA

    def reset(self) -> None:
        """Return the payload to its initial state for reuse."""
        self.ltype = LinkType.IP_DATA
        self.ptype = PayloadType.DATA
        self.data = b""