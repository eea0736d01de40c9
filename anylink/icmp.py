"""ICMP echo messages and a simple IPv4 ping."""

from __future__ import annotations

import errno
import os
import socket
import struct
import time

PROTOCOL_ICMP = 1
PROTOCOL_IPV6_ICMP = 58

ICMP_ECHO_REPLY = 0
ICMP_ECHO_REQUEST = 8

_HEADER = struct.Struct("!BBHHH")
_PING_TTL = 10


def _checksum(data: bytes) -> int:
    if len(data) % 2:
        data += b"\x00"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def build_echo_request(ident: int, seq: int, data: bytes = b"") -> bytes:
    """Build an ICMP echo request with a valid checksum."""
    ident &= 0xFFFF
    seq &= 0xFFFF
    unsigned = _HEADER.pack(ICMP_ECHO_REQUEST, 0, 0, ident, seq) + data
    return _HEADER.pack(ICMP_ECHO_REQUEST, 0, _checksum(unsigned), ident, seq) + data


def parse_echo_reply(packet: bytes) -> tuple[int, int, bytes]:
    """Parse an ICMP message that should be an echo reply.

    Returns ``(ident, seq, data)``. Raises ValueError for a truncated
    message and OSError for any other ICMP type.
    """
    if len(packet) < 4:
        raise ValueError("ICMP message too short")
    if packet[0] != ICMP_ECHO_REPLY:
        raise OSError(errno.EHOSTUNREACH, "destination unreachable")
    if len(packet) < _HEADER.size:
        raise ValueError("ICMP echo message too short")
    _, _, _, ident, seq = _HEADER.unpack_from(packet)
    return ident, seq, bytes(packet[_HEADER.size:])


def _strip_ip_header(packet: bytes) -> bytes:
    if packet and packet[0] >> 4 == 4:
        return packet[(packet[0] & 0x0F) * 4:]
    return packet


def ping(ip, timeout: float = 2.0) -> tuple[int, int, bytes]:
    """Send one echo request to ``ip`` and wait for the reply.

    Returns the parsed reply; raises OSError (including TimeoutError) on failure.
    """
    target = str(ip)
    request = build_echo_request(os.getpid() & 0xFFFF, 1, time_to_bytes(time.time_ns()))
    with socket.socket(socket.AF_INET, socket.SOCK_RAW, socket.IPPROTO_ICMP) as sock:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_TTL, _PING_TTL)
        sock.sendto(request, (target, 0))
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"no echo reply from {target}")
            sock.settimeout(remaining)
            packet, source = sock.recvfrom(512)
            if source[0] != target:
                continue
            return parse_echo_reply(_strip_ip_header(packet))


def time_to_bytes(t: int) -> bytes:
    """Encode nanoseconds since the epoch as 8 big-endian bytes."""
    return (t & 0xFFFFFFFFFFFFFFFF).to_bytes(8, "big")


def bytes_to_time(data: bytes) -> int:
    """Decode the first 8 big-endian bytes into nanoseconds since the epoch."""
    if len(data) < 8:
        raise ValueError("need at least 8 bytes")
    return int.from_bytes(data[:8], "big", signed=True)