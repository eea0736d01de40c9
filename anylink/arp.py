"""ARP neighbour table, ARP frame building and neighbour discovery."""

from __future__ import annotations

import logging
import struct
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import IntEnum
from ipaddress import IPv4Address

from . import icmp
from .utils import ip2long, long2ip, now_sec

log = logging.getLogger(__name__)

STALE_TIME_NORMAL = timedelta(minutes=5)
STALE_TIME_UNREACHABLE = timedelta(minutes=10)

ETHERTYPE_IPV4 = 0x0800
ETHERTYPE_ARP = 0x0806
ARP_REQUEST = 1
ARP_REPLY = 2

_HW_ETHERNET = 1
_MIN_FRAME = 60
_ARP_HEADER = struct.Struct("!HHBBH")


class AddrType(IntEnum):
    NORMAL = 0
    UNREACHABLE = 1
    STATIC = 2


def _ipv4(ip) -> IPv4Address:
    return long2ip(ip2long(ip))


def _parse_mac(text: str) -> bytes:
    text = text.strip()
    if "." in text:
        groups = text.split(".")
        if len(groups) != 3 or any(len(g) != 4 for g in groups):
            raise ValueError(f"invalid MAC address: {text!r}")
        return bytes.fromhex("".join(groups))
    parts = text.replace("-", ":").split(":")
    if len(parts) != 6 or any(len(p) != 2 for p in parts):
        raise ValueError(f"invalid MAC address: {text!r}")
    return bytes.fromhex("".join(parts))


@dataclass
class Addr:
    """An IPv4 address with its hardware address and discovery state."""

    ip: IPv4Address
    hardware_addr: bytes = b""
    kind: AddrType = AddrType.NORMAL
    discovered_at: datetime | None = None

    def __post_init__(self) -> None:
        self.ip = _ipv4(self.ip)
        if isinstance(self.hardware_addr, str):
            self.hardware_addr = _parse_mac(self.hardware_addr)
        else:
            self.hardware_addr = bytes(self.hardware_addr)
        self.kind = AddrType(self.kind)

    @property
    def mac(self) -> str:
        return ":".join(f"{b:02x}" for b in self.hardware_addr)


class ArpTable:
    """A runtime IP-to-MAC table with ageing; static entries are set once."""

    def __init__(self, resolver=None) -> None:
        self._entries: dict[str, Addr] = {}
        self._lock = threading.RLock()
        self._resolver = resolver or resolve

    def _table_lookup(self, ip: IPv4Address) -> Addr | None:
        with self._lock:
            addr = self._entries.get(str(ip))
        if addr is None:
            return None
        age = now_sec() - addr.discovered_at
        if addr.kind == AddrType.NORMAL and age > STALE_TIME_NORMAL:
            return None
        if addr.kind == AddrType.UNREACHABLE and age > STALE_TIME_UNREACHABLE:
            return None
        return addr

    def lookup(self, ip, only_table: bool = False) -> Addr | None:
        """Find ``ip`` in the table, discovering it unless ``only_table`` is set."""
        ip = _ipv4(ip)
        addr = self._table_lookup(ip)
        if addr is not None or only_table:
            return addr
        addr = self._resolver(ip)
        self.add(addr)
        return addr

    def add(self, addr: Addr | None) -> None:
        """Store an entry; an existing static entry is never replaced."""
        if addr is None:
            return
        if addr.discovered_at is None:
            addr.discovered_at = now_sec()
        key = str(addr.ip)
        with self._lock:
            existing = self._entries.get(key)
            if existing is not None and existing.kind == AddrType.STATIC:
                return
            self._entries[key] = addr

    def delete(self, ip) -> None:
        with self._lock:
            self._entries.pop(str(_ipv4(ip)), None)

    def entries(self) -> dict[str, Addr]:
        with self._lock:
            return dict(self._entries)


def _mac6(value: bytes, role: str) -> bytes:
    if len(value) != 6:
        raise ValueError(f"invalid {role} MAC: {value.hex(':')!r}")
    return value


def _build_packet(src: Addr, dst: Addr, operation: int) -> bytes:
    src_mac = _mac6(src.hardware_addr, "src")
    dst_mac = _mac6(dst.hardware_addr, "dst")
    ether = dst_mac + src_mac + struct.pack("!H", ETHERTYPE_ARP)
    arp = (
        _ARP_HEADER.pack(_HW_ETHERNET, ETHERTYPE_IPV4, 6, 4, operation)
        + src_mac
        + src.ip.packed
        + dst_mac
        + dst.ip.packed
    )
    return (ether + arp).ljust(_MIN_FRAME, b"\x00")


def new_arp_request(src: Addr, dst: Addr) -> bytes:
    """Build an Ethernet frame carrying an ARP request."""
    return _build_packet(src, dst, ARP_REQUEST)


def new_arp_reply(src: Addr, dst: Addr) -> bytes:
    """Build an Ethernet frame carrying an ARP reply."""
    return _build_packet(src, dst, ARP_REPLY)


def parse_arp(frame: bytes) -> tuple[int, Addr, Addr]:
    """Decode an Ethernet ARP frame into ``(operation, sender, target)``."""
    if len(frame) < 14:
        raise ValueError("frame too short for Ethernet")
    (ethertype,) = struct.unpack_from("!H", frame, 12)
    if ethertype != ETHERTYPE_ARP:
        raise ValueError(f"not an ARP frame: ethertype {ethertype:#06x}")
    body = frame[14:]
    if len(body) < _ARP_HEADER.size + 20:
        raise ValueError("frame too short for ARP")
    _, ptype, hlen, plen, operation = _ARP_HEADER.unpack_from(body)
    if ptype != ETHERTYPE_IPV4 or hlen != 6 or plen != 4:
        raise ValueError("unsupported ARP address sizes")
    offset = _ARP_HEADER.size
    sha = body[offset:offset + 6]
    spa = body[offset + 6:offset + 10]
    tha = body[offset + 10:offset + 16]
    tpa = body[offset + 16:offset + 20]
    sender = Addr(ip=IPv4Address(spa), hardware_addr=sha)
    target = Addr(ip=IPv4Address(tpa), hardware_addr=tha)
    return operation, sender, target


def parse_neigh_show(output, ip) -> Addr | None:
    """Parse one line of ``ip n show <ip>`` into an entry, or None."""
    if isinstance(output, bytes):
        output = output.decode(errors="replace")
    text = output.replace("  ", " ").strip()
    fields = text.split(" ")
    if len(fields) != 6:
        log.info("lookup neighbour %s %s", text, ip)
        return None
    try:
        mac = _parse_mac(fields[4])
    except ValueError as exc:
        log.info("lookup mac %s %s", text, exc)
        return None
    return Addr(ip=ip, hardware_addr=mac)


def resolve(ip) -> Addr | None:
    """Discover the hardware address of ``ip`` by pinging it and reading the neighbour table."""
    ip = _ipv4(ip)
    try:
        icmp.ping(str(ip))
    except (OSError, ValueError):
        return Addr(ip=ip, kind=AddrType.UNREACHABLE)

    try:
        result = subprocess.run(
            ["ip", "n", "show", str(ip)], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        log.info("lookup show %s", exc)
        return None
    return parse_neigh_show(result.stdout, ip)