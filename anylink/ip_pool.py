"""Dynamic IPv4 address allocation with leases and a record of past assignments."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from ipaddress import IPv4Address, IPv4Network
from typing import Callable

from .utils import ip2long, long2ip

log = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 86400


@dataclass
class IpMap:
    """A remembered assignment of an address to a client."""

    ip_addr: str
    mac_addr: str = ""
    username: str = ""
    keep: bool = False
    unique_mac: bool = False
    last_login: datetime = field(default_factory=datetime.now)


class IpMapStore:
    """In-memory store of assignment records, keyed by address."""

    def __init__(self) -> None:
        self._records: dict[str, IpMap] = {}
        self._lock = threading.RLock()

    def by_ip(self, ip_addr) -> IpMap | None:
        with self._lock:
            return self._records.get(str(ip_addr))

    def by_mac(self, mac_addr: str) -> IpMap | None:
        with self._lock:
            return next((r for r in self._records.values() if r.mac_addr == mac_addr), None)

    def find_user(self, username: str, unique_mac: bool, limit: int = 50) -> list[IpMap]:
        with self._lock:
            matches = (
                r
                for r in self._records.values()
                if r.username == username and r.unique_mac == unique_mac
            )
            return [r for _, r in zip(range(limit), matches)]

    def save(self, record: IpMap) -> None:
        with self._lock:
            self._records[record.ip_addr] = record

    def remove(self, record: IpMap) -> None:
        with self._lock:
            self._records.pop(record.ip_addr, None)

    def leased(self, lease_seconds: int, now: datetime | None = None) -> set[str]:
        """Addresses that are reserved or still inside a device's lease."""
        cutoff = (now or datetime.now()) - timedelta(seconds=lease_seconds)
        with self._lock:
            return {
                r.ip_addr
                for r in self._records.values()
                if r.keep or (r.unique_mac and r.last_login > cutoff)
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class IpPool:
    """Hands out addresses between ``start`` and ``end`` inside ``cidr``."""

    def __init__(
        self,
        cidr: str,
        start,
        end,
        gateway=None,
        *,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
        store: IpMapStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.network = IPv4Network(cidr, strict=False)
        self.mask = self.network.netmask
        self.gateway = IPv4Address(gateway) if gateway else None
        self.ip_long_min = ip2long(start)
        self.ip_long_max = ip2long(end)
        self.lease_seconds = lease_seconds
        self.store = store if store is not None else IpMapStore()
        self.leased_ips: set[str] = set()
        self._clock = clock
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @property
    def active(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._active)

    def contains(self, ip) -> bool:
        """True when ``ip`` lies in the pool's network."""
        try:
            return IPv4Address(str(ip)) in self.network
        except ValueError:
            return False

    def _in_range(self, ip: IPv4Address) -> bool:
        return self.contains(ip) and self.ip_long_min <= ip2long(ip) <= self.ip_long_max

    def refresh_leases(self) -> set[str]:
        """Reload the set of reserved and leased addresses from the store."""
        leased = self.store.leased(self.lease_seconds, self._clock())
        with self._lock:
            self.leased_ips = leased
        return leased

    def _claim(self, record: IpMap, now: datetime) -> IPv4Address:
        record.last_login = now
        self.store.save(record)
        self._active.add(record.ip_addr)
        return IPv4Address(record.ip_addr)

    def acquire(self, username: str, mac_addr: str, unique_mac: bool) -> IPv4Address | None:
        """Assign an address to a client, reusing its previous one when possible.

        Returns None when the pool has no free address.
        """
        with self._lock:
            now = self._clock()
            lease_time = now - timedelta(seconds=self.lease_seconds)

            if unique_mac:
                record = self.store.by_mac(mac_addr)
                if record is not None:
                    try:
                        ip = IPv4Address(record.ip_addr)
                    except ValueError:
                        ip = None
                    if (
                        ip is not None
                        and record.ip_addr not in self._active
                        and self._in_range(ip)
                    ):
                        record.username = username
                        record.unique_mac = unique_mac
                        return self._claim(record, now)
                    self.store.remove(record)
            else:
                for record in self.store.find_user(username, False, 50):
                    if record.ip_addr in self._active or record.keep:
                        continue
                    try:
                        ip = IPv4Address(record.ip_addr)
                    except ValueError:
                        continue
                    if self._in_range(ip) and record.last_login < lease_time:
                        record.mac_addr = mac_addr
                        record.unique_mac = unique_mac
                        return self._claim(record, now)

            for value in range(self.ip_long_min, self.ip_long_max + 1):
                ip_str = str(long2ip(value))
                if ip_str in self._active:
                    continue
                record = self.store.by_ip(ip_str)
                if record is None:
                    record = IpMap(
                        ip_addr=ip_str,
                        mac_addr=mac_addr,
                        username=username,
                        unique_mac=unique_mac,
                    )
                    return self._claim(record, now)
                if record.keep:
                    continue
                if record.last_login < lease_time:
                    record.mac_addr = mac_addr
                    record.unique_mac = unique_mac
                    return self._claim(record, now)

            log.warning("no ip available, please see ip_map table row")
            return None

    def release(self, ip, mac_addr: str = "") -> None:
        """Return an address to the pool and stamp its record with the release time."""
        ip_str = str(ip)
        with self._lock:
            self._active.discard(ip_str)
            record = self.store.by_ip(ip_str)
            if record is not None:
                record.last_login = self._clock()
                self.store.save(record)