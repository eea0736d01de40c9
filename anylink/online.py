"""A view of the sessions currently connected."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from ipaddress import IPv4Address

from .session import SessionRegistry
from .utils import human_byte, ip2long


@dataclass
class Online:
    """One connected user as shown to administrators."""

    token: str
    username: str
    group: str
    mac_addr: str
    unique_mac: bool
    ip: IPv4Address
    remote_addr: str
    tun_name: str
    mtu: int
    client: str
    bandwidth_up: str
    bandwidth_down: str
    bandwidth_up_all: str
    bandwidth_down_all: str
    last_login: datetime


def online_sessions(registry: SessionRegistry) -> list[Online]:
    """List the active sessions, ordered by assigned address."""
    result = []
    for sess in registry:
        with sess.lock:
            conn = sess.c_sess
            if not sess.is_active or conn is None:
                continue
            result.append(
                Online(
                    token=sess.token,
                    username=sess.username,
                    group=sess.group,
                    mac_addr=sess.mac_addr,
                    unique_mac=sess.unique_mac,
                    ip=conn.ip_addr,
                    remote_addr=conn.remote_addr,
                    tun_name=conn.if_name,
                    mtu=conn.mtu,
                    client=conn.client,
                    bandwidth_up=human_byte(conn.bandwidth_up_period) + "/s",
                    bandwidth_down=human_byte(conn.bandwidth_down_period) + "/s",
                    bandwidth_up_all=human_byte(conn.bandwidth_up_all),
                    bandwidth_down_all=human_byte(conn.bandwidth_down_all),
                    last_login=sess.last_login,
                )
            )
    result.sort(key=lambda item: ip2long(item.ip))
    return result