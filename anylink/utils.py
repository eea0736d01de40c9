"""Small helpers: IPv4 conversion, byte formatting, random secrets and password hashes."""

from __future__ import annotations

import base64
import datetime as _dt
import ipaddress
import random
import secrets

import bcrypt

KB = 1024
MB = 1024 * KB
GB = 1024 * MB
TB = 1024 * GB
PB = 1024 * TB

_LETTERS = "abcdefghijklmnpqrstuvwxy1234567890"
_BCRYPT_COST = 10


def _as_ipv4(ip) -> ipaddress.IPv4Address:
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = ip
    else:
        addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv6Address):
        if addr.ipv4_mapped is None:
            raise ValueError(f"{addr} is not an IPv4 address")
        addr = addr.ipv4_mapped
    return addr


def long2ip(value: int) -> ipaddress.IPv4Address:
    """Turn a 32-bit integer into an IPv4 address."""
    return ipaddress.IPv4Address(value)


def ip2long(ip) -> int:
    """Turn an IPv4 address (or IPv4-mapped IPv6 address) into a 32-bit integer."""
    return int(_as_ipv4(ip))


def now_sec() -> _dt.datetime:
    """Return the current local time at one-second resolution."""
    return _dt.datetime.now().replace(microsecond=0)


def in_arr_str(arr, value: str) -> bool:
    """Tell whether ``value`` is one of the strings in ``arr``."""
    return value in arr


def human_byte(value) -> str:
    """Format a byte count with a binary unit and two decimals."""
    amount = float(value)
    for limit, unit in ((TB, "TB"), (GB, "GB"), (MB, "MB"), (KB, "KB")):
        if amount >= limit:
            return f"{amount / limit:.2f} {unit}"
    return f"{amount:.2f} B"


def random_runes(length: int) -> str:
    """Return a random string of lower-case letters and digits."""
    return "".join(random.choice(_LETTERS) for _ in range(length))


def rand_secret(min_len: int, max_len: int) -> str:
    """Return URL-safe base64 of between ``min_len`` and ``max_len - 1`` random bytes."""
    size = random.randrange(min_len, max_len)
    return base64.urlsafe_b64encode(secrets.token_bytes(size)).decode("ascii")


def password_hash(password: str) -> str:
    """Hash a password with bcrypt at the default cost."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=_BCRYPT_COST)).decode()


def password_verify(password: str, hashed: str) -> bool:
    """Check a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        return False