"""Find the host name a TCP segment is heading for: TLS SNI or an HTTP Host."""

from __future__ import annotations

import re
from enum import IntEnum


class AccessProto(IntEnum):
    """Kinds of access recorded in the audit log."""

    UDP = 1
    TCP = 2
    HTTPS = 3
    HTTP = 4


_NONE = (AccessProto.TCP, "")

_SNI_RE = re.compile(
    rb"\x00\x00.{4}\x00.{2}([a-z0-9]+([\-\.]{1}[a-z0-9]+)*\.[a-z]{2,6})\x00"
)
_TOKEN_RE = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_VERSION_RE = re.compile(r"^HTTP/(\d{1,3})\.(\d{1,3})$")
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")

_HTTP_METHODS = ("OPTIONS", "HEAD", "GET", "POST", "PUT", "DELETE", "TRACE", "CONNECT")


def on_tcp(payload: bytes) -> tuple[AccessProto, str]:
    """Inspect a TCP segment (header included) for HTTPS or HTTP access."""
    if len(payload) < 13:
        return _NONE
    header_len = (payload[12] & 0xF0) >> 2
    if header_len > len(payload):
        return _NONE
    data = payload[header_len:]
    for parser in (sni_parser, http_parser):
        proto, info = parser(data)
        if proto != AccessProto.TCP:
            return proto, info
    return _NONE


def _u16(buf: bytes, pos: int) -> int:
    return (buf[pos] << 8) + buf[pos + 1]


def sni_parser(data: bytes) -> tuple[AccessProto, str]:
    """Walk a TLS ClientHello to its server_name extension."""
    if len(data) < 2 or data[0] != 0x16 or data[1] != 0x03:
        return _NONE
    rest = data[5:]
    size = len(rest)
    if size == 0:
        return _NONE
    if rest[0] != 0x01:
        return _NONE
    # handshake type, length, protocol version, random
    current = 1 + 3 + 2 + 32
    if current >= size:
        return AccessProto.HTTPS, ""
    current += 1 + rest[current]
    if current + 1 >= size:
        return AccessProto.HTTPS, ""
    current += 2 + _u16(rest, current)
    if current >= size:
        return AccessProto.HTTPS, ""
    current += 1 + rest[current]
    if current >= size:
        return AccessProto.HTTPS, ""
    current += 2

    hostname = ""
    while current + 4 < size and not hostname:
        extension_type = _u16(rest, current)
        current += 2
        extension_len = _u16(rest, current)
        current += 2
        if extension_type == 0:
            # skip the list length; a single name is assumed
            current += 2
            if current >= size:
                return AccessProto.HTTPS, ""
            name_type = rest[current]
            current += 1
            if name_type != 0:
                return AccessProto.HTTPS, ""
            if current + 1 >= size:
                return AccessProto.HTTPS, ""
            name_len = _u16(rest, current)
            current += 2
            if current + name_len >= size:
                return AccessProto.HTTPS, ""
            hostname = rest[current:current + name_len].decode("latin-1")
        current += extension_len

    if not hostname or not valid_domain_char(hostname):
        return AccessProto.HTTPS, ""
    return AccessProto.HTTPS, hostname


def sni_regex_parser(data: bytes) -> tuple[AccessProto, str]:
    """Find a server name in a TLS handshake by pattern matching."""
    if len(data) < 2 or data[0] != 0x16 or data[1] != 0x03:
        return _NONE
    match = _SNI_RE.search(data)
    if match is None:
        return _NONE
    return AccessProto.HTTPS, match.group(1).decode("latin-1")


def _read_line(data: bytes, pos: int) -> tuple[str, int] | None:
    end = data.find(b"\n", pos)
    if end == -1:
        return None
    line = data[pos:end]
    if line.endswith(b"\r"):
        line = line[:-1]
    return line.decode("latin-1"), end + 1


def _uri_host(method: str, uri: str) -> str:
    if method == "CONNECT" and not uri.startswith("/"):
        uri = "http://" + uri
    if not uri:
        raise ValueError("empty request URI")
    if uri == "*" or uri.startswith("/"):
        return ""
    scheme = _SCHEME_RE.match(uri)
    if scheme is None:
        raise ValueError(f"invalid request URI {uri!r}")
    rest = uri[scheme.end():]
    if not rest.startswith("//"):
        return ""
    authority = re.split(r"[/?#]", rest[2:], maxsplit=1)[0]
    return authority.rpartition("@")[2]


def _parse_request(data: bytes) -> str:
    line = _read_line(data, 0)
    if line is None:
        raise ValueError("no request line")
    request_line, pos = line
    method, sep1, rest = request_line.partition(" ")
    uri, sep2, proto = rest.partition(" ")
    if not sep1 or not sep2:
        raise ValueError("malformed request line")
    if not _TOKEN_RE.match(method):
        raise ValueError("invalid method")
    if not _VERSION_RE.match(proto):
        raise ValueError("malformed HTTP version")
    host = _uri_host(method, uri)

    headers: list[list[str]] = []
    while True:
        line = _read_line(data, pos)
        if line is None:
            raise ValueError("unexpected end of headers")
        text, pos = line
        if not text:
            break
        if text[0] in " \t":
            if not headers:
                raise ValueError("malformed header continuation")
            headers[-1][1] += " " + text.strip()
            continue
        key, colon, value = text.partition(":")
        if not colon or not key or not _TOKEN_RE.match(key):
            raise ValueError(f"malformed header line {text!r}")
        headers.append([key, value.strip()])

    if host:
        return host
    return next((value for key, value in headers if key.lower() == "host"), "")


def http_parser(data: bytes) -> tuple[AccessProto, str]:
    """Parse an HTTP/1.x request head and report its host."""
    try:
        return AccessProto.HTTP, _parse_request(data)
    except ValueError:
        return _NONE


def http_new_parser(data: bytes) -> tuple[AccessProto, str]:
    """Find the host of an HTTP request by scanning its text."""
    pos = data.find(b"\n")
    if pos == -1:
        return _NONE
    method, _, uri = data[:pos].decode("latin-1").partition(" ")
    if method not in _HTTP_METHODS:
        return _NONE
    if len(uri) > 7 and uri[:4] == "http":
        return AccessProto.HTTP, uri[7:].split("/")[0]
    packet = data.decode("latin-1")
    host_pos = packet.find("Host: ")
    if host_pos == -1:
        host_pos = packet.find("HOST: ")
        if host_pos == -1:
            return _NONE
    host_end = packet.find("\n", host_pos)
    if host_end == -1:
        return _NONE
    return AccessProto.HTTP, packet[host_pos + 6:host_end - 1]


def valid_domain_char(addr: str) -> bool:
    """True when ``addr`` holds only ASCII letters, digits, ``-`` and ``.``."""
    return all(
        "a" <= c <= "z" or "A" <= c <= "Z" or "0" <= c <= "9" or c in "-."
        for c in addr
    )