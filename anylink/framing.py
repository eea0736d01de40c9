"""CSTP and DTLS tunnel framing.

A CSTP packet carries an 8-byte header (``STF\\x01``, a big-endian length,
the payload type and a zero byte); a DTLS packet carries a single type byte.
Control packets (keepalive, DPD, disconnect) have a header and no data.
"""

from __future__ import annotations

from .protocol import LinkType, Payload, PayloadType

BUFFER_SIZE = 2048
CSTP_MAGIC = b"STF\x01"
CSTP_HEADER_SIZE = 8
DTLS_HEADER_SIZE = 1


class FrameError(ValueError):
    """A tunnel packet could not be encoded or decoded."""


def _packet_type(value: int) -> PayloadType:
    try:
        return PayloadType(value)
    except ValueError:
        raise FrameError(f"unknown payload type {value:#04x}") from None


def _check_framable(payload: Payload) -> None:
    if payload.ltype != LinkType.IP_DATA:
        raise FrameError("only IP payloads can be sent through the tunnel")


def encode_cstp(payload: Payload) -> bytes:
    """Frame a payload for the CSTP (TLS) channel."""
    _check_framable(payload)
    if payload.ptype == PayloadType.DATA:
        size = len(payload.data)
        if CSTP_HEADER_SIZE + size > BUFFER_SIZE:
            raise FrameError(f"data length {size} does not fit in a CSTP packet")
        return CSTP_MAGIC + size.to_bytes(2, "big") + b"\x00\x00" + payload.data
    return CSTP_MAGIC + b"\x00\x00" + bytes([payload.ptype]) + b"\x00"


def decode_cstp(data: bytes) -> Payload:
    """Read one CSTP packet into a payload; data packets lose their header."""
    if len(data) < CSTP_HEADER_SIZE:
        raise FrameError("CSTP packet shorter than its header")
    ptype = _packet_type(data[6])
    if ptype != PayloadType.DATA:
        return Payload(ptype=ptype)
    length = int.from_bytes(data[4:6], "big")
    if CSTP_HEADER_SIZE + length > BUFFER_SIZE:
        raise FrameError(f"recv error dataLen {length}")
    if len(data) < CSTP_HEADER_SIZE + length:
        raise FrameError(f"CSTP packet truncated: need {length} bytes of data")
    return Payload(data=bytes(data[CSTP_HEADER_SIZE:CSTP_HEADER_SIZE + length]))


def encode_dtls(payload: Payload) -> bytes:
    """Frame a payload for the DTLS (UDP) channel."""
    _check_framable(payload)
    if payload.ptype == PayloadType.DATA:
        if DTLS_HEADER_SIZE + len(payload.data) > BUFFER_SIZE:
            raise FrameError(f"data length {len(payload.data)} does not fit in a DTLS packet")
        return bytes([payload.ptype]) + payload.data
    return bytes([payload.ptype])


def decode_dtls(data: bytes) -> Payload:
    """Read one DTLS packet into a payload; data packets lose their type byte."""
    if not data:
        raise FrameError("empty DTLS packet")
    if len(data) > BUFFER_SIZE:
        raise FrameError(f"DTLS packet of {len(data)} bytes exceeds the buffer")
    ptype = _packet_type(data[0])
    if ptype != PayloadType.DATA:
        return Payload(ptype=ptype)
    return Payload(data=bytes(data[DTLS_HEADER_SIZE:]))