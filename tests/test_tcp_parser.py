import pytest

from anylink.tcp_parser import (
    AccessProto,
    http_new_parser,
    http_parser,
    on_tcp,
    sni_parser,
    sni_regex_parser,
    valid_domain_char,
)

HOST = "example.com"


def _client_hello(host: str, trailing_extension: bool = True) -> bytes:
    name = host.encode("latin-1")
    server_name = b"\x00" + len(name).to_bytes(2, "big") + name
    name_list = len(server_name).to_bytes(2, "big") + server_name
    extensions = b"\x00\x00" + len(name_list).to_bytes(2, "big") + name_list
    if trailing_extension:
        extensions += b"\x00\x17\x00\x00"
    body = (
        b"\x03\x03"
        + b"\x11" * 32
        + b"\x00"
        + b"\x00\x02\x13\x01"
        + b"\x01\x00"
        + len(extensions).to_bytes(2, "big")
        + extensions
    )
    handshake = b"\x01" + len(body).to_bytes(3, "big") + body
    return b"\x16\x03\x01" + len(handshake).to_bytes(2, "big") + handshake


def _tcp_segment(data: bytes) -> bytes:
    header = bytearray(20)
    header[12] = 0x50
    header[13] = 24
    return bytes(header) + data


def test_sni_parser_finds_hostname():
    assert sni_parser(_client_hello(HOST)) == (AccessProto.HTTPS, HOST)


def test_sni_parser_name_at_end_of_record_is_not_read():
    assert sni_parser(_client_hello(HOST, trailing_extension=False)) == (AccessProto.HTTPS, "")


def test_sni_parser_rejects_non_handshake():
    assert sni_parser(b"\x17\x03\x03\x00\x10" + bytes(16)) == (AccessProto.TCP, "")
    assert sni_parser(b"\x16\x03") == (AccessProto.TCP, "")
    assert sni_parser(b"") == (AccessProto.TCP, "")


def test_sni_parser_server_hello_is_not_https():
    hello = bytearray(_client_hello(HOST))
    hello[5] = 0x02
    assert sni_parser(bytes(hello)) == (AccessProto.TCP, "")


def test_sni_parser_truncated_hello_is_https_without_host():
    hello = _client_hello(HOST)
    assert sni_parser(hello[:30]) == (AccessProto.HTTPS, "")


def test_sni_parser_drops_invalid_hostname():
    assert sni_parser(_client_hello("bad_host.com")) == (AccessProto.HTTPS, "")


def test_sni_regex_parser():
    assert sni_regex_parser(_client_hello(HOST)) == (AccessProto.HTTPS, HOST)
    assert sni_regex_parser(b"\x17\x03") == (AccessProto.TCP, "")


def test_sni_parsers_agree():
    for host in ("example.com", "www.example.org", "a-b.example.net"):
        hello = _client_hello(host)
        assert sni_parser(hello) == sni_regex_parser(hello)


def test_http_parser_host_header():
    request = b"GET /index.html HTTP/1.1\r\nHost: example.com\r\nAccept: */*\r\n\r\n"
    assert http_parser(request) == (AccessProto.HTTP, HOST)


def test_http_parser_absolute_uri_wins():
    request = b"GET http://example.org/x HTTP/1.1\r\nHost: example.com\r\n\r\n"
    assert http_parser(request) == (AccessProto.HTTP, "example.org")


def test_http_parser_connect_authority():
    request = b"CONNECT example.com:443 HTTP/1.1\r\n\r\n"
    assert http_parser(request) == (AccessProto.HTTP, "example.com:443")


@pytest.mark.parametrize(
    "data",
    [
        b"GET / HTTP/1.1\r\nHost: example.com\r\n",
        b"hello world\r\n\r\n",
        b"GET / FTP/1.0\r\n\r\n",
        b"GET / HTTP/1.1\r\nno colon here\r\n\r\n",
        b"",
    ],
)
def test_http_parser_rejects(data):
    assert http_parser(data) == (AccessProto.TCP, "")


def test_http_new_parser_host_header():
    request = b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n"
    assert http_new_parser(request) == (AccessProto.HTTP, HOST)


def test_http_new_parser_absolute_uri():
    request = b"GET http://example.org/index.html HTTP/1.1\r\n"
    assert http_new_parser(request) == (AccessProto.HTTP, "example.org")


@pytest.mark.parametrize(
    "data",
    [
        b"FOO / HTTP/1.1\r\nHost: example.com\r\n",
        b"GET / HTTP/1.1",
        b"GET / HTTP/1.1\r\nAccept: */*\r\n",
    ],
)
def test_http_new_parser_rejects(data):
    assert http_new_parser(data) == (AccessProto.TCP, "")


def test_on_tcp_https():
    assert on_tcp(_tcp_segment(_client_hello(HOST))) == (AccessProto.HTTPS, HOST)


def test_on_tcp_http():
    request = b"POST /api HTTP/1.1\r\nHost: example.com\r\n\r\n"
    assert on_tcp(_tcp_segment(request)) == (AccessProto.HTTP, HOST)


def test_on_tcp_plain_data():
    assert on_tcp(_tcp_segment(b"\x00\x01binary")) == (AccessProto.TCP, "")


def test_on_tcp_header_longer_than_segment():
    segment = bytearray(20)
    segment[12] = 0xF0
    assert on_tcp(bytes(segment)) == (AccessProto.TCP, "")


def test_valid_domain_char():
    assert valid_domain_char("Example-1.com")
    assert valid_domain_char("")
    assert not valid_domain_char("exa mple.com")
    assert not valid_domain_char("under_score.com")
    assert not valid_domain_char("caf\u00e9.com")


def test_parsers_report_protocol_numbers():
    plain_proto, _ = on_tcp(_tcp_segment(b"\x00\x01binary"))
    https_proto, _ = sni_parser(_client_hello(HOST))
    http_proto, _ = http_parser(b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n")
    assert plain_proto.value == 2
    assert https_proto.value == 3
    assert http_proto.value == 4