from datetime import datetime, timedelta
from ipaddress import IPv4Address

import pytest

from anylink.ip_pool import IpPool
from anylink.limits import ClientLimiter
from anylink.session import LogoutCode, SessionRegistry, gen_token


def make_registry(max_client=100, max_user=3, start="192.168.3.1", end="192.168.3.199", **kw):
    logged = []
    pool = IpPool("192.168.3.0/24", start, end)
    limiter = ClientLimiter(max_client, max_user)
    registry = SessionRegistry(pool, limiter, on_logout=logged.append, rate_ticker=False, **kw)
    return registry, logged


def connect(registry, username="user", mac="02:00:00:00:00:01", bandwidth=1000):
    sess = registry.new_session("")
    sess.username = username
    sess.group = "group1"
    sess.mac_addr = mac
    return sess, sess.new_conn("group1", bandwidth)


def test_new_session_registers():
    registry, _ = make_registry()
    sess = registry.new_session("")
    assert sess.token in registry
    assert registry.token_to_session(sess.token) is sess


def test_new_session_keeps_given_token():
    registry, _ = make_registry()
    sess = registry.new_session("token")
    assert sess.token == "token"
    assert registry.token_to_session("token") is sess


def test_gen_token_is_random_hex():
    first, second = gen_token(), gen_token()
    assert len(first) == 64
    int(first, 16)
    assert first != second


def test_conn_session_rate_limit():
    registry, _ = make_registry()
    _, conn = connect(registry)
    conn.rate_limit(100, True)
    assert conn.bandwidth_up == 100
    conn.rate_limit(200, False)
    assert conn.bandwidth_down == 200
    conn.close()
    assert conn.closed.is_set()


def test_rate_limit_over_burst_raises():
    registry, _ = make_registry()
    _, conn = connect(registry, bandwidth=1000)
    with pytest.raises(ValueError):
        conn.rate_limit(2000, False)


def test_new_conn_assigns_first_address():
    registry, _ = make_registry()
    sess, conn = connect(registry)
    assert conn.ip_addr == IPv4Address("192.168.3.1")
    assert sess.is_active
    assert sess.c_sess is conn
    assert registry.limiter.count("user") == 1


def test_close_releases_resources_once():
    registry, logged = make_registry()
    sess, conn = connect(registry)
    conn.logout_code = LogoutCode.CLIENT
    conn.close()
    conn.close()
    assert not sess.is_active
    assert sess.c_sess is None
    assert registry.pool.active == frozenset()
    assert registry.limiter.count("user") == 0
    assert len(logged) == 1
    assert logged[0]["code"] == LogoutCode.CLIENT
    assert logged[0]["ip_addr"] == "192.168.3.1"


def test_user_client_limit():
    registry, _ = make_registry(max_user=1)
    _, first = connect(registry)
    _, second = connect(registry, mac="02:00:00:00:00:02")
    assert first is not None
    assert second is None
    assert registry.limiter.count("user") == 1


def test_exhausted_pool_gives_slot_back():
    registry, _ = make_registry(start="192.168.3.1", end="192.168.3.1")
    _, first = connect(registry, username="alice")
    _, second = connect(registry, username="bob", mac="02:00:00:00:00:02")
    assert first is not None
    assert second is None
    assert registry.limiter.count("bob") == 0


def test_new_conn_replaces_active_connection():
    registry, _ = make_registry()
    sess, first = connect(registry)
    second = sess.new_conn("group1", 0)
    assert first.closed.is_set()
    assert sess.c_sess is second
    assert second.limit is None


def test_dtls_session_lifecycle():
    registry, _ = make_registry()
    _, conn = connect(registry)
    assert conn.get_dtls_session() is None
    dtls = conn.new_dtls_conn()
    assert dtls.active
    assert conn.get_dtls_session() is dtls
    assert conn.new_dtls_conn() is None
    dtls.close()
    assert dtls.closed.is_set()
    assert conn.get_dtls_session() is None
    again = conn.new_dtls_conn()
    assert again is not dtls
    conn.close()
    assert again.closed.is_set()


@pytest.mark.parametrize(
    "mtu, expected",
    [("1399", 1399), ("abc", 1460), ("50", 1460), ("2000", 1460), ("", 1460)],
)
def test_set_mtu(mtu, expected):
    registry, _ = make_registry()
    _, conn = connect(registry)
    conn.set_mtu(mtu)
    assert conn.mtu == expected


def test_set_mtu_configured_maximum():
    registry, _ = make_registry(mtu=1300)
    _, conn = connect(registry)
    conn.set_mtu("1399")
    assert conn.mtu == 1300
    conn.set_mtu("1200")
    assert conn.mtu == 1200


def test_rate_period_moves_counters():
    registry, _ = make_registry()
    _, conn = connect(registry)
    conn.rate_limit(1000, True)
    conn.rate_limit(500, False)
    assert conn.rate_period() is True
    assert conn.bandwidth_up == 0
    assert conn.bandwidth_up_period == 1000 // 10
    assert conn.bandwidth_up_all == 1000
    assert conn.bandwidth_down_all == 500
    conn.close()
    assert conn.rate_period() is False


def test_set_if_name():
    registry, _ = make_registry()
    _, conn = connect(registry)
    conn.set_if_name("tun0")
    assert conn.if_name == "tun0"


def test_stoken_lookup():
    registry, _ = make_registry()
    sess = registry.new_session("")
    assert registry.stoken_to_session(f" {sess.sid}@{sess.token} ") is sess
    with pytest.raises(ValueError):
        registry.stoken_to_session(sess.token)


def test_dtls_lookups():
    registry, _ = make_registry()
    sess, conn = connect(registry)
    conn.master_secret = "secret"
    assert registry.dtls_to_session(sess.dtls_sid) is sess
    assert registry.dtls_to_conn_session(sess.dtls_sid) is conn
    assert registry.dtls_master_secret(sess.dtls_sid) == "secret"
    assert registry.dtls_to_conn_session("unknown") is None
    assert registry.dtls_master_secret("unknown") == ""


def test_close_session_with_connection():
    registry, logged = make_registry()
    sess, conn = connect(registry)
    registry.close_session(sess.token, LogoutCode.TIMEOUT)
    assert sess.token not in registry
    assert registry.dtls_to_session(sess.dtls_sid) is None
    assert conn.closed.is_set()
    assert logged[-1]["code"] == LogoutCode.TIMEOUT


def test_close_session_without_connection_logs_banner():
    registry, logged = make_registry()
    sess = registry.new_session("")
    registry.close_session(sess.token, LogoutCode.TIMEOUT)
    assert len(registry) == 0
    assert logged[0]["code"] == LogoutCode.BANNER
    assert logged[0]["ip_addr"] == ""


def test_delete_by_stoken():
    registry, logged = make_registry()
    sess, conn = connect(registry)
    registry.delete_by_stoken(f"{sess.sid}@{sess.token}")
    assert sess.token not in registry
    assert conn.closed.is_set()
    assert logged[-1]["code"] == LogoutCode.BANNER


def test_close_conn_session_keeps_session():
    registry, _ = make_registry()
    sess, conn = connect(registry)
    registry.close_conn_session(sess.token)
    assert conn.closed.is_set()
    assert registry.token_to_session(sess.token) is sess
    assert not sess.is_active


def test_expired_tokens():
    start = datetime(2024, 1, 1, 12, 0, 0)
    registry, _ = make_registry(clock=lambda: start)
    idle = registry.new_session("")
    active, _ = connect(registry)
    later = start + timedelta(seconds=120)
    assert registry.expired_tokens(60, later) == [idle.token]
    assert active.token not in registry.expired_tokens(60, later)
    assert registry.expired_tokens(timedelta(seconds=300), later) == []


def test_close_users():
    registry, logged = make_registry()
    alice, alice_conn = connect(registry, username="alice")
    bob, bob_conn = connect(registry, username="bob", mac="02:00:00:00:00:02")
    closed = registry.close_users(["alice"])
    assert closed == [alice.token]
    assert alice_conn.closed.is_set()
    assert not bob_conn.closed.is_set()
    assert logged[-1]["code"] == LogoutCode.EXPIRE