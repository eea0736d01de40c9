from datetime import datetime, timedelta
from ipaddress import IPv4Address

from anylink.ip_pool import IpMap, IpMapStore, IpPool


class FakeClock:
    def __init__(self):
        self.now = datetime(2023, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def make_pool(**kwargs):
    return IpPool("192.168.3.0/24", "192.168.3.1", "192.168.3.199", **kwargs)


def test_ip_pool():
    pool = make_pool()
    for i in range(1, 101):
        pool.acquire("user", f"mac-{i}", True)
    ip = pool.acquire("user", "mac-new", True)
    assert ip == IPv4Address("192.168.3.101")
    for i in range(102, 200):
        ip = pool.acquire("user", f"mac-{i}", True)
    assert ip == IPv4Address("192.168.3.199")
    assert pool.acquire("user", "mac-nil", True) is None

    pool.release(IPv4Address("192.168.3.88"), "mac-88")
    pool.release(IPv4Address("192.168.3.188"), "mac-188")
    ip = pool.acquire("user", "mac-188", True)
    assert ip == IPv4Address("192.168.3.188")


def test_released_address_is_active_no_more():
    pool = make_pool()
    ip = pool.acquire("user", "mac-a", True)
    assert str(ip) in pool.active
    pool.release(ip, "mac-a")
    assert str(ip) not in pool.active


def test_lease_blocks_reuse_until_expired():
    clock = FakeClock()
    pool = make_pool(lease_seconds=60, clock=clock)
    first = pool.acquire("alice", "mac-a", False)
    pool.release(first, "mac-a")

    clock.advance(10)
    second = pool.acquire("bob", "mac-b", False)
    assert second != first

    clock.advance(120)
    third = pool.acquire("carol", "mac-c", False)
    assert third == first
    assert pool.store.by_ip(first).mac_addr == "mac-c"


def test_user_gets_old_address_after_lease():
    clock = FakeClock()
    pool = make_pool(lease_seconds=60, clock=clock)
    first = pool.acquire("alice", "mac-a", False)
    pool.acquire("bob", "mac-b", False)
    pool.release(first, "mac-a")
    clock.advance(120)
    assert pool.acquire("alice", "mac-z", False) == first


def test_reserved_address_is_skipped():
    store = IpMapStore()
    store.save(IpMap(ip_addr="192.168.3.1", keep=True, last_login=datetime(2000, 1, 1)))
    pool = make_pool(store=store)
    assert pool.acquire("user", "mac-a", True) == IPv4Address("192.168.3.2")


def test_record_outside_pool_is_dropped():
    store = IpMapStore()
    store.save(IpMap(ip_addr="10.0.0.5", mac_addr="mac-x", username="u", unique_mac=True))
    pool = make_pool(store=store)
    assert pool.acquire("u", "mac-x", True) == IPv4Address("192.168.3.1")
    assert store.by_ip("10.0.0.5") is None


def test_active_mac_gets_fresh_address():
    pool = make_pool()
    first = pool.acquire("u", "mac-x", True)
    second = pool.acquire("u", "mac-x", True)
    assert second != first
    assert {str(first), str(second)} <= pool.active


def test_small_pool_runs_out():
    pool = IpPool("10.1.0.0/24", "10.1.0.10", "10.1.0.11")
    got = [pool.acquire("u", f"mac-{i}", True) for i in range(3)]
    assert got[:2] == [IPv4Address("10.1.0.10"), IPv4Address("10.1.0.11")]
    assert got[2] is None


def test_contains():
    pool = make_pool()
    assert pool.contains("192.168.3.250")
    assert not pool.contains("192.168.4.1")
    assert not pool.contains("not an ip")


def test_store_leased():
    now = datetime(2023, 1, 1)
    store = IpMapStore()
    store.save(IpMap(ip_addr="10.0.0.1", keep=True, last_login=now - timedelta(days=9)))
    store.save(IpMap(ip_addr="10.0.0.2", unique_mac=True, last_login=now - timedelta(seconds=5)))
    store.save(IpMap(ip_addr="10.0.0.3", unique_mac=True, last_login=now - timedelta(days=9)))
    store.save(IpMap(ip_addr="10.0.0.4", last_login=now))
    assert store.leased(60, now) == {"10.0.0.1", "10.0.0.2"}


def test_store_find_user_and_limit():
    store = IpMapStore()
    for i in range(5):
        store.save(IpMap(ip_addr=f"10.0.0.{i}", username="u"))
    store.save(IpMap(ip_addr="10.0.0.9", username="u", unique_mac=True))
    found = store.find_user("u", False, 3)
    assert [r.ip_addr for r in found] == ["10.0.0.0", "10.0.0.1", "10.0.0.2"]
    assert [r.ip_addr for r in store.find_user("u", True)] == ["10.0.0.9"]


def test_store_by_mac_and_remove():
    store = IpMapStore()
    record = IpMap(ip_addr="10.0.0.7", mac_addr="mac-q")
    store.save(record)
    assert store.by_mac("mac-q") is record
    store.remove(record)
    assert store.by_mac("mac-q") is None
    assert len(store) == 0