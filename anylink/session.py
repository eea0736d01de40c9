"""Client sessions, their live tunnel connections and the registry that tracks them."""

from __future__ import annotations

import logging
import queue
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum
from ipaddress import IPv4Address
from typing import Any, Callable, Iterator

from .ip_pool import IpPool
from .limits import ClientLimiter, RateLimiter

log = logging.getLogger(__name__)

BANDWIDTH_PERIOD_SEC = 10
DEFAULT_MAX_MTU = 1460
MIN_MTU = 100
QUEUE_SIZE = 64

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF


class LogoutCode(IntEnum):
    """Why a user's connection ended."""

    BANNER = 0
    CLIENT = 1
    TIMEOUT = 2
    ADMIN = 3
    EXPIRE = 4


def gen_token() -> str:
    """Return a random 64-character hex token."""
    return secrets.token_hex(32)


@dataclass(eq=False)
class DtlsSession:
    """The UDP side channel of a tunnel connection."""

    ip_addr: IPv4Address | None = None
    active: bool = False
    closed: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _done: bool = field(default=False, init=False, repr=False)

    def close(self) -> None:
        """Deactivate the channel; later calls do nothing."""
        with self._lock:
            if self._done:
                return
            self._done = True
            log.info("closeOnce dtls: %s", self.ip_addr)
            self.active = False
            self.closed.set()


@dataclass(eq=False)
class ConnSession:
    """A live tunnel connection belonging to a session."""

    sess: Session
    ip_addr: IPv4Address
    username: str = ""
    mac_hw: bytes = b""
    master_secret: str = ""
    local_ip: IPv4Address | None = None
    remote_addr: str = ""
    mtu: int = 0
    if_name: str = ""
    client: str = ""
    user_agent: str = ""
    logout_code: LogoutCode = LogoutCode.BANNER
    cstp_dpd: int = 0
    group: Any = None
    limit: RateLimiter | None = None
    bandwidth_up: int = 0
    bandwidth_down: int = 0
    bandwidth_up_period: int = 0
    bandwidth_down_period: int = 0
    bandwidth_up_all: int = 0
    bandwidth_down_all: int = 0
    closed: threading.Event = field(default_factory=threading.Event, repr=False)
    payload_in: queue.Queue = field(default_factory=lambda: queue.Queue(QUEUE_SIZE), repr=False)
    payload_out_cstp: queue.Queue = field(
        default_factory=lambda: queue.Queue(QUEUE_SIZE), repr=False
    )
    payload_out_dtls: queue.Queue = field(
        default_factory=lambda: queue.Queue(QUEUE_SIZE), repr=False
    )
    _dtls: DtlsSession = field(default_factory=DtlsSession, init=False, repr=False)
    _dtls_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _counter_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )
    _close_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _done: bool = field(default=False, init=False, repr=False)

    def close(self) -> None:
        """End the connection, give back its address and slot, and record the logout."""
        with self._close_lock:
            if self._done:
                return
            self._done = True
        log.info("closeOnce: %s", self.ip_addr)
        sess = self.sess
        registry = sess.registry
        with sess.lock:
            self.closed.set()
            sess.is_active = False
            sess.last_login = registry.clock() if registry is not None else datetime.now()
            if sess.c_sess is self:
                sess.c_sess = None

            dtls = self.get_dtls_session()
            if dtls is not None:
                dtls.close()

            if registry is not None:
                registry.pool.release(self.ip_addr, sess.mac_addr)
                registry.limiter.release(self.username)
                registry._record_logout(sess, str(self.ip_addr), self.remote_addr,
                                        self.user_agent, self.logout_code)

    def new_dtls_conn(self) -> DtlsSession | None:
        """Open a DTLS channel; None while another one is still active."""
        with self._dtls_lock:
            if self._dtls.active:
                return None
            dtls = DtlsSession(ip_addr=self.ip_addr, active=True)
            self._dtls = dtls
            return dtls

    def get_dtls_session(self) -> DtlsSession | None:
        """The active DTLS channel, if any."""
        with self._dtls_lock:
            dtls = self._dtls
        return dtls if dtls.active else None

    def rate_period(self) -> bool:
        """Close one bandwidth period: per-second rates and running totals.

        Returns False once the connection is closed.
        """
        if self.closed.is_set():
            return False
        with self._counter_lock:
            up, down = self.bandwidth_up, self.bandwidth_down
            self.bandwidth_up = 0
            self.bandwidth_down = 0
            self.bandwidth_up_period = up // BANDWIDTH_PERIOD_SEC
            self.bandwidth_down_period = down // BANDWIDTH_PERIOD_SEC
            self.bandwidth_up_all = (self.bandwidth_up_all + up) & _U64
            self.bandwidth_down_all = (self.bandwidth_down_all + down) & _U64
        return True

    def _rate_loop(self) -> None:
        while not self.closed.wait(BANDWIDTH_PERIOD_SEC):
            self.rate_period()

    def set_mtu(self, mtu) -> None:
        """Take the client's MTU when it is a number from 100 up to below the maximum."""
        registry = self.sess.registry
        configured = registry.mtu if registry is not None else 0
        max_mtu = configured if configured > 0 else DEFAULT_MAX_MTU
        self.mtu = max_mtu
        try:
            value = int(str(mtu).strip())
        except ValueError:
            return
        if value < MIN_MTU:
            return
        if value < max_mtu:
            self.mtu = value

    def set_if_name(self, name: str) -> None:
        with self.sess.lock:
            self.if_name = name

    def rate_limit(self, size: int, is_up: bool) -> None:
        """Count traffic; downstream traffic is throttled when a limit is set."""
        with self._counter_lock:
            if is_up:
                self.bandwidth_up = (self.bandwidth_up + size) & _U32
                return
            self.bandwidth_down = (self.bandwidth_down + size) & _U32
        if self.limit is not None:
            self.limit.wait(size)


@dataclass(eq=False)
class Session:
    """An authenticated client, possibly holding a live connection."""

    token: str
    sid: str = ""
    dtls_sid: str = ""
    mac_addr: str = ""
    unique_id_global: str = ""
    mac_hw: bytes = b""
    unique_mac: bool = False
    username: str = ""
    group: str = ""
    auth_step: str = ""
    auth_pass: str = ""
    remote_addr: str = ""
    user_agent: str = ""
    device_type: str = ""
    platform_version: str = ""
    last_login: datetime = field(default_factory=datetime.now)
    is_active: bool = False
    c_sess: ConnSession | None = None
    registry: SessionRegistry | None = field(default=None, repr=False)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def new_conn(self, group: Any = None, bandwidth: int = 0) -> ConnSession | None:
        """Open a tunnel connection, replacing an active one.

        Returns None when a client limit is reached or no address is free.
        """
        registry = self.registry
        if registry is None:
            raise RuntimeError("session is not registered")
        with self.lock:
            active = self.is_active
            old = self.c_sess
            mac_addr = self.mac_addr
            mac_hw = self.mac_hw
            username = self.username
            unique_mac = self.unique_mac
        if active and old is not None:
            old.close()

        if not registry.limiter.acquire(username):
            return None
        ip = registry.pool.acquire(username, mac_addr, unique_mac)
        if ip is None:
            registry.limiter.release(username)
            return None

        conn = ConnSession(sess=self, ip_addr=ip, username=username, mac_hw=mac_hw, group=group)
        if bandwidth > 0:
            conn.limit = RateLimiter(bandwidth, bandwidth)
        if registry.rate_ticker:
            threading.Thread(target=conn._rate_loop, daemon=True).start()

        with self.lock:
            self.mac_addr = mac_addr
            self.is_active = True
            self.c_sess = conn
        return conn


class SessionRegistry:
    """All known sessions, by token and by DTLS session id."""

    def __init__(
        self,
        pool: IpPool,
        limiter: ClientLimiter,
        *,
        mtu: int = 0,
        on_logout: Callable[[dict], None] | None = None,
        rate_ticker: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.pool = pool
        self.limiter = limiter
        self.mtu = mtu
        self.on_logout = on_logout
        self.rate_ticker = rate_ticker
        self.clock = clock
        self._sessions: dict[str, Session] = {}
        self._dtls_ids: dict[str, str] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._sessions

    def __iter__(self) -> Iterator[Session]:
        with self._lock:
            return iter(list(self._sessions.values()))

    def _record_logout(self, sess: Session, ip_addr: str, remote_addr: str,
                       user_agent: str, code: LogoutCode) -> None:
        if self.on_logout is None:
            return
        self.on_logout({
            "username": sess.username,
            "group": sess.group,
            "ip_addr": ip_addr,
            "remote_addr": remote_addr,
            "device_type": sess.device_type,
            "platform_version": sess.platform_version,
            "user_agent": user_agent,
            "code": LogoutCode(code),
        })

    def new_session(self, token: str = "") -> Session:
        """Create and register a session; a random token is made when none is given."""
        token = token or gen_token()
        sess = Session(
            token=token,
            sid=str(int(time.time())),
            dtls_sid=secrets.token_hex(32),
            last_login=self.clock(),
            registry=self,
        )
        with self._lock:
            self._sessions[token] = sess
            self._dtls_ids[sess.dtls_sid] = token
        return sess

    @staticmethod
    def _token_of(stoken: str) -> str:
        parts = stoken.strip().split("@")
        if len(parts) < 2:
            raise ValueError(f"malformed session token: {stoken!r}")
        return parts[1]

    def token_to_session(self, token: str) -> Session | None:
        with self._lock:
            return self._sessions.get(token)

    def stoken_to_session(self, stoken: str) -> Session | None:
        """Look up a session by a ``sid@token`` string."""
        return self.token_to_session(self._token_of(stoken))

    def dtls_to_session(self, dtls_id: str) -> Session | None:
        with self._lock:
            token = self._dtls_ids.get(dtls_id)
            return self._sessions.get(token) if token is not None else None

    def dtls_to_conn_session(self, dtls_id: str) -> ConnSession | None:
        sess = self.dtls_to_session(dtls_id)
        if sess is None:
            return None
        with sess.lock:
            return sess.c_sess

    def dtls_master_secret(self, dtls_id: str) -> str:
        """The DTLS master secret of the session's connection, or an empty string."""
        sess = self.dtls_to_session(dtls_id)
        if sess is None:
            return ""
        with sess.lock:
            return sess.c_sess.master_secret if sess.c_sess is not None else ""

    def close_session(self, token: str, code: LogoutCode | None = None) -> None:
        """Forget a session and close its connection."""
        with self._lock:
            sess = self._sessions.pop(token, None)
            if sess is None:
                return
            self._dtls_ids.pop(sess.dtls_sid, None)
        conn = sess.c_sess
        if conn is not None:
            if code is not None:
                conn.logout_code = LogoutCode(code)
            conn.close()
            return
        self._record_logout(sess, "", sess.remote_addr, sess.user_agent, LogoutCode.BANNER)

    def close_conn_session(self, token: str) -> None:
        """Close a session's connection but keep the session."""
        sess = self.token_to_session(token)
        if sess is not None and sess.c_sess is not None:
            sess.c_sess.close()

    def delete_by_stoken(self, stoken: str) -> None:
        self.close_session(self._token_of(stoken), LogoutCode.BANNER)

    def expired_tokens(self, timeout, now: datetime | None = None) -> list[str]:
        """Tokens of inactive sessions idle for longer than ``timeout`` (seconds or timedelta)."""
        if not isinstance(timeout, timedelta):
            timeout = timedelta(seconds=timeout)
        now = now or self.clock()
        expired = []
        for sess in self:
            with sess.lock:
                if not sess.is_active and now - sess.last_login > timeout:
                    expired.append(sess.token)
        return expired

    def close_users(self, usernames, code: LogoutCode = LogoutCode.EXPIRE) -> list[str]:
        """Close every active session of the given users; returns their tokens."""
        names = set(usernames)
        tokens = []
        for sess in self:
            with sess.lock:
                if sess.is_active and sess.username in names:
                    tokens.append(sess.token)
        for token in tokens:
            self.close_session(token, code)
        return tokens