# anylink

Building blocks for an SSL VPN server that speaks the protocol used by
AnyConnect and OpenConnect clients: session bookkeeping, IPv4 address
leasing, connection and bandwidth limits, CSTP and DTLS framing, ARP
handling, host-name extraction for access auditing, and the XML documents
exchanged during login.

The package is a library. It has no command of its own.

## Modules

| Module                 | Contents                                                                 |
|------------------------|--------------------------------------------------------------------------|
| `anylink.utils`        | `ip2long`, `long2ip`, `human_byte`, `random_runes`, `rand_secret`, `password_hash`, `password_verify` |
| `anylink.maps`         | `BaseMap`, `RWLockMap`, `SyncMap`, `ConcurrentMap` and `new_map`         |
| `anylink.icmp`         | `build_echo_request`, `parse_echo_reply`, `ping` (raw socket)            |
| `anylink.arp`          | `Addr`, `AddrType`, `ArpTable`, `new_arp_request`, `new_arp_reply`, `parse_arp`, `parse_neigh_show`, `resolve` |
| `anylink.protocol`     | `LinkType`, `PayloadType` and the `Payload` record                       |
| `anylink.copy_struct`  | `copy_fields`: copy same-named, same-typed attributes between objects    |
| `anylink.limits`       | `ClientLimiter` (global and per-user counts), `RateLimiter` (token bucket) |
| `anylink.ip_pool`      | `IpMap`, the in-memory `IpMapStore` and `IpPool`                         |
| `anylink.session`      | `Session`, `ConnSession`, `DtlsSession`, `SessionRegistry`, `LogoutCode` |
| `anylink.online`       | `Online` and `online_sessions`, sorted by assigned address               |
| `anylink.framing`      | `encode_cstp`, `decode_cstp`, `encode_dtls`, `decode_dtls`, `FrameError` |
| `anylink.tcp_parser`   | `on_tcp`, `sni_parser`, `sni_regex_parser`, `http_parser`, `http_new_parser`, `valid_domain_char` |
| `anylink.auth`         | `ClientRequest`, `parse_client_request`, `is_vpn_client`, `common_headers`, `client_mac`, `run_commands` and the login XML renderers |

## Examples

Formatting traffic counters:

```python
from anylink.utils import human_byte

human_byte(999)                  # '999.00 B'
human_byte(10256)                # '10.02 KB'
human_byte(1024 * 1024 * 1024)   # '1.00 GB'
```

Hashing and checking a password with bcrypt:

```python
from anylink.utils import password_hash, password_verify

password = "password"
hashed = password_hash(password)
password_verify(password, hashed)   # True
```

Choosing a key/value store by name (`"cmap"`, `"rwmap"`, `"syncmap"`,
anything else gives a plain `BaseMap`):

```python
from anylink.maps import new_map

store = new_map("rwmap", 512)
store.set("one", 100)
store.get("one")         # 100
store.delete("one")
"one" in store           # False
```

Framing tunnel packets:

```python
from anylink.framing import decode_cstp, encode_cstp
from anylink.protocol import Payload, PayloadType

frame = encode_cstp(Payload(data=b"\x45\x00"))
decode_cstp(frame).data                                 # b'E\x00'
encode_cstp(Payload(ptype=PayloadType.KEEPALIVE))       # b'STF\x01\x00\x00\x07\x00'
```

Leasing addresses and tracking sessions:

```python
from anylink.ip_pool import IpPool
from anylink.limits import ClientLimiter
from anylink.online import online_sessions
from anylink.session import SessionRegistry

pool = IpPool("192.168.3.0/24", "192.168.3.1", "192.168.3.199")
registry = SessionRegistry(pool, ClientLimiter(100, 3), rate_ticker=False)

sess = registry.new_session()
sess.username = "user"
conn = sess.new_conn()          # None when a limit is reached or no address is free
conn.ip_addr                    # IPv4Address('192.168.3.1')
conn.rate_limit(100, True)
conn.bandwidth_up               # 100

[o.username for o in online_sessions(registry)]   # ['user']
registry.close_session(sess.token)
```

Checking a host name taken from a TLS ClientHello:

```python
from anylink.tcp_parser import valid_domain_char

valid_domain_char("vpn.example.com")   # True
valid_domain_char("bad host")          # False
```

Rendering the login form sent to a connecting client:

```python
from anylink.auth import render_auth_request

xml = render_auth_request("ops", ["ops", "dev"], "")
```

## What the package does not do

- It does not listen for connections: there is no HTTPS or DTLS server, no
  request routing and no admin interface. The pieces above are meant to be
  called from such a server.
- It does not create or drive TUN, TAP or macvtap interfaces, and sets up no
  NAT or forwarding rules. `run_commands` only runs the shell commands it is
  given.
- It keeps no persistent storage. `IpMapStore` holds assignment records in
  memory, and users, groups, policies and audit logs are not stored at all;
  `SessionRegistry` reports logouts through its `on_logout` callback.
- It does not check credentials; `parse_client_request` reads them and the
  caller decides.

`anylink.icmp.ping` and `anylink.arp.resolve` need a raw socket (usually
root) and, for `resolve`, the `ip` command.

## Running the tests

Install the `test` extra and run `pytest` from the project directory.