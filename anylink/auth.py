"""Client login: the XML request, header checks, client MAC and the XML replies."""

from __future__ import annotations

import hashlib
import logging
import subprocess
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from string import Template

log = logging.getLogger(__name__)

AUTH_FAILED_MESSAGE = "用户名或密码错误"

_CLIENT_AGENTS = ("anyconnect", "openconnect", "anylink")

# Child elements of <auth>; each tag is also the ClientRequest field it fills.
_AUTH_TAGS = ("username", "password", "secondary_password")

_COMMON_HEADERS = {
    "Server": "AnyLink",
    "Content-Type": "text/html; charset=utf-8",
    "Cache-Control": "no-store,no-cache",
    "Pragma": "no-cache",
    "Transfer-Encoding": "chunked",
    "Connection": "keep-alive",
    "X-Frame-Options": "deny",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'none'",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Referrer-Policy": "no-referrer",
    "Clear-Site-Data": "cache,cookies,storage",
    "Cross-Origin-Embedder-Policy": "require-corp",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "X-XSS-Protection": "0",
    "X-Aggregate-Auth": "1",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}

_AUTH_REQUEST = Template("""<?xml version="1.0" encoding="UTF-8"?>
<config-auth client="vpn" type="auth-request" aggregate-auth-version="2">
    <opaque is-for="sg">
        <tunnel-group>$group</tunnel-group>
        <group-alias>$group</group-alias>
        <aggauth-handle>168179266</aggauth-handle>
        <config-hash>1595829378234</config-hash>
        <auth-method>multiple-cert</auth-method>
        <auth-method>single-sign-on-v2</auth-method>
    </opaque>
    <auth id="main">
        <title>Login</title>
        <message>请输入你的用户名和密码</message>
        <banner></banner>
        $error_block
        <form>
            <input type="text" name="username" label="Username:"></input>
            <input type="password" name="password" label="Password:"></input>
            <select name="group_list" label="GROUP:">
                $options
            </select>
        </form>
    </auth>
</config-auth>
""")

_AUTH_COMPLETE = Template("""<?xml version="1.0" encoding="UTF-8"?>
<config-auth client="vpn" type="complete" aggregate-auth-version="2">
    <session-id>$session_id</session-id>
    <session-token>$session_token</session-token>
    <auth id="success">
        <banner>$banner</banner>
        <message id="0" param1="" param2=""></message>
    </auth>
    <capabilities>
        <crypto-supported>ssl-dhe</crypto-supported>
    </capabilities>
    <config client="vpn" type="private">
        <vpn-base-config>
            <server-cert-hash>240B97A685B2BFA66AD699B90AAC49EA66495D69</server-cert-hash>
        </vpn-base-config>
        <opaque is-for="vpn-client"></opaque>
        <vpn-profile-manifest>
            <vpn rev="1.0">
                <file type="profile" service-type="user">
                    <uri>/profile.xml</uri>
                    <hash type="sha1">$profile_hash</hash>
                </file>
            </vpn>
        </vpn-profile-manifest>
    </config>
</config-auth>
""")

_POST_AUTH_XML = Template("""
<?xml version="1.0" encoding="UTF-8"?>
<config-auth client="vpn" type="complete" aggregate-auth-version="2">
    <config client="vpn" type="private">
        <opaque is-for="vpn-client">
            <custom-attr>
            $domains
            </custom-attr>
        </opaque>
    </config>
</config-auth>
""")


@dataclass
class ClientRequest:
    """The ``config-auth`` document a VPN client posts."""

    client: str = ""
    type: str = ""
    aggregate_auth_version: str = ""
    version: str = ""
    group_access: str = ""
    group_select: str = ""
    session_id: str = ""
    session_token: str = ""
    username: str = ""
    password: str = ""
    secondary_password: str = ""
    computer_name: str = ""
    device_type: str = ""
    platform_version: str = ""
    unique_id: str = ""
    unique_id_global: str = ""
    mac_address: str = ""


def _local(tag: str) -> str:
    return tag.rpartition("}")[2]


def _child(element: ET.Element | None, name: str) -> ET.Element | None:
    if element is None:
        return None
    found = None
    for child in element:
        if _local(child.tag) == name:
            found = child
    return found


def _text(element: ET.Element | None) -> str:
    if element is None:
        return ""
    parts = [element.text or ""]
    parts.extend(child.tail or "" for child in element)
    return "".join(parts)


def _attr(element: ET.Element | None, name: str) -> str:
    if element is None:
        return ""
    return element.get(name, "")


def parse_client_request(body) -> ClientRequest:
    """Parse a client's ``config-auth`` XML; raises ValueError when it is not one."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise ValueError(f"malformed client request: {exc}") from None
    if _local(root.tag) != "config-auth":
        raise ValueError(f"expected element <config-auth> but have <{_local(root.tag)}>")

    auth = _child(root, "auth")
    device = _child(root, "device-id")
    macs = _child(root, "mac-address-list")
    credentials = {tag: _text(_child(auth, tag)) for tag in _AUTH_TAGS}
    return ClientRequest(
        client=_attr(root, "client"),
        type=_attr(root, "type"),
        aggregate_auth_version=_attr(root, "aggregate-auth-version"),
        version=_text(_child(root, "version")),
        group_access=_text(_child(root, "group-access")),
        group_select=_text(_child(root, "group-select")),
        session_id=_text(_child(root, "session-id")),
        session_token=_text(_child(root, "session-token")),
        computer_name=_attr(device, "computer-name"),
        device_type=_attr(device, "device-type"),
        platform_version=_attr(device, "platform-version"),
        unique_id=_attr(device, "unique-id"),
        unique_id_global=_attr(device, "unique-id-global"),
        mac_address=_text(_child(macs, "mac-address")),
        **credentials,
    )


def is_vpn_client(user_agent: str, aggregate_auth: str, transcend_version: str) -> bool:
    """True when the request headers come from a supported VPN client."""
    agent = (user_agent or "").lower()
    return (
        any(name in agent for name in _CLIENT_AGENTS)
        and aggregate_auth == "1"
        and transcend_version == "1"
    )


def common_headers() -> dict[str, str]:
    """The headers sent with every authentication reply."""
    return dict(_COMMON_HEADERS)


def run_commands(commands) -> None:
    """Run shell commands in order, stopping at the first that fails.

    Raises subprocess.CalledProcessError carrying the command's output.
    """
    for command in commands:
        result = subprocess.run(
            ["sh", "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
        )
        if result.returncode != 0:
            output = result.stdout.decode(errors="replace")
            log.error("%s", output)
            raise subprocess.CalledProcessError(result.returncode, command, output=output)


def _parse_mac(text: str) -> bytes:
    if "." in text:
        groups = text.split(".")
        if any(len(g) != 4 for g in groups):
            raise ValueError(f"invalid MAC address: {text!r}")
        raw = "".join(groups)
    else:
        sep = "-" if "-" in text else ":"
        groups = text.split(sep)
        if any(len(g) != 2 for g in groups):
            raise ValueError(f"invalid MAC address: {text!r}")
        raw = "".join(groups)
    try:
        value = bytes.fromhex(raw)
    except ValueError:
        raise ValueError(f"invalid MAC address: {text!r}") from None
    if len(value) not in (6, 8, 20):
        raise ValueError(f"invalid MAC address: {text!r}")
    return value


def client_mac(mac_addr: str, unique_id_global: str, token: str) -> tuple[str, bytes, bool]:
    """Work out the client's hardware address.

    Returns ``(mac_text, mac_bytes, unique_mac)``. A MAC that does not parse is
    replaced by a locally administered one derived from the client's global id,
    or from the session token, in which case ``unique_mac`` is False.
    """
    mac_text = (mac_addr or "").lower()
    try:
        return mac_text, _parse_mac(mac_text), True
    except ValueError:
        pass
    unique = bool(unique_id_global)
    seed = unique_id_global if unique else token
    digest = hashlib.md5(seed.encode()).digest()
    hw = b"\x02" + digest[:5]
    return ":".join(f"{b:02x}" for b in hw), hw, unique


def _option(value: str, group: str) -> str:
    selected = ' selected="true"' if value == group else ""
    return f"\n                <option {selected}>{value}</option>\n                "


def render_auth_request(group: str, groups, error: str = "") -> str:
    """The login form sent to the client, with an optional error."""
    error_block = ""
    if error:
        error_block = (
            f'\n        <error id="88" param1="{error}" param2="">登陆失败:  %s</error>\n        '
        )
    options = "".join(_option(value, group) for value in groups)
    return _AUTH_REQUEST.substitute(group=group, error_block=error_block, options=options)


def render_auth_complete(session_id: str, session_token: str, banner: str,
                         profile_hash: str) -> str:
    """The reply to a successful login."""
    banner = banner.replace("\n", "&#x0A;")
    return _AUTH_COMPLETE.substitute(
        session_id=session_id,
        session_token=session_token,
        banner=banner,
        profile_hash=profile_hash,
    )


def render_post_auth_xml(exclude_domains: str, include_domains: str) -> str | None:
    """The split-DNS domain document, or None when neither list is set.

    Excluded domains take precedence over included ones.
    """
    if exclude_domains:
        domains = (
            "\n               <dynamic-split-exclude-domains><![CDATA["
            f"{exclude_domains},]]></dynamic-split-exclude-domains>\n            "
        )
    elif include_domains:
        domains = (
            "\n               <dynamic-split-include-domains><![CDATA["
            f"{include_domains}]]></dynamic-split-include-domains>\n            "
        )
    else:
        return None
    return _POST_AUTH_XML.substitute(domains=domains)