"""Lexical loopback/private-network classification of URL hostnames.

Classification never touches DNS: a hostname is judged only by its text.
"""

import ipaddress
import re
import socket

# Loopback spellings matched exactly (case-insensitive)
LOOPBACK_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "127.0.0.1",
    "::1",
    "0:0:0:0:0:0:0:1",
}

# Blocked hostnames (case-insensitive)
BLOCKED_HOSTNAMES = LOOPBACK_HOSTNAMES | {
    "metadata.google.internal",
    "metadata",
}

# Private/reserved IP ranges that should be blocked
BLOCKED_NETWORKS = [
    # Loopback
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("::1/128"),

    # Private networks (RFC 1918)
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),

    # Link-local, including cloud metadata at 169.254.169.254
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("fe80::/10"),

    # Unique-local IPv6 (RFC 4193)
    ipaddress.ip_network("fc00::/7"),

    # Carrier-grade NAT (RFC 6598)
    ipaddress.ip_network("100.64.0.0/10"),

    # Broadcast
    ipaddress.ip_network("255.255.255.255/32"),

    # Unspecified
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::/128"),
]

# Hostnames made only of digits, dots and hex markers may be legacy IPv4
# spellings such as "2130706433" or "0x7f.1"
_IPV4_SHORTHAND = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}$")


def normalize_hostname(hostname: str) -> str:
    """Lowercase a hostname and strip IPv6 brackets and a trailing dot."""
    host = hostname.strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host.rstrip(".")


def parse_ip_literal(hostname: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse a hostname as an IP literal, or return None for DNS names."""
    host = normalize_hostname(hostname)
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        if not _IPV4_SHORTHAND.match(host):
            return None
        try:
            ip = ipaddress.IPv4Address(socket.inet_aton(host))
        except OSError:
            return None

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def is_ip_blocked(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    """Check if an IP address is in a blocked range."""
    return any(ip in network for network in BLOCKED_NETWORKS)


def is_private_hostname(hostname: str) -> bool:
    """
    Check if a hostname is loopback or private.

    DNS names outside the blocked set are treated as public; what they
    would resolve to is not considered.
    """
    host = normalize_hostname(hostname)
    if not host:
        return False
    if host in BLOCKED_HOSTNAMES or host.endswith(".localhost"):
        return True

    ip = parse_ip_literal(host)
    if ip is None:
        return False
    return is_ip_blocked(ip)
