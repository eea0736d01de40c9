"""Building blocks for an SSL VPN server: sessions, address leasing, limits, tunnel framing, ARP and login XML."""

__version__ = "0.1.0"