"""Hostname resolution for the ping target.

The session never resolves anything itself: it is handed one immutable
``TargetEndpoint`` before the first probe and shares it read-only with every
attempt.
"""

import socket
from dataclasses import dataclass

from tcpping.exceptions import ResolutionError


@dataclass(frozen=True)
class TargetEndpoint:
    """Resolved address/port pair plus the name the operator typed."""
    address: str
    port: int
    family: int = socket.AF_INET
    hostname: str = ""

    @property
    def sockaddr(self) -> tuple:
        if self.family == socket.AF_INET6:
            return (self.address, self.port, 0, 0)
        return (self.address, self.port)

    def __str__(self) -> str:
        if self.family == socket.AF_INET6:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"


def resolve(hostname: str, port: int) -> TargetEndpoint:
    """Resolve hostname to a single TCP endpoint.

    The first IPv4 result wins; an IPv6 result is used only when the name has
    no IPv4 address at all.

    Raises:
        ResolutionError: unknown host or no usable stream address.
    """
    if not hostname:
        raise ResolutionError(hostname, reason="empty hostname")
    try:
        infos = socket.getaddrinfo(hostname, port, socket.AF_UNSPEC, socket.SOCK_STREAM, socket.IPPROTO_TCP)
    except socket.gaierror as exc:
        raise ResolutionError(hostname, code=exc.errno or 0, reason=str(exc)) from exc
    except UnicodeError as exc:
        raise ResolutionError(hostname, reason=str(exc)) from exc

    candidates = [info for info in infos if info[0] in (socket.AF_INET, socket.AF_INET6)]
    if not candidates:
        raise ResolutionError(hostname, reason="no IPv4/IPv6 address")

    ipv4 = [info for info in candidates if info[0] == socket.AF_INET]
    family, _, _, _, sockaddr = (ipv4 or candidates)[0]
    return TargetEndpoint(address=sockaddr[0], port=port, family=family, hostname=hostname)
