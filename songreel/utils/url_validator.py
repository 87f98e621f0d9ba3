"""Validation of provider-supplied asset URLs.

Songs and images arrive as URLs inside webhook bodies and poll responses. The
media assembler downloads them from inside our network, so every URL must:

- use https
- point at an allowlisted host (exact match or subdomain)
- not resolve to a private, loopback, link-local, multicast or reserved address

DNS failures reject the URL (fail closed).
"""

import ipaddress
import socket
from urllib.parse import urlparse

from songreel.config import get_allowed_asset_hosts

DEFAULT_ALLOWED_HOSTS: tuple[str, ...] = (
    "suno.ai",
    "suno.com",
    "kie.ai",
    "aiquickdraw.com",
    "s3.amazonaws.com",
    "nanobananastorage.blob.core.windows.net",
    "r2.cloudflarestorage.com",
    "r2.dev",
)


class URLValidator:
    """Allowlist-based URL validator.

    Args:
        allowed_hosts: Hosts accepted (subdomains included). Defaults to
            DEFAULT_ALLOWED_HOSTS plus WEBHOOK_ALLOWED_HOSTS.
        resolve_dns: Resolve hostnames and reject private addresses. Tests
            disable this to stay offline.
    """

    def __init__(self, allowed_hosts: list[str] | None = None, resolve_dns: bool = True):
        if allowed_hosts is None:
            allowed_hosts = [*DEFAULT_ALLOWED_HOSTS, *get_allowed_asset_hosts()]
        self.allowed_hosts = frozenset(host.lower().strip(".") for host in allowed_hosts)
        self.resolve_dns = resolve_dns

    def validate(self, url: str) -> None:
        """Raise ValueError describing why ``url`` is not acceptable."""
        if not url:
            raise ValueError("empty URL")

        parsed = urlparse(url)
        if parsed.scheme != "https":
            raise ValueError(f"URL scheme must be https, got {parsed.scheme or 'none'!r}")

        hostname = (parsed.hostname or "").lower()
        if not hostname:
            raise ValueError("URL has no host")

        if not self._host_allowed(hostname):
            raise ValueError(f"host not allowed: {hostname}")

        if _is_ip_literal(hostname):
            raise ValueError("IP address hosts are not allowed")

        if self.resolve_dns:
            self._check_resolved_addresses(hostname)

    def is_valid(self, url: str) -> bool:
        try:
            self.validate(url)
        except ValueError:
            return False
        return True

    def _host_allowed(self, hostname: str) -> bool:
        return any(
            hostname == allowed or hostname.endswith("." + allowed)
            for allowed in self.allowed_hosts
        )

    def _check_resolved_addresses(self, hostname: str) -> None:
        try:
            infos = socket.getaddrinfo(hostname, 443, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError) as e:
            raise ValueError(f"DNS lookup failed for {hostname}") from e

        for info in infos:
            address = ipaddress.ip_address(info[4][0])
            if (
                address.is_private
                or address.is_loopback
                or address.is_link_local
                or address.is_multicast
                or address.is_reserved
                or address.is_unspecified
            ):
                raise ValueError(f"{hostname} resolves to a non-public address")


def _is_ip_literal(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True
