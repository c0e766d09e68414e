"""Name resolution with optional custom servers and a short-lived cache."""

from __future__ import annotations

import socket
from typing import Optional, Sequence

import dns.exception as _dns_exception
import dns.resolver as _dns_resolver

from miaospeed import logger
from miaospeed.cache import ObliviousMap
from miaospeed.geoip import IPStacks

DNS_CACHE: ObliviousMap[IPStacks] = ObliviousMap("DnsCache/", 60.0, True)

_QUERY_TIMEOUT = 3.0


def _split_server(server: str) -> tuple[str, int]:
    if server.startswith("["):
        host, _, rest = server[1:].partition("]")
        port = rest[1:] if rest.startswith(":") else ""
    elif server.count(":") == 1:
        host, _, port = server.partition(":")
    else:
        host, port = server, ""
    return host, int(port) if port else 53


def _system_lookup(addr: str) -> list[str]:
    try:
        infos = socket.getaddrinfo(addr, None)
    except (OSError, UnicodeError):
        return []
    return list(dict.fromkeys(info[4][0] for info in infos))


def resolve_addresses(addr: str, query_servers: Optional[Sequence[str]] = None) -> list[str]:
    """Resolve ``addr`` to unique addresses; servers look like "8.8.8.8:53"."""
    if not query_servers:
        return _system_lookup(addr)

    found: dict[str, None] = {}
    for server in query_servers:
        host, port = _split_server(server)
        resolver = _dns_resolver.Resolver(configure=False)
        resolver.nameservers = [host]
        resolver.port = port
        resolver.timeout = _QUERY_TIMEOUT
        resolver.lifetime = _QUERY_TIMEOUT
        for rdtype in ("A", "AAAA"):
            try:
                answer = resolver.resolve(addr, rdtype)
            except (_dns_exception.DNSException, OSError, ValueError):
                continue
            for record in answer:
                found[record.to_text()] = None
    return list(found)


def lookup_ipv46(addr: str, retry: int, query_servers: Optional[Sequence[str]] = None) -> IPStacks:
    """Resolve ``addr`` into IPv4 and IPv6 stacks, trying up to ``retry`` times."""
    servers = list(query_servers or [])
    cache_key = f"{addr}|[{' '.join(servers)}]"
    cached = DNS_CACHE.get(cache_key)
    if cached is not None:
        return cached

    addresses: list[str] = []
    for _ in range(retry):
        addresses = resolve_addresses(addr, servers)
        if addresses:
            break
    logger.log(f"DNS Lookup | dns={servers} result={addresses}")

    stacks = IPStacks()
    for ip in addresses:
        (stacks.ipv6 if ":" in ip else stacks.ipv4).append(ip)

    if stacks.count() > 0:
        DNS_CACHE.set(cache_key, stacks)
    else:
        logger.warn(f"DNS Resolver | fail to resolve domain={addr}")
    return stacks