"""Address stacks and geolocation records for inbound and outbound lookups."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class IPStacks:
    ipv4: list[str] = field(default_factory=list)
    ipv6: list[str] = field(default_factory=list)

    def count(self) -> int:
        return len(self.ipv4) + len(self.ipv6)


def _lookup(data: Mapping, key: str) -> Any:
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


_GEO_FIELDS = (
    ("org", "organization", str),
    ("lon", "longitude", float),
    ("lat", "latitude", float),
    ("time_zone", "timezone", str),
    ("isp", "isp", str),
    ("asn", "asn", int),
    ("asn_org", "asn_organization", str),
    ("country", "country", str),
    ("ip", "ip", str),
    ("continent_code", "continent_code", str),
    ("country_code", "country_code", str),
    ("stack_type", "stackType", str),
)


@dataclass
class GeoInfo:
    org: str = ""
    lon: float = 0.0
    lat: float = 0.0
    time_zone: str = ""
    isp: str = ""
    asn: int = 0
    asn_org: str = ""
    country: str = ""
    ip: str = ""
    continent_code: str = ""
    country_code: str = ""
    stack_type: str = ""

    def is_v6(self) -> bool:
        return ":" in self.ip

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, attr) for attr, key, _ in _GEO_FIELDS}

    @classmethod
    def from_dict(cls, data: Any) -> "GeoInfo":
        """Build from a JSON object; raise TypeError on mistyped values."""
        if not isinstance(data, Mapping):
            raise TypeError("geo info must be an object")
        values: dict[str, Any] = {}
        for attr, key, kind in _GEO_FIELDS:
            value = _lookup(data, key)
            if value is None:
                continue
            if isinstance(value, bool):
                raise TypeError(f"{key} has the wrong type")
            if kind is float and isinstance(value, (int, float)):
                values[attr] = float(value)
            elif kind is int and isinstance(value, int):
                values[attr] = value
            elif kind is str and isinstance(value, str):
                values[attr] = value
            else:
                raise TypeError(f"{key} has the wrong type")
        return cls(**values)


@dataclass
class MultiStacks:
    """Geolocation records for every address of one domain or proxy."""

    domain: str = ""
    main_stack: Optional[GeoInfo] = None
    ipv4_stack: list[GeoInfo] = field(default_factory=list)
    ipv6_stack: list[GeoInfo] = field(default_factory=list)

    def joined_ips(self) -> str:
        """All addresses, sorted and joined with commas."""
        return ",".join(sorted(g.ip for g in (*self.ipv4_stack, *self.ipv6_stack)))

    def first_v2(self, tag: str = "") -> Optional[GeoInfo]:
        """First record with an address, stacks ordered by ``tag`` ("4", "6", "46", "64")."""
        if self.count() == 0:
            return None
        tag = tag or "46"
        if len(tag) > 2 or (len(tag) == 2 and tag[0] == tag[1]) or any(c not in "46" for c in tag):
            return None
        ordered: list[GeoInfo] = []
        for c in tag:
            ordered.extend(self.ipv4_stack if c == "4" else self.ipv6_stack)
        return next((g for g in ordered if g.ip), None)

    def first(self, tag: str = "") -> Optional[GeoInfo]:
        """First record with an address; ``tag`` "v4" or "v6" restricts the stack."""
        if tag != "v6":
            found = next((g for g in self.ipv4_stack if g.ip), None)
            if found is not None:
                return found
        if tag != "v4":
            return next((g for g in self.ipv6_stack if g.ip), None)
        return None

    def by_asn(self, assigned_main: Optional[GeoInfo] = None) -> dict[int, list[GeoInfo]]:
        """Group the records by ASN; ``assigned_main`` stands in when there are none."""
        if assigned_main is not None and self.count() == 0:
            return {assigned_main.asn: [assigned_main]}
        result: dict[int, list[GeoInfo]] = {}
        for geo in (*self.ipv4_stack, *self.ipv6_stack):
            result.setdefault(geo.asn, []).append(geo)
        return result

    def count(self) -> int:
        return sum(self.v46_stack_count())

    def v46_stack_count(self) -> tuple[int, int]:
        return len(self.ipv4_stack), len(self.ipv6_stack)

    def v46_stack_info(self) -> str:
        v4, v6 = self.v46_stack_count()
        if v4 and v6:
            return "4\u20e36\u20e3"
        if v6:
            return "6\u20e3"
        if v4:
            return "4\u20e3"
        return "N/A"

    def to_dict(self) -> dict[str, Any]:
        return {
            "Domain": self.domain,
            "MainStack": None if self.main_stack is None else self.main_stack.to_dict(),
            "IPv4Stack": [g.to_dict() for g in self.ipv4_stack],
            "IPv6Stack": [g.to_dict() for g in self.ipv6_stack],
        }