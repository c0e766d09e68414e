"""NAT mapping and filtering detection with STUN (RFC 5780)."""

from __future__ import annotations

import ipaddress
import os
import socket
import struct
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Optional

from miaospeed import logger, preconfigs
from miaospeed.models import Macro, MacroType, SlaveRequest, Vendor

MAGIC_COOKIE = 0x2112A442
HEADER_SIZE = 20
NAT_TIMEOUT = 3.0
_RECV_SIZE = 1024

BINDING_REQUEST = 0x0001
BINDING_SUCCESS = 0x0101

ATTR_MAPPED_ADDRESS = 0x0001
ATTR_CHANGE_REQUEST = 0x0003
ATTR_XOR_MAPPED_ADDRESS = 0x0020
ATTR_OTHER_ADDRESS = 0x802C

CHANGE_IP_AND_PORT = 0x06
CHANGE_PORT = 0x02

Address = tuple[str, int]


class NATMapType(IntEnum):
    FAILED = 0
    INDEPENDENT = 1
    ADDR_INDEPENDENT = 2
    ADDR_PORT_INDEPENDENT = 3
    NO_NAT = 4


class NATFilterType(IntEnum):
    FAILED = 0
    INDEPENDENT = 1
    ADDR_INDEPENDENT = 2
    ADDR_PORT_INDEPENDENT = 3


def _new_transaction_id() -> bytes:
    return os.urandom(12)


@dataclass
class StunMessage:
    """A STUN message: type, 12-byte transaction id and raw attributes."""

    msg_type: int
    transaction_id: bytes = field(default_factory=_new_transaction_id)
    attributes: list[tuple[int, bytes]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.transaction_id) != 12:
            raise ValueError("transaction id must be 12 bytes")

    @classmethod
    def binding_request(cls, change_flags: Optional[int] = None) -> "StunMessage":
        """A binding request, with a CHANGE-REQUEST attribute when flags are given."""
        message = cls(BINDING_REQUEST)
        if change_flags is not None:
            message.attributes.append((ATTR_CHANGE_REQUEST, struct.pack("!I", change_flags)))
        return message

    def encode(self) -> bytes:
        body = b"".join(
            struct.pack("!HH", attr_type, len(value)) + value + b"\x00" * (-len(value) % 4)
            for attr_type, value in self.attributes
        )
        return struct.pack("!HHI", self.msg_type, len(body), MAGIC_COOKIE) + self.transaction_id + body

    @classmethod
    def decode(cls, data: bytes) -> "StunMessage":
        """Parse wire bytes; raise ValueError when they are not a STUN message."""
        data = bytes(data)
        if len(data) < HEADER_SIZE:
            raise ValueError("message too short")
        msg_type, length, cookie = struct.unpack_from("!HHI", data)
        if msg_type & 0xC000:
            raise ValueError("not a STUN message")
        if cookie != MAGIC_COOKIE:
            raise ValueError("bad magic cookie")
        end = HEADER_SIZE + length
        if end > len(data):
            raise ValueError("truncated message")
        attributes: list[tuple[int, bytes]] = []
        offset = HEADER_SIZE
        while offset < end:
            if offset + 4 > end:
                raise ValueError("truncated attribute header")
            attr_type, attr_len = struct.unpack_from("!HH", data, offset)
            offset += 4
            if offset + attr_len > end:
                raise ValueError("truncated attribute")
            attributes.append((attr_type, data[offset:offset + attr_len]))
            offset += attr_len + (-attr_len % 4)
        return cls(msg_type, data[8:HEADER_SIZE], attributes)

    def _attribute(self, attr_type: int) -> Optional[bytes]:
        return next((value for kind, value in self.attributes if kind == attr_type), None)

    def _address(self, attr_type: int, xor: bool) -> Optional[Address]:
        value = self._attribute(attr_type)
        if value is None or len(value) < 4:
            return None
        family = value[1]
        size = {1: 4, 2: 16}.get(family)
        if size is None or len(value) < 4 + size:
            return None
        port = struct.unpack_from("!H", value, 2)[0]
        raw = value[4:4 + size]
        if xor:
            port ^= MAGIC_COOKIE >> 16
            key = struct.pack("!I", MAGIC_COOKIE) + self.transaction_id
            raw = bytes(a ^ b for a, b in zip(raw, key))
        return str(ipaddress.ip_address(raw)), port

    def xor_mapped_address(self) -> Optional[Address]:
        """The XOR-MAPPED-ADDRESS as (ip, port), or None."""
        return self._address(ATTR_XOR_MAPPED_ADDRESS, xor=True)

    def other_address(self) -> Optional[Address]:
        """The OTHER-ADDRESS as (ip, port), or None."""
        return self._address(ATTR_OTHER_ADDRESS, xor=False)


class NATTestError(Exception):
    """A STUN exchange failed."""


class _TimedOut(NATTestError):
    pass


class _ResponseError(NATTestError):
    pass


_RESOLVE_ERRORS = (OSError, ValueError, OverflowError)


def _resolve_udp4_host(host: str, port: int) -> Address:
    infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
    if not infos:
        raise OSError(f"cannot resolve {host}")
    ip, resolved_port = infos[0][4][:2]
    return ip, resolved_port


def _resolve_udp4(addr: str) -> Address:
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {addr!r}")
    return _resolve_udp4_host(host.strip("[]") or "0.0.0.0", int(port))


class _StunSession:
    def __init__(self, conn: socket.socket, addr: str) -> None:
        self.conn = conn
        self.remote = _resolve_udp4(addr)
        self.local = tuple(conn.getsockname()[:2])
        self.other: Optional[Address] = None
        self._broken = False

    def round_trip(self, message: StunMessage, target: Address, timeout: float = NAT_TIMEOUT) -> StunMessage:
        message.transaction_id = _new_transaction_id()
        self.conn.sendto(message.encode(), target)
        if self._broken:
            raise _ResponseError("error reading from response message channel")
        try:
            self.conn.settimeout(timeout)
            data, _ = self.conn.recvfrom(_RECV_SIZE)
        except TimeoutError as exc:
            raise _TimedOut("timed out waiting for response") from exc
        except OSError as exc:
            self._broken = True
            raise _ResponseError("error reading from response message channel") from exc
        try:
            return StunMessage.decode(data)
        except ValueError as exc:
            self._broken = True
            raise _ResponseError("error reading from response message channel") from exc


def mapping_tests(conn: socket.socket, addr: str) -> NATMapType:
    """Determine NAT mapping behaviour (RFC 5780 section 4.3)."""
    try:
        session = _StunSession(conn, addr)
    except _RESOLVE_ERRORS as exc:
        logger.log("NAT MAP TEST | cannot connect to stun server:", exc)
        return NATMapType.FAILED

    request = StunMessage.binding_request()
    try:
        first = session.round_trip(request, session.remote)
    except (NATTestError, OSError) as exc:
        logger.log("NAT MAP TEST | TEST I Failed:", exc)
        return NATMapType.FAILED

    first_xor, other = first.xor_mapped_address(), first.other_address()
    if first_xor is None or other is None:
        logger.log("NAT MAP TEST | TEST I Failed: no other address")
        return NATMapType.FAILED
    try:
        session.other = _resolve_udp4_host(*other)
    except _RESOLVE_ERRORS as exc:
        logger.log("NAT MAP TEST | TEST I Resolve Failed:", exc)
        return NATMapType.FAILED

    if first_xor == session.local:
        return NATMapType.NO_NAT

    # Test II: the other address, primary port
    try:
        second = session.round_trip(request, (session.other[0], session.remote[1]))
    except (NATTestError, OSError) as exc:
        logger.log("NAT MAP TEST | TEST II Failed:", exc)
        return NATMapType.FAILED
    second_xor = second.xor_mapped_address()
    if second_xor == first_xor:
        return NATMapType.INDEPENDENT

    # Test III: the other address and port
    try:
        third = session.round_trip(request, session.other)
    except (NATTestError, OSError) as exc:
        logger.log("NAT MAP TEST | TEST III Failed:", exc)
        return NATMapType.FAILED
    if third.xor_mapped_address() == second_xor:
        return NATMapType.ADDR_INDEPENDENT
    return NATMapType.ADDR_PORT_INDEPENDENT


def filtering_tests(conn: socket.socket, addr: str) -> NATFilterType:
    """Determine NAT filtering behaviour (RFC 5780 section 4.4)."""
    try:
        session = _StunSession(conn, addr)
    except _RESOLVE_ERRORS as exc:
        logger.log("NAT FLT TEST | cannot connect to stun server:", exc)
        return NATFilterType.FAILED

    try:
        first = session.round_trip(StunMessage.binding_request(), session.remote)
    except (NATTestError, OSError) as exc:
        logger.log("NAT FLT TEST | TEST I Failed:", exc)
        return NATFilterType.FAILED
    other = first.other_address()
    if first.xor_mapped_address() is None or other is None:
        logger.log("NAT FLT TEST | TEST I Failed: no other address")
        return NATFilterType.FAILED
    try:
        session.other = _resolve_udp4_host(*other)
    except _RESOLVE_ERRORS as exc:
        logger.log("NAT FLT TEST | TEST I Failed:", exc)
        return NATFilterType.FAILED

    # Test II: ask the server to change both address and port
    try:
        session.round_trip(StunMessage.binding_request(CHANGE_IP_AND_PORT), session.remote)
    except _TimedOut:
        pass
    except (NATTestError, OSError) as exc:
        logger.log("NAT FLT TEST | TEST II Failed:", exc)
        return NATFilterType.FAILED
    else:
        return NATFilterType.INDEPENDENT

    # Test III: ask the server to change the port only
    try:
        session.round_trip(StunMessage.binding_request(CHANGE_PORT), session.remote)
    except _TimedOut:
        return NATFilterType.ADDR_PORT_INDEPENDENT
    except (NATTestError, OSError):
        return NATFilterType.FAILED
    return NATFilterType.ADDR_INDEPENDENT


def detect_nat_type(vendor: Vendor, url: str) -> tuple[NATMapType, NATFilterType]:
    """Run the mapping and filtering tests in parallel on separate sockets."""
    addr = url.lstrip("udp:/")
    results: dict[str, IntEnum] = {}

    def run(key: str, test: Callable[[socket.socket, str], IntEnum]) -> None:
        try:
            conn = vendor.dial_udp(url)
        except OSError as exc:
            logger.log(f"NAT TEST | cannot dial {url}: {exc}")
            return
        if conn is None:
            return
        try:
            results[key] = test(conn, addr)
        finally:
            conn.close()

    threads = [
        threading.Thread(target=run, args=("map", mapping_tests)),
        threading.Thread(target=run, args=("filter", filtering_tests)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    return (
        NATMapType(results.get("map", NATMapType.FAILED)),
        NATFilterType(results.get("filter", NATFilterType.FAILED)),
    )


def nat_type_to_string(map_type: NATMapType, filter_type: NATFilterType) -> str:
    if map_type == NATMapType.FAILED or filter_type == NATFilterType.FAILED:
        return "Unknown"
    if map_type == NATMapType.INDEPENDENT:
        if filter_type == NATFilterType.INDEPENDENT:
            return "FullCone"
        if filter_type == NATFilterType.ADDR_INDEPENDENT:
            return "RestrictedCone"
        return "PortRestrictedCone"
    if map_type == NATMapType.ADDR_PORT_INDEPENDENT and filter_type == NATFilterType.ADDR_PORT_INDEPENDENT:
        return "Symmetric"
    return "SymmetricFirewall"


@dataclass
class Udp(Macro):
    """Classifies the NAT behind a proxy's UDP path."""

    nat_type: str = ""

    @property
    def macro_type(self) -> MacroType:
        return MacroType.UDP

    def run(self, proxy: Optional[Vendor], request: SlaveRequest) -> None:
        stun_url = request.configs.stun_url.strip() or preconfigs.PROXY_DEFAULT_STUN_SERVER
        map_type, filter_type = detect_nat_type(proxy, stun_url)
        self.nat_type = nat_type_to_string(map_type, filter_type)