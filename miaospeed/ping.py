"""Latency probing over HTTP and HTTPS through a vendor."""

from __future__ import annotations

import socket
import ssl
import time
from dataclasses import dataclass
from typing import Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urlsplit

from miaospeed import logger, preconfigs
from miaospeed.models import Macro, MacroType, RequestOptionsNetwork, SlaveRequest, Vendor

_OUTLIER_THRESHOLD = 300
_NETCAT_DEADLINE = 6.0
_READ_CHUNK = 4096
_HEADER_LIMIT = 65536


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _u16(value: int) -> int:
    return value & 0xFFFF


def compute_avg_of_ping(pings: Sequence[int]) -> int:
    """Average the samples lying within 300 ms of the median.

    Each kept sample is divided by the number of kept samples before
    summing, as 16-bit unsigned arithmetic. Raises ValueError on no samples.
    """
    if not pings:
        raise ValueError("no ping samples")
    ordered = sorted(pings)
    median = ordered[len(ordered) // 2]
    kept = [delay for delay in ordered if abs(delay - median) < _OUTLIER_THRESHOLD]
    return _u16(sum(delay // len(kept) for delay in kept))


def _seconds(timeout_ms: int) -> Optional[float]:
    return timeout_ms / 1000 if timeout_ms > 0 else None


def _dial(vendor: Vendor, url: str, timeout_ms: int) -> socket.socket:
    try:
        conn = vendor.dial_tcp(url, RequestOptionsNetwork.TCP, _seconds(timeout_ms))
    except OSError as exc:
        raise ConnectionError("cannot dial remote address") from exc
    if conn is None:
        raise ConnectionError("cannot dial remote address")
    return conn


def _ping_via_trace(vendor: Vendor, url: str, timeout_ms: int) -> tuple[int, int]:
    """Time one GET request; return (payload RTT, total) in milliseconds."""
    parts = urlsplit(url)
    secure = url.startswith("https:")
    target = parts.path or "/"
    if parts.query:
        target += "?" + parts.query
    request = (
        f"GET {target} HTTP/1.1\r\n"
        f"Host: {parts.netloc}\r\n"
        f"User-Agent: miaospeed/{preconfigs.VERSION}\r\n"
        "Accept-Encoding: gzip\r\n"
        "\r\n"
    ).encode("utf-8")

    conn_start = _now_ms()
    conn = _dial(vendor, url, timeout_ms)
    try:
        conn.settimeout(_NETCAT_DEADLINE)
        tls_end = 0
        if secure:
            context = ssl.create_default_context()
            # pre-1.3 handshakes take two round trips
            context.minimum_version = ssl.TLSVersion.TLSv1_3
            conn = context.wrap_socket(conn, server_hostname=parts.hostname)
            tls_end = _now_ms()
        conn.sendall(request)
        write_start = _now_ms()
        first = conn.recv(1)
        if not first:
            raise ConnectionError("connection closed before response")
        write_end = _now_ms()
        received = first
        while b"\r\n\r\n" not in received and len(received) < _HEADER_LIMIT:
            chunk = conn.recv(_READ_CHUNK)
            if not chunk:
                break
            received += chunk
    finally:
        conn.close()

    if not secure:
        return _u16(write_start - conn_start), _u16(write_end - conn_start)
    return _u16(write_end - tls_end), _u16(write_end - conn_start)


def _netcat_target(url: str) -> tuple[str, str]:
    parts = urlsplit(url)
    path = parts.path
    if parts.query:
        pairs = parse_qsl(parts.query, keep_blank_values=True)
        path += "?" + urlencode(sorted(pairs, key=lambda pair: pair[0]))
    return path, parts.hostname or ""


def _read_reply(conn: socket.socket) -> None:
    received = b""
    while b"\n" not in received and len(received) < _READ_CHUNK:
        try:
            chunk = conn.recv(_READ_CHUNK)
        except OSError:
            return
        if not chunk:
            return
        received += chunk


def _ping_via_netcat(vendor: Vendor, url: str, timeout_ms: int) -> tuple[int, int]:
    """Send a raw request twice on one connection; time the second one."""
    path, host = _netcat_target(url)
    payload = preconfigs.build_netcat_payload(path, host, preconfigs.VERSION).encode("utf-8")

    conn_start = _now_ms()
    conn = _dial(vendor, url, timeout_ms)
    with conn:
        conn.settimeout(_NETCAT_DEADLINE)
        # the first exchange makes sure the connection is fully established
        try:
            conn.sendall(payload)
        except OSError as exc:
            raise ConnectionError("cannot write payload to remote") from exc
        _read_reply(conn)

        second_start = _now_ms()
        try:
            conn.sendall(payload)
        except OSError as exc:
            raise ConnectionError("cannot write payload to remote") from exc
        _read_reply(conn)
        end = _now_ms()

    return _u16(end - second_start), _u16(second_start - conn_start)


def ping(vendor: Optional[Vendor], url: str, with_avg: int, max_attempt: int, timeout: int) -> tuple[int, int]:
    """Probe ``url`` until ``with_avg`` samples succeed or attempts run out.

    Returns (RTT, request delay) in milliseconds, both 0 on failure.
    """
    if vendor is None:
        return 0, 0

    failures = 0
    delays: list[int] = []
    rtts: list[int] = []
    if with_avg < 1 or with_avg > max_attempt:
        with_avg = 1

    while (
        failures + len(delays) < max_attempt
        and len(delays) < with_avg
        and max_attempt - failures >= with_avg
    ):
        probe = _ping_via_trace if url.startswith("https:") else _ping_via_netcat
        try:
            rtt, delay = probe(vendor, url, timeout)
        except (OSError, ValueError) as exc:
            logger.log(f"Ping | probe failed, url={url} error={exc}")
            rtt, delay = 0, 0
        if rtt > 0:
            rtts.append(rtt)
            delays.append(delay)
        else:
            failures += 1

    if len(rtts) >= with_avg:
        return compute_avg_of_ping(rtts), compute_avg_of_ping(delays)
    return 0, 0


@dataclass
class Ping(Macro):
    """Measures RTT and full request latency."""

    rtt: int = 0
    request: int = 0

    @property
    def macro_type(self) -> MacroType:
        return MacroType.PING

    def run(self, proxy: Optional[Vendor], request: SlaveRequest) -> None:
        configs = request.configs
        self.rtt, self.request = ping(
            proxy,
            configs.ping_address,
            configs.ping_average_over,
            configs.task_retry,
            configs.task_timeout,
        )