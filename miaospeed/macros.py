"""Macro registry, the download-speed macro and its byte counter."""

from __future__ import annotations

import ssl
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional
from urllib.parse import urlsplit

from miaospeed import logger, preconfigs
from miaospeed.models import Macro, MacroType, RequestOptionsNetwork, SlaveRequest, Vendor
from miaospeed.nat import Udp
from miaospeed.ping import Ping

_CONNECT_TIMEOUT = 5.0
_POLL = 0.2
_CHUNK = 32768
_HEADER_LIMIT = 65536


class InvalidMacro(Macro):
    """Stands in for unknown macro types; does nothing."""

    @property
    def macro_type(self) -> MacroType:
        return MacroType.INVALID

    def run(self, proxy: Optional[Vendor], request: SlaveRequest) -> None:
        return None

    def __eq__(self, other: object) -> bool:
        return isinstance(other, InvalidMacro)

    __hash__ = object.__hash__


@dataclass
class WriteCounter:
    """Thread-safe count of bytes written since the last ``take``."""

    total: int = 0
    rate_limit: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def write(self, data: bytes) -> int:
        size = len(data)
        with self._lock:
            self.total += size
        return size

    def take(self) -> int:
        with self._lock:
            taken, self.total = self.total, 0
        return taken


def _resolve_download_url(url: str) -> str:
    if url.startswith("DYNAMIC:"):
        return preconfigs.SPEED_DEFAULT_LARGE_FILE_STATIC_CACHEFLY
    return url


def _download(vendor: Vendor, url: str, counter: WriteCounter, stop: threading.Event) -> None:
    parts = urlsplit(url)
    target = parts.path or "/"
    if parts.query:
        target += "?" + parts.query
    request = (
        f"GET {target} HTTP/1.1\r\n"
        f"Host: {parts.netloc}\r\n"
        f"User-Agent: miaospeed/{preconfigs.VERSION}\r\n"
        "Accept: */*\r\n"
        "Connection: close\r\n"
        "\r\n"
    ).encode("utf-8")

    try:
        conn = vendor.dial_tcp(url, RequestOptionsNetwork.TCP, _CONNECT_TIMEOUT)
    except OSError as exc:
        logger.log(f"Speed | cannot dial, url={url} error={exc}")
        return
    if conn is None:
        return

    try:
        if parts.scheme == "https":
            conn = ssl.create_default_context().wrap_socket(conn, server_hostname=parts.hostname)
        conn.settimeout(_POLL)
        conn.sendall(request)
        header = b""
        in_body = False
        while not stop.is_set():
            try:
                chunk = conn.recv(_CHUNK)
            except TimeoutError:
                continue
            if not chunk:
                break
            if in_body:
                counter.write(chunk)
                continue
            header += chunk
            _, sep, rest = header.partition(b"\r\n\r\n")
            if sep:
                in_body = True
                if rest:
                    counter.write(rest)
            elif len(header) > _HEADER_LIMIT:
                break
    except OSError as exc:
        logger.log(f"Speed | download failed, url={url} error={exc}")
    finally:
        conn.close()


@dataclass
class Speed(Macro):
    """Measures download throughput, sampled once per second."""

    avg_speed: int = 0
    max_speed: int = 0
    total_size: int = 0
    speeds: list[int] = field(default_factory=list)

    @property
    def macro_type(self) -> MacroType:
        return MacroType.SPEED

    def run(self, proxy: Optional[Vendor], request: SlaveRequest) -> None:
        if proxy is None:
            return
        configs = request.configs
        duration = configs.download_duration
        if not 1 <= duration <= 30:
            duration = preconfigs.SPEED_DEFAULT_DURATION
        threads = configs.download_threading
        if not 1 <= threads <= 32:
            threads = preconfigs.SPEED_DEFAULT_THREADING
        url = _resolve_download_url(configs.download_url or preconfigs.SPEED_DEFAULT_LARGE_FILE_DEFAULT)

        counter = WriteCounter()
        stop = threading.Event()
        workers = [
            threading.Thread(target=_download, args=(proxy, url, counter, stop), daemon=True)
            for _ in range(threads)
        ]
        start = time.monotonic()
        for worker in workers:
            worker.start()

        speeds: list[int] = []
        for second in range(1, duration + 1):
            remaining = start + second - time.monotonic()
            if remaining > 0:
                time.sleep(remaining)
            speeds.append(counter.take())
        stop.set()
        for worker in workers:
            worker.join(_POLL * 2)

        self.speeds = speeds
        self.total_size = sum(speeds)
        self.avg_speed = self.total_size // duration
        self.max_speed = max(speeds, default=0)


_REGISTERED: dict[MacroType, Callable[[], Macro]] = {
    MacroType.SPEED: Speed,
    MacroType.PING: Ping,
    MacroType.UDP: Udp,
}


def find(macro_type: object) -> Macro:
    """Return a fresh macro for ``macro_type``, or an InvalidMacro."""
    try:
        key = MacroType(macro_type)
    except ValueError:
        return InvalidMacro()
    factory = _REGISTERED.get(key)
    return factory() if factory is not None else InvalidMacro()


def find_batch(macro_types: Iterable[object]) -> list[Macro]:
    return [find(m) for m in macro_types]