import socket
import threading
import time

import pytest

from miaospeed.models import (
    MacroType,
    ProxyInfo,
    SlaveRequest,
    SlaveRequestConfigs,
    Vendor,
    VendorStatus,
    VendorType,
)
from miaospeed.ping import Ping, compute_avg_of_ping, ping


class HttpServer:
    def __init__(self, delay=0.03):
        self.delay = delay
        self.requests = []
        self.connections = 0
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen()
        self.sock.settimeout(0.2)
        self.port = self.sock.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self):
        while not self._stop.is_set():
            try:
                conn, _ = self.sock.accept()
            except OSError:
                continue
            self.connections += 1
            threading.Thread(target=self._handle, args=(conn,), daemon=True).start()

    def _handle(self, conn):
        buf = b""
        with conn:
            conn.settimeout(5)
            while True:
                try:
                    data = conn.recv(4096)
                except OSError:
                    return
                if not data:
                    return
                buf += data
                while b"\n\n" in buf:
                    request, buf = buf.split(b"\n\n", 1)
                    self.requests.append(request.decode())
                    time.sleep(self.delay)
                    conn.sendall(b"HTTP/1.1 204 No Content\r\n\r\n")

    def close(self):
        self._stop.set()
        self._thread.join()
        self.sock.close()


class LocalVendor(Vendor):
    def __init__(self, port=None, fail=False):
        self.port = port
        self.fail = fail
        self.dials = 0

    @property
    def vendor_type(self):
        return VendorType.LOCAL

    @property
    def status(self):
        return VendorStatus.OPERATIONAL

    def build(self, proxy_name, proxy_info):
        return self

    def dial_tcp(self, url, network=None, timeout=None):
        self.dials += 1
        if self.fail:
            raise ConnectionRefusedError("refused")
        return socket.create_connection(("127.0.0.1", self.port), timeout=timeout)

    def dial_udp(self, url, timeout=None):
        raise OSError("not supported")

    def proxy_info(self):
        return ProxyInfo(name="local", address="127.0.0.1", type="Http")


@pytest.fixture
def server():
    srv = HttpServer()
    yield srv
    srv.close()


def test_average_of_identical_samples():
    assert compute_avg_of_ping([50, 50]) == 50


def test_average_single_sample():
    assert compute_avg_of_ping([120]) == 120


def test_average_drops_outliers():
    assert compute_avg_of_ping([100, 1000, 100]) == 100


def test_average_does_not_mutate_input():
    samples = [300, 100, 200]
    compute_avg_of_ping(samples)
    assert samples == [300, 100, 200]


def test_average_lies_within_sample_range():
    samples = [90, 110, 105, 95]
    result = compute_avg_of_ping(samples)
    assert min(samples) - len(samples) <= result <= max(samples)


def test_average_of_nothing_raises():
    with pytest.raises(ValueError):
        compute_avg_of_ping([])


def test_ping_without_vendor():
    assert ping(None, "http://example.test/", 1, 3, 5000) == (0, 0)


def test_ping_failing_vendor_uses_every_attempt():
    vendor = LocalVendor(fail=True)
    assert ping(vendor, "http://example.test/generate_204", 1, 3, 5000) == (0, 0)
    assert vendor.dials == 3


def test_ping_netcat_measures_delay(server):
    vendor = LocalVendor(server.port)
    rtt, request = ping(vendor, "http://example.test/generate_204?b=2&a=1", 1, 3, 5000)
    assert rtt >= 20
    assert request >= 20
    assert server.requests[0].startswith("GET /generate_204?a=1&b=2 HTTP/1.1")
    assert "Host: example.test" in server.requests[0]
    assert len(server.requests) == 2


def test_ping_macro_run(server):
    vendor = LocalVendor(server.port)
    request = SlaveRequest(
        configs=SlaveRequestConfigs(
            ping_address="http://example.test/generate_204",
            ping_average_over=2,
            task_retry=3,
            task_timeout=5000,
        )
    )
    macro = Ping()
    macro.run(vendor, request)
    assert macro.macro_type is MacroType.PING
    assert macro.rtt > 0
    assert macro.request > 0
    assert server.connections == 2