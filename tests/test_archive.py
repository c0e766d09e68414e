import io
import re
import tarfile
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from miaospeed.archive import download, download_bytes, find_and_extract
from miaospeed.preconfigs import VERSION


def _make_archive(files, dirs=()):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name in dirs:
            info = tarfile.TarInfo(name)
            info.type = tarfile.DIRTYPE
            archive.addfile(info)
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    buffer.seek(0)
    return buffer


def test_extracts_matching_files_by_base_name():
    archive = _make_archive(
        {
            "GeoLite2-ASN_1/GeoLite2-ASN.mmdb": b"asn-data",
            "GeoLite2-ASN_1/LICENSE.txt": b"text",
        }
    )
    assert find_and_extract(archive, r"\.mmdb$") == {"GeoLite2-ASN.mmdb": b"asn-data"}


def test_accepts_compiled_patterns_and_bytes():
    raw = _make_archive({"a/one.mmdb": b"1", "b/two.txt": b"2"}).getvalue()
    result = find_and_extract(raw, re.compile(r"\.txt$"), r"one")
    assert result == {"one.mmdb": b"1", "two.txt": b"2"}


def test_no_filters_extracts_nothing():
    assert find_and_extract(_make_archive({"x.mmdb": b"1"})) == {}


def test_directories_are_skipped():
    archive = _make_archive({"dir.mmdb/file.bin": b"1"}, dirs=["dir.mmdb"])
    assert find_and_extract(archive, r"\.mmdb") == {"file.bin": b"1"}


def test_invalid_gzip_raises():
    with pytest.raises(ValueError):
        find_and_extract(io.BytesIO(b"not an archive at all"), r".*")


class _Handler(BaseHTTPRequestHandler):
    seen_agents = []

    def do_GET(self):
        _Handler.seen_agents.append(self.headers.get("User-Agent"))
        status = 404 if self.path == "/missing" else 200
        body = b"missing" if status == 404 else b"hello"
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def test_download_bytes_sends_user_agent(server):
    _Handler.seen_agents.clear()
    assert download_bytes(server + "/file") == b"hello"
    assert _Handler.seen_agents == ["curl/7.73.0 miaospeed/" + VERSION]


def test_download_returns_error_status(server):
    with download(server + "/missing") as response:
        assert response.status == 404
        assert response.read() == b"missing"


def test_download_bytes_from_file_url(tmp_path):
    path = tmp_path / "data.bin"
    path.write_bytes(b"\x00\x01payload")
    assert download_bytes(path.as_uri()) == b"\x00\x01payload"