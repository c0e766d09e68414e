"""Downloading files and pulling entries out of gzipped tarballs."""

from __future__ import annotations

import io
import posixpath
import re
import tarfile
import urllib.error
import urllib.request
from typing import IO, Union

from miaospeed.preconfigs import VERSION

Pattern = Union[str, "re.Pattern[str]"]


def find_and_extract(stream: Union[IO[bytes], bytes], *args: Pattern) -> dict[str, bytes]:
    """Return the regular files whose names match any pattern in ``args``.

    Results are keyed by base name. Raises ValueError when the data is not
    a readable gzipped tar archive.
    """
    if isinstance(stream, (bytes, bytearray)):
        stream = io.BytesIO(bytes(stream))
    filters = [re.compile(p) if isinstance(p, str) else p for p in args]
    result: dict[str, bytes] = {}

    try:
        with tarfile.open(fileobj=stream, mode="r|gz") as archive:
            for member in archive:
                if not member.isreg():
                    continue
                if not any(f.search(member.name) for f in filters):
                    continue
                handle = archive.extractfile(member)
                if handle is None:
                    continue
                try:
                    data = handle.read()
                except (tarfile.TarError, OSError, EOFError):
                    continue
                result[posixpath.basename(member.name)] = data
    except (tarfile.TarError, OSError, EOFError) as exc:
        raise ValueError(f"cannot read archive: {exc}") from exc

    return result


def download(url: str):
    """Open ``url`` with GET; error statuses are returned, not raised."""
    request = urllib.request.Request(
        url, method="GET", headers={"User-Agent": "curl/7.73.0 miaospeed/" + VERSION}
    )
    try:
        return urllib.request.urlopen(request)
    except urllib.error.HTTPError as exc:
        return exc


def download_bytes(url: str) -> bytes:
    """Return the whole body fetched from ``url``."""
    with download(url) as response:
        return response.read()