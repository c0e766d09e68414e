"""Command-line entry point: version, usage and the misc toolkit."""

from __future__ import annotations

import argparse
import os
import re
import sys
from pathlib import Path
from typing import Optional, Sequence

from miaospeed import logger
from miaospeed.archive import download_bytes, find_and_extract
from miaospeed.preconfigs import VERSION

MAXMIND_DB_DOWNLOAD_URL = (
    "https://download.maxmind.com/app/geoip_download?edition_id={edition}&license_key={key}&suffix=tar.gz"
)
MAXMIND_EDITIONS = ("GeoLite2-ASN", "GeoLite2-City")

_MMDB_FILTER = re.compile(r"\.mmdb$")
_DEFAULT_NAME = "miaospeed"
# the ALOG level, used by -verbose
_VERBOSE_LEVEL = 1


def _command_name() -> str:
    return os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else _DEFAULT_NAME


def _parser(prog: str) -> argparse.ArgumentParser:
    return argparse.ArgumentParser(prog=prog, allow_abbrev=False)


def update_maxmind(license_key: str) -> list[str]:
    """Download the MaxMind databases into the working directory; return files written."""
    written: list[str] = []
    for edition in MAXMIND_EDITIONS:
        url = MAXMIND_DB_DOWNLOAD_URL.format(edition=edition, key=license_key)
        try:
            payload = download_bytes(url)
        except OSError as exc:
            logger.error(f"Maxmind Updater | Cannot fetch content from server, edition={edition} err={exc}")
            continue
        try:
            entries = find_and_extract(payload, _MMDB_FILTER)
        except ValueError:
            entries = {}
        if not entries:
            logger.error(
                f"Maxmind Updater | Cannot extract content from gzip file, edition={edition} size={len(payload)}"
            )
            continue
        for name, data in entries.items():
            try:
                Path(name).write_bytes(data)
            except OSError as exc:
                logger.error(
                    f"Maxmind Updater | Create local file, edition={edition} size={len(data)} "
                    f"file={name} err={exc}"
                )
                continue
            logger.warn(f"Maxmind Updater | File updated, edition={edition} size={len(data)} file={name}")
            written.append(name)
    return written


def run_misc(argv: Optional[Sequence[str]] = None) -> int:
    """The ``misc`` subcommand."""
    name = _command_name()
    parser = _parser(f"{name} misc")
    parser.add_argument(
        "-maxmind-update-license",
        "--maxmind-update-license",
        dest="license_key",
        default="",
        help="specify a maxmind license to update database.",
    )
    parser.add_argument(
        "-verbose", "--verbose", action="store_true", help="whether to print out systems log"
    )
    args = parser.parse_args(list(argv or []))
    if args.verbose:
        logger.set_verbose_level(logger.LogType(_VERBOSE_LEVEL))

    if args.license_key:
        update_maxmind(args.license_key)
        return 0

    print(f"You have not specify any options, please call {name} misc -help to see all available commands.")
    return 0


def run_default(argv: Optional[Sequence[str]] = None) -> int:
    """Print the version, or the usage and the list of subcommands."""
    name = _command_name()
    parser = _parser(name)
    parser.add_argument("-version", "--version", action="store_true", help="display version and exit")
    parser.add_argument("rest", nargs="*", help=argparse.SUPPRESS)
    args = parser.parse_args(list(argv or []))

    if args.version:
        print(VERSION)
        return 0

    print(parser.format_help())
    print(f"Subcommands of {name}:")
    print("  misc")
    print("        other utility toolkit provided by miaospeed.")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if args and args[0] == "misc":
        return run_misc(args[1:])
    return run_default(args)


if __name__ == "__main__":
    sys.exit(main())