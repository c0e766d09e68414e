"""Built-in defaults for requests, network probes and embedded resources."""

from __future__ import annotations

from dataclasses import dataclass

IDENTIFIER = "Speed"
VERSION = "230616 Community(Official 4.3.2)"

# Filled in by release builds; empty for development builds.
COMPILATION_TIME = ""
BUILD_COUNT = ""
COMMIT = ""
BRAND = ""

PROXY_DEFAULT_STUN_SERVER = "udp://stun.voipstunt.com:3478"

NETCAT_HTTP_PAYLOAD = (
    "GET %s HTTP/1.1\n"
    "Accept: */*\n"
    "Accept-Encoding: gzip, deflate\n"
    "Host: %s\n"
    "User-Agent: HTTPie/3.0.2 MiaoSpeed/%s\n"
    "\n"
)

SPEED_DEFAULT_DURATION = 3
SPEED_DEFAULT_THREADING = 1

SPEED_DEFAULT_LARGE_FILE_STATIC_APPLE = (
    "https://updates.cdn-apple.com/2019FallFCS/fullrestores/061-22552/"
    "374D62DE-E18B-11E9-A68D-B46496A9EC6E/iPhone12,1_13.1.2_17A860_Restore.ipsw"
)
SPEED_DEFAULT_LARGE_FILE_STATIC_MSFT = (
    "https://download.microsoft.com/download/2/0/E/20E90413-712F-438C-988E-FDAA79A8AC3D/dotnetfx35.exe"
)
SPEED_DEFAULT_LARGE_FILE_STATIC_GOOGLE = (
    "https://dl.google.com/android/studio/maven-google-com/stable/offline-gmaven-stable.zip"
)
SPEED_DEFAULT_LARGE_FILE_STATIC_CACHEFLY = "http://cachefly.cachefly.net/200mb.test"

SPEED_DEFAULT_LARGE_FILE_DYN_INTL = "DYNAMIC:INTL"
SPEED_DEFAULT_LARGE_FILE_DYN_FAST = "DYNAMIC:FAST"

SPEED_DEFAULT_LARGE_FILE_DEFAULT = SPEED_DEFAULT_LARGE_FILE_DYN_INTL

SLAVE_DEFAULT_PING = "http://gstatic.com/generate_204"
SLAVE_DEFAULT_RETRY = 3
SLAVE_DEFAULT_TIMEOUT = 5000


def build_netcat_payload(path: str, host: str, version: str = VERSION) -> str:
    """Render the raw HTTP request used for plain-text latency probes."""
    return NETCAT_HTTP_PAYLOAD % (path, host, version)


@dataclass
class EmbedConfig:
    """Resources that can be overridden at start-up: keys, scripts and build token."""

    build_token: str = ""
    server_public_key: str = ""
    server_private_key: str = ""
    script_predefined: str = ""
    script_geo: str = ""
    script_ip: str = ""


ECFG = EmbedConfig()