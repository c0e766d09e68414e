"""Request, response and plug-in types exchanged with the controller."""

from __future__ import annotations

import socket
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass, replace
from enum import Enum, IntEnum
from typing import Any, Callable, Optional, TypeVar

from miaospeed import preconfigs

T = TypeVar("T")


class MacroType(str, Enum):
    SPEED = "SPEED"
    PING = "PING"
    UDP = "UDP"
    SCRIPT = "SCRIPT"
    GEO = "GEO"
    INVALID = "INVALID"


MFT_PING_RTT = "PingRTT"
MFT_PING_REQUEST = "PingRequest"
MFT_NAT_TYPE = "NATType"


class MatrixType(str, Enum):
    AVERAGE_SPEED = "SPEED_AVERAGE"
    MAX_SPEED = "SPEED_MAX"
    PER_SECOND_SPEED = "SPEED_PER_SECOND"
    UDP_TYPE = "UDP_TYPE"
    INBOUND_GEOIP = "GEOIP_INBOUND"
    OUTBOUND_GEOIP = "GEOIP_OUTBOUND"
    SCRIPT_TEST = "TEST_SCRIPT"
    HTTP_PING = "TEST_PING_CONN"
    RTT_PING = "TEST_PING_RTT"
    INVALID = "INVALID"

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        """True for every known matrix type except INVALID."""
        if value is None:
            return False
        try:
            member = cls(value)
        except ValueError:
            return False
        return member is not cls.INVALID


class ProxyType(str, Enum):
    SHADOWSOCKS = "Shadowsocks"
    SHADOWSOCKSR = "ShadowsocksR"
    SNELL = "Snell"
    SOCKS5 = "Socks5"
    HTTP = "Http"
    VMESS = "Vmess"
    TROJAN = "Trojan"
    VLESS = "Vless"
    HYSTERIA = "Hysteria"
    WIREGUARD = "WireGuard"
    TUIC = "Tuic"
    INVALID = "Invalid"

    @classmethod
    def parse(cls, value: str) -> "ProxyType":
        """Return the matching proxy type, or INVALID for anything unknown."""
        try:
            member = cls(value)
        except ValueError:
            return cls.INVALID
        return member


ALL_PROXY_TYPES = tuple(p for p in ProxyType if p is not ProxyType.INVALID)


class VendorType(str, Enum):
    LOCAL = "Local"
    CLASH = "Clash"
    INVALID = "Invalid"


class VendorStatus(IntEnum):
    OPERATIONAL = 0
    NOT_READY = 1


class RequestOptionsNetwork(str, Enum):
    TCP = "tcp"
    TCP6 = "tcp6"

    @classmethod
    def normalize(cls, value: Any) -> "RequestOptionsNetwork":
        """Map ``value`` to a network, falling back to TCP."""
        try:
            return cls(value)
        except ValueError:
            return cls.TCP


class ScriptType(str, Enum):
    MEDIA = "media"
    IP = "ip"


def _f(key: str, **kwargs: Any) -> Any:
    return field(metadata={"key": key}, **kwargs)


def _text(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.metadata.get("key", f.name): _encode(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, Mapping):
        return {key: _encode(item) for key, item in value.items()}
    return value


def _pick(data: Any, key: str) -> Any:
    """Look ``key`` up exactly, then case-insensitively; ``None`` when absent."""
    if data is None:
        return None
    if not isinstance(data, Mapping):
        raise TypeError(f"expected an object, got {type(data).__name__}")
    if key in data:
        return data[key]
    lowered = key.lower()
    for name, value in data.items():
        if isinstance(name, str) and name.lower() == lowered:
            return value
    return None


def _as_str(data: Any, key: str) -> str:
    value = _pick(data, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _as_int(data: Any, key: str, unsigned: bool = True) -> int:
    value = _pick(data, key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{key} must be an integer")
    if unsigned and value < 0:
        raise ValueError(f"{key} must not be negative")
    return value


def _as_list(data: Any, key: str, convert: Callable[[Any], T]) -> Optional[list[T]]:
    value = _pick(data, key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise TypeError(f"{key} must be a list")
    return [convert(item) for item in value]


def _plain_str(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("expected a string")
    return value


@dataclass
class Script:
    id: str = _f("ID", default="")
    type: str = _f("Type", default="")
    content: str = _f("Content", default="")
    timeout_millis: int = _f("TimeoutMillis", default=0)

    def to_dict(self) -> dict[str, Any]:
        return _encode(self)

    @classmethod
    def from_dict(cls, data: Any) -> "Script":
        raw_type = _as_str(data, "Type")
        try:
            script_type: str = ScriptType(raw_type)
        except ValueError:
            script_type = raw_type
        return cls(
            id=_as_str(data, "ID"),
            type=script_type,
            content=_as_str(data, "Content"),
            timeout_millis=_as_int(data, "TimeoutMillis"),
        )


@dataclass
class ScriptResult:
    text: str = _f("Text", default="")
    color: str = _f("Color", default="")
    background: str = _f("Background", default="")
    time_elapsed: int = _f("TimeElapsed", default=0)

    def clone(self) -> "ScriptResult":
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return _encode(self)


@dataclass
class ProxyInfo:
    name: str = _f("Name", default="")
    address: str = _f("Address", default="")
    type: str = _f("Type", default="")

    def to_map(self) -> dict[str, str]:
        return {"Name": self.name, "Address": self.address, "Type": _text(self.type)}


@dataclass
class RequestOptions:
    method: str = "GET"
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    no_redir: bool = False
    network: RequestOptionsNetwork = RequestOptionsNetwork.TCP


@dataclass
class SlaveRequestMatrixEntry:
    type: str = _f("Type", default="")
    params: str = _f("Params", default="")


def _entry_from(data: Any) -> SlaveRequestMatrixEntry:
    return SlaveRequestMatrixEntry(type=_as_str(data, "Type"), params=_as_str(data, "Params"))


@dataclass
class SlaveRequestOptions:
    filter: str = _f("Filter", default="")
    matrices: Optional[list[SlaveRequestMatrixEntry]] = _f("Matrices", default=None)

    def clone(self) -> "SlaveRequestOptions":
        matrices = None if self.matrices is None else [replace(m) for m in self.matrices]
        return SlaveRequestOptions(filter=self.filter, matrices=matrices)


@dataclass
class SlaveRequestBasics:
    id: str = _f("ID", default="")
    slave: str = _f("Slave", default="")
    slave_name: str = _f("SlaveName", default="")
    invoker: str = _f("Invoker", default="")
    version: str = _f("Version", default="")

    def clone(self) -> "SlaveRequestBasics":
        return replace(self)


@dataclass
class SlaveRequestNode:
    name: str = _f("Name", default="")
    payload: str = _f("Payload", default="")

    def clone(self) -> "SlaveRequestNode":
        return replace(self)


_DESCRIPTION_HINT = (
    "案例:\n"
    "downloadDuration: 取值范围 [1,30]\n"
    "downloadThreading: 取值范围 [1,8]\n"
    "taskThreading: 取值范围 [1,32]\n"
    "taskRetry: 取值范围 [1,10]\n"
    "\n"
    "当前:\n"
)


@dataclass
class SlaveRequestConfigs:
    stun_url: str = _f("STUNURL", default="")
    download_url: str = _f("DownloadURL", default="")
    download_duration: int = _f("DownloadDuration", default=0)
    download_threading: int = _f("DownloadThreading", default=0)
    ping_average_over: int = _f("PingAverageOver", default=0)
    ping_address: str = _f("PingAddress", default="")
    task_retry: int = _f("TaskRetry", default=0)
    dns_servers: Optional[list[str]] = _f("DNSServers", default=None)
    task_timeout: int = _f("TaskTimeout", default=0)
    scripts: Optional[list[Script]] = _f("Scripts", default=None)

    def description_text(self) -> str:
        """Human-readable hint on the allowed ranges and the current values."""
        return _DESCRIPTION_HINT + (
            f"downloadDuration: {self.download_duration}\n"
            f"downloadThreading: {self.download_threading}\n"
            f"taskRetry: {self.task_retry}\n"
        )

    def clone(self) -> "SlaveRequestConfigs":
        return replace(
            self,
            dns_servers=None if self.dns_servers is None else list(self.dns_servers),
            scripts=None if self.scripts is None else list(self.scripts),
        )

    def merge(self, other: "SlaveRequestConfigs") -> "SlaveRequestConfigs":
        """Return a copy with every non-empty setting of ``other`` applied."""
        merged = self.clone()
        if other.stun_url:
            merged.stun_url = other.stun_url
        if other.download_url:
            merged.download_url = other.download_url
        if other.download_duration != 0:
            merged.download_duration = other.download_duration
        if other.download_threading != 0:
            merged.download_threading = other.download_threading
        if other.ping_average_over != 0:
            merged.ping_average_over = other.ping_average_over
        if other.ping_address:
            merged.ping_address = other.ping_address
        if other.task_retry != 0:
            merged.task_retry = other.task_retry
        if other.dns_servers is not None:
            merged.dns_servers = list(other.dns_servers)
        if other.task_timeout != 0:
            merged.task_timeout = other.task_timeout
        if other.scripts is not None:
            merged.scripts = other.scripts
        return merged

    def check(self) -> "SlaveRequestConfigs":
        """Replace missing or out-of-range settings with defaults, in place."""
        if not self.stun_url:
            self.stun_url = preconfigs.PROXY_DEFAULT_STUN_SERVER
        if not self.download_url:
            self.download_url = preconfigs.SPEED_DEFAULT_LARGE_FILE_DEFAULT
        if not 1 <= self.download_duration <= 30:
            self.download_duration = preconfigs.SPEED_DEFAULT_DURATION
        if not 1 <= self.download_threading <= 32:
            self.download_threading = preconfigs.SPEED_DEFAULT_THREADING
        if not 1 <= self.task_retry <= 10:
            self.task_retry = preconfigs.SLAVE_DEFAULT_RETRY
        if not self.ping_address:
            self.ping_address = preconfigs.SLAVE_DEFAULT_PING
        if self.ping_average_over == 0 or self.ping_average_over > 16:
            self.ping_average_over = 1
        if self.dns_servers is None:
            self.dns_servers = []
        if not 10 <= self.task_timeout <= 10000:
            self.task_timeout = preconfigs.SLAVE_DEFAULT_TIMEOUT
        if self.scripts is None:
            self.scripts = []
        return self


def _configs_from(data: Any) -> SlaveRequestConfigs:
    return SlaveRequestConfigs(
        stun_url=_as_str(data, "STUNURL"),
        download_url=_as_str(data, "DownloadURL"),
        download_duration=_as_int(data, "DownloadDuration", unsigned=False),
        download_threading=_as_int(data, "DownloadThreading"),
        ping_average_over=_as_int(data, "PingAverageOver"),
        ping_address=_as_str(data, "PingAddress"),
        task_retry=_as_int(data, "TaskRetry"),
        dns_servers=_as_list(data, "DNSServers", _plain_str),
        task_timeout=_as_int(data, "TaskTimeout"),
        scripts=_as_list(data, "Scripts", Script.from_dict),
    )


@dataclass
class SlaveRequest:
    basics: SlaveRequestBasics = _f("Basics", default_factory=SlaveRequestBasics)
    options: SlaveRequestOptions = _f("Options", default_factory=SlaveRequestOptions)
    configs: SlaveRequestConfigs = _f("Configs", default_factory=SlaveRequestConfigs)
    vendor: str = _f("Vendor", default="")
    nodes: Optional[list[SlaveRequestNode]] = _f("Nodes", default=None)
    random_sequence: str = _f("RandomSequence", default="")
    challenge: str = _f("Challenge", default="")

    def clone(self) -> "SlaveRequest":
        # The vendor is deliberately not carried over: signatures are
        # computed over a clone, so they never cover the vendor field.
        return SlaveRequest(
            basics=self.basics.clone(),
            options=self.options.clone(),
            configs=self.configs.clone(),
            nodes=None if self.nodes is None else [n.clone() for n in self.nodes],
            random_sequence=self.random_sequence,
            challenge=self.challenge,
        )

    def to_dict(self) -> dict[str, Any]:
        return _encode(self)

    @classmethod
    def from_dict(cls, data: Any) -> "SlaveRequest":
        basics = _pick(data, "Basics")
        options = _pick(data, "Options")
        return cls(
            basics=SlaveRequestBasics(
                id=_as_str(basics, "ID"),
                slave=_as_str(basics, "Slave"),
                slave_name=_as_str(basics, "SlaveName"),
                invoker=_as_str(basics, "Invoker"),
                version=_as_str(basics, "Version"),
            ),
            options=SlaveRequestOptions(
                filter=_as_str(options, "Filter"),
                matrices=_as_list(options, "Matrices", _entry_from),
            ),
            configs=_configs_from(_pick(data, "Configs")),
            vendor=_as_str(data, "Vendor"),
            nodes=_as_list(
                data,
                "Nodes",
                lambda n: SlaveRequestNode(name=_as_str(n, "Name"), payload=_as_str(n, "Payload")),
            ),
            random_sequence=_as_str(data, "RandomSequence"),
            challenge=_as_str(data, "Challenge"),
        )


@dataclass
class MatrixResponse:
    type: str = _f("Type", default="")
    payload: str = _f("Payload", default="")


@dataclass
class SlaveEntrySlot:
    grouping: str = _f("Grouping", default="")
    proxy_info: ProxyInfo = _f("ProxyInfo", default_factory=ProxyInfo)
    invoke_duration: int = _f("InvokeDuration", default=0)
    matrices: list[MatrixResponse] = _f("Matrices", default_factory=list)

    def get(self, index: int) -> Optional[MatrixResponse]:
        """Return the matrix result at ``index``, or ``None`` past the end."""
        if index < 0:
            raise IndexError(f"negative index {index}")
        return self.matrices[index] if index < len(self.matrices) else None


@dataclass
class SlaveTask:
    request: SlaveRequest = _f("Request", default_factory=SlaveRequest)
    results: list[SlaveEntrySlot] = _f("Results", default_factory=list)


@dataclass
class SlaveProgress:
    index: int = _f("Index", default=0)
    record: SlaveEntrySlot = _f("Record", default_factory=SlaveEntrySlot)
    queuing: int = _f("Queuing", default=0)


@dataclass
class SlaveResponse:
    id: str = _f("ID", default="")
    miaospeed_version: str = _f("MiaoSpeedVersion", default="")
    error: str = _f("Error", default="")
    result: Optional[SlaveTask] = _f("Result", default=None)
    progress: Optional[SlaveProgress] = _f("Progress", default=None)

    def to_dict(self) -> dict[str, Any]:
        return _encode(self)


class Vendor(ABC):
    """A source of outbound connections, direct or through a proxy."""

    @property
    @abstractmethod
    def vendor_type(self) -> VendorType:
        """The kind of vendor."""

    @property
    @abstractmethod
    def status(self) -> VendorStatus:
        """Whether the vendor is ready to dial."""

    @abstractmethod
    def build(self, proxy_name: str, proxy_info: str) -> "Vendor":
        """Return a vendor bound to the proxy described by ``proxy_info``."""

    @abstractmethod
    def dial_tcp(
        self,
        url: str,
        network: RequestOptionsNetwork = RequestOptionsNetwork.TCP,
        timeout: Optional[float] = None,
    ) -> socket.socket:
        """Open a stream connection to the host of ``url``."""

    @abstractmethod
    def dial_udp(self, url: str, timeout: Optional[float] = None) -> socket.socket:
        """Open a datagram socket usable with sendto/recvfrom."""

    @abstractmethod
    def proxy_info(self) -> ProxyInfo:
        """Describe the proxy behind this vendor."""


class Macro(ABC):
    """An atomic job whose results feed one or more matrices."""

    @property
    @abstractmethod
    def macro_type(self) -> MacroType:
        """The macro type this job handles."""

    @abstractmethod
    def run(self, proxy: Optional[Vendor], request: SlaveRequest) -> None:
        """Run the job through ``proxy`` for ``request``."""


class Matrix(ABC):
    """An attribute extracted from a macro's results."""

    @property
    @abstractmethod
    def matrix_type(self) -> MatrixType:
        """The matrix type produced."""

    @property
    @abstractmethod
    def macro_job(self) -> MacroType:
        """The macro whose results this matrix reads."""

    @abstractmethod
    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        """Fill this matrix from ``macro``'s results."""