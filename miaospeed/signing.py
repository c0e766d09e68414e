"""Request signing, whitelist checks and JSON helpers."""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from miaospeed import preconfigs
from miaospeed.models import SlaveRequest

_UNSAFE_CHARS = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _json_default(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"cannot serialise {type(value).__name__}")


def to_json(value: Any) -> str:
    """Serialise ``value`` compactly, escaping HTML-sensitive characters."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=_json_default)
    for char, escaped in _UNSAFE_CHARS.items():
        text = text.replace(char, escaped)
    return text


def random_uuid() -> str:
    """Return a fresh random (version 4) UUID string."""
    return str(uuid.uuid4())


def hash_miaospeed(token: str, request: str, build_token: Optional[str] = None) -> str:
    """Chain-hash ``request`` with the token and every build-token segment."""
    if build_token is None:
        build_token = preconfigs.ECFG.build_token
    segments = [token, *build_token.strip().split("|")]

    hasher = hashlib.sha512()
    hasher.update(request.encode("utf-8"))
    for segment in segments:
        # An empty segment is unsafe; it is replaced with a fixed filler.
        segment = segment or "SOME_TOKEN"
        hasher.update(segment.encode("utf-8") + hasher.digest())

    return base64.urlsafe_b64encode(hasher.digest()).decode("ascii")


def hash_md5(token: str) -> str:
    return hashlib.md5(token.encode("utf-8")).hexdigest()


def sign_request(token: str, request: SlaveRequest, build_token: Optional[str] = None) -> str:
    """Return the challenge for ``request``; its own challenge is not signed."""
    awaiting = request.clone()
    awaiting.challenge = ""
    return hash_miaospeed(token, to_json(awaiting).strip(), build_token)


@dataclass
class GlobalConfig:
    token: str = ""
    binder: str = ""
    whitelist: list[str] = field(default_factory=list)
    speed_limit: int = 0
    pause_second: int = 0
    conn_task_threading: int = 64
    miaoko_signed_tls: bool = False
    no_speed_flag: bool = False
    maxmind_db: str = ""

    def in_whitelist(self, invoker: str) -> bool:
        """An empty whitelist admits everyone."""
        return not self.whitelist or invoker in self.whitelist

    def verify_request(self, request: SlaveRequest) -> bool:
        return request.challenge == self.sign_request(request)

    def sign_request(self, request: SlaveRequest) -> str:
        return sign_request(self.token, request)


GCFG = GlobalConfig()