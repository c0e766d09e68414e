"""Matrices: the attributes read out of macro results, and their registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from miaospeed import macros
from miaospeed.geoip import MultiStacks
from miaospeed.macros import Speed
from miaospeed.models import (
    Macro,
    MacroType,
    Matrix,
    MatrixType,
    ScriptResult,
    SlaveRequestMatrixEntry,
)
from miaospeed.nat import Udp
from miaospeed.ping import Ping


def _is(macro: Any, macro_type: MacroType) -> bool:
    return getattr(macro, "macro_type", None) == macro_type


@dataclass
class HTTPPing(Matrix):
    value: int = 0

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.HTTP_PING

    @property
    def macro_job(self) -> MacroType:
        return MacroType.PING

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if isinstance(macro, Ping):
            self.value = macro.request

    def to_dict(self) -> dict[str, Any]:
        return {"Value": self.value}


@dataclass
class RTTPing(Matrix):
    value: int = 0

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.RTT_PING

    @property
    def macro_job(self) -> MacroType:
        return MacroType.PING

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if isinstance(macro, Ping):
            self.value = macro.rtt

    def to_dict(self) -> dict[str, Any]:
        return {"Value": self.value}


@dataclass
class UDPType(Matrix):
    value: str = ""

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.UDP_TYPE

    @property
    def macro_job(self) -> MacroType:
        return MacroType.UDP

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if isinstance(macro, Udp):
            self.value = macro.nat_type

    def to_dict(self) -> dict[str, Any]:
        return {"Value": self.value}


@dataclass
class AverageSpeed(Matrix):
    value: int = 0

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.AVERAGE_SPEED

    @property
    def macro_job(self) -> MacroType:
        return MacroType.SPEED

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if isinstance(macro, Speed):
            self.value = macro.avg_speed

    def to_dict(self) -> dict[str, Any]:
        return {"Value": self.value}


@dataclass
class MaxSpeed(Matrix):
    value: int = 0

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.MAX_SPEED

    @property
    def macro_job(self) -> MacroType:
        return MacroType.SPEED

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if isinstance(macro, Speed):
            self.value = macro.max_speed

    def to_dict(self) -> dict[str, Any]:
        return {"Value": self.value}


@dataclass
class PerSecondSpeed(Matrix):
    max: int = 0
    average: int = 0
    speeds: Optional[list[int]] = None

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.PER_SECOND_SPEED

    @property
    def macro_job(self) -> MacroType:
        return MacroType.SPEED

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if isinstance(macro, Speed):
            self.speeds = list(macro.speeds)
            self.average = macro.avg_speed
            self.max = macro.max_speed

    def to_dict(self) -> dict[str, Any]:
        return {"Max": self.max, "Average": self.average, "Speeds": self.speeds}


@dataclass
class InboundGeoIP(Matrix):
    stacks: MultiStacks = field(default_factory=MultiStacks)

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.INBOUND_GEOIP

    @property
    def macro_job(self) -> MacroType:
        return MacroType.GEO

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if _is(macro, MacroType.GEO):
            self.stacks = macro.in_stacks

    def to_dict(self) -> dict[str, Any]:
        return self.stacks.to_dict()


@dataclass
class OutboundGeoIP(Matrix):
    stacks: MultiStacks = field(default_factory=MultiStacks)

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.OUTBOUND_GEOIP

    @property
    def macro_job(self) -> MacroType:
        return MacroType.GEO

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if _is(macro, MacroType.GEO):
            self.stacks = macro.out_stacks

    def to_dict(self) -> dict[str, Any]:
        return self.stacks.to_dict()


@dataclass
class ScriptTest(Matrix):
    key: str = ""
    result: ScriptResult = field(default_factory=ScriptResult)

    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.SCRIPT_TEST

    @property
    def macro_job(self) -> MacroType:
        return MacroType.SCRIPT

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        if _is(macro, MacroType.SCRIPT):
            self.key = entry.params
            self.result = macro.store.get(entry.params) or ScriptResult()

    def to_dict(self) -> dict[str, Any]:
        return {"Key": self.key, **self.result.to_dict()}


@dataclass
class InvalidMatrix(Matrix):
    @property
    def matrix_type(self) -> MatrixType:
        return MatrixType.INVALID

    @property
    def macro_job(self) -> MacroType:
        return MacroType.INVALID

    def extract(self, entry: SlaveRequestMatrixEntry, macro: Macro) -> None:
        return None

    def to_dict(self) -> dict[str, Any]:
        return {}


_REGISTERED: dict[MatrixType, Callable[[], Matrix]] = {
    MatrixType.HTTP_PING: HTTPPing,
    MatrixType.RTT_PING: RTTPing,
    MatrixType.UDP_TYPE: UDPType,
    MatrixType.AVERAGE_SPEED: AverageSpeed,
    MatrixType.MAX_SPEED: MaxSpeed,
    MatrixType.PER_SECOND_SPEED: PerSecondSpeed,
    MatrixType.INBOUND_GEOIP: InboundGeoIP,
    MatrixType.OUTBOUND_GEOIP: OutboundGeoIP,
    MatrixType.SCRIPT_TEST: ScriptTest,
}


def find(matrix_type: object) -> Matrix:
    """Return a fresh matrix for ``matrix_type``, or an InvalidMatrix."""
    try:
        key = MatrixType(matrix_type)
    except ValueError:
        return InvalidMatrix()
    factory = _REGISTERED.get(key)
    return factory() if factory is not None else InvalidMatrix()


def find_batch(matrix_types: Iterable[object]) -> list[Matrix]:
    return [find(m) for m in matrix_types]


def find_batch_from_entry(entries: Iterable[SlaveRequestMatrixEntry]) -> list[Matrix]:
    return [find(entry.type) for entry in entries]


def extract_macros_from_matrices(matrices: Iterable[Matrix]) -> list[MacroType]:
    """The distinct runnable macros the matrices need, in first-seen order."""
    needed = dict.fromkeys(m.macro_job for m in matrices)
    return [m for m in needed if macros.find(m).macro_type != MacroType.INVALID]