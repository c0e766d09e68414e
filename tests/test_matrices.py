from types import SimpleNamespace

import pytest

from miaospeed.geoip import GeoInfo, MultiStacks
from miaospeed.macros import Speed
from miaospeed.matrices import (
    AverageSpeed,
    HTTPPing,
    InboundGeoIP,
    InvalidMatrix,
    MaxSpeed,
    OutboundGeoIP,
    PerSecondSpeed,
    RTTPing,
    ScriptTest,
    UDPType,
    extract_macros_from_matrices,
    find,
    find_batch,
    find_batch_from_entry,
)
from miaospeed.models import MacroType, MatrixType, ScriptResult, SlaveRequestMatrixEntry
from miaospeed.nat import Udp
from miaospeed.ping import Ping
from miaospeed.signing import to_json

ENTRY = SlaveRequestMatrixEntry()


@pytest.mark.parametrize(
    "matrix_type, cls",
    [
        (MatrixType.HTTP_PING, HTTPPing),
        (MatrixType.RTT_PING, RTTPing),
        (MatrixType.UDP_TYPE, UDPType),
        (MatrixType.AVERAGE_SPEED, AverageSpeed),
        (MatrixType.MAX_SPEED, MaxSpeed),
        (MatrixType.PER_SECOND_SPEED, PerSecondSpeed),
        (MatrixType.INBOUND_GEOIP, InboundGeoIP),
        (MatrixType.OUTBOUND_GEOIP, OutboundGeoIP),
        (MatrixType.SCRIPT_TEST, ScriptTest),
    ],
)
def test_find_registered(matrix_type, cls):
    found = find(matrix_type.value)
    assert isinstance(found, cls)
    assert found.matrix_type == matrix_type


def test_find_unknown():
    assert isinstance(find("WHATEVER"), InvalidMatrix)
    assert find(MatrixType.INVALID).macro_job == MacroType.INVALID


def test_find_batch_and_entries():
    types = [MatrixType.RTT_PING, "BAD"]
    assert [m.matrix_type for m in find_batch(types)] == [MatrixType.RTT_PING, MatrixType.INVALID]
    entries = [SlaveRequestMatrixEntry(type="TEST_PING_CONN"), SlaveRequestMatrixEntry(type="x")]
    assert [m.matrix_type for m in find_batch_from_entry(entries)] == [MatrixType.HTTP_PING, MatrixType.INVALID]


def test_ping_extraction():
    macro = Ping(rtt=5, request=9)
    http, rtt = HTTPPing(), RTTPing()
    http.extract(ENTRY, macro)
    rtt.extract(ENTRY, macro)
    assert http.value == 9
    assert rtt.value == 5


def test_wrong_macro_leaves_default():
    matrix = HTTPPing()
    matrix.extract(ENTRY, Udp(nat_type="FullCone"))
    assert matrix.value == 0


def test_udp_extraction():
    matrix = UDPType()
    matrix.extract(ENTRY, Udp(nat_type="FullCone"))
    assert matrix.to_dict() == {"Value": "FullCone"}


def test_speed_extraction():
    macro = Speed(avg_speed=10, max_speed=20, total_size=30, speeds=[10, 20])
    avg, peak, per = AverageSpeed(), MaxSpeed(), PerSecondSpeed()
    for m in (avg, peak, per):
        m.extract(ENTRY, macro)
    assert avg.value == 10
    assert peak.value == 20
    assert per.to_dict() == {"Max": 20, "Average": 10, "Speeds": [10, 20]}
    assert per.speeds is not macro.speeds


def test_geo_extraction():
    inbound = MultiStacks(domain="in.example.com", ipv4_stack=[GeoInfo(ip="192.0.2.1")])
    outbound = MultiStacks(domain="out", ipv6_stack=[GeoInfo(ip="2001:db8::1")])
    macro = SimpleNamespace(macro_type=MacroType.GEO, in_stacks=inbound, out_stacks=outbound)
    i, o = InboundGeoIP(), OutboundGeoIP()
    i.extract(ENTRY, macro)
    o.extract(ENTRY, macro)
    assert i.stacks is inbound
    assert o.stacks is outbound
    assert i.to_dict() == inbound.to_dict()


def test_script_extraction():
    result = ScriptResult(text="ok", color="green")
    macro = SimpleNamespace(macro_type=MacroType.SCRIPT, store={"abc": result})
    matrix = ScriptTest()
    matrix.extract(SlaveRequestMatrixEntry(type="TEST_SCRIPT", params="abc"), macro)
    payload = matrix.to_dict()
    assert payload["Key"] == "abc"
    assert payload["Text"] == "ok"
    assert payload["Color"] == "green"


def test_script_extraction_missing_key():
    macro = SimpleNamespace(macro_type=MacroType.SCRIPT, store={})
    matrix = ScriptTest()
    matrix.extract(SlaveRequestMatrixEntry(params="zzz"), macro)
    assert matrix.key == "zzz"
    assert matrix.result == ScriptResult()


def test_payload_json():
    assert to_json(HTTPPing(value=3)) == '{"Value":3}'
    assert to_json(InvalidMatrix()) == "{}"


def test_extract_macros_dedup_and_order():
    found = extract_macros_from_matrices([HTTPPing(), AverageSpeed(), RTTPing(), MaxSpeed()])
    assert found == [MacroType.PING, MacroType.SPEED]


def test_extract_macros_drops_invalid():
    assert extract_macros_from_matrices([InvalidMatrix(), UDPType()]) == [MacroType.UDP]