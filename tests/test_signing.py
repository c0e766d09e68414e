import re

from miaospeed.models import SlaveRequest, SlaveRequestBasics, SlaveRequestNode, SlaveResponse
from miaospeed.signing import (
    GlobalConfig,
    hash_md5,
    hash_miaospeed,
    random_uuid,
    sign_request,
    to_json,
)


def _request():
    return SlaveRequest(
        basics=SlaveRequestBasics(id="job", invoker="42"),
        nodes=[SlaveRequestNode(name="node", payload="payload")],
    )


def test_to_json_escapes_html_characters():
    assert to_json({"a": "<&>"}) == '{"a":"\\u003c\\u0026\\u003e"}'


def test_to_json_none_is_null():
    assert to_json(None) == "null"


def test_to_json_uses_wire_keys():
    text = to_json(SlaveResponse(id="x", miaospeed_version="v"))
    assert '"MiaoSpeedVersion":"v"' in text
    assert '"Result":null' in text


def test_to_json_keeps_non_ascii():
    assert to_json(["测速"]) == '["测速"]'


def test_random_uuid_shape_and_uniqueness():
    first, second = random_uuid(), random_uuid()
    assert re.fullmatch(r"[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[0-9a-f]{4}-[0-9a-f]{12}", first)
    assert first != second


def test_hash_md5_of_empty_string():
    assert hash_md5("") == "d41d8cd98f00b204e9800998ecf8427e"


def test_hash_miaospeed_is_padded_urlsafe_base64():
    digest = hash_miaospeed("token", "request", "a|b")
    assert len(digest) == 88
    assert re.fullmatch(r"[A-Za-z0-9_\-]+==", digest)


def test_hash_miaospeed_empty_segment_uses_filler():
    assert hash_miaospeed("", "request", "x") == hash_miaospeed("SOME_TOKEN", "request", "x")


def test_hash_miaospeed_strips_build_token():
    assert hash_miaospeed("token", "r", " a|b \n") == hash_miaospeed("token", "r", "a|b")


def test_hash_miaospeed_depends_on_inputs():
    base = hash_miaospeed("token", "r", "a")
    assert hash_miaospeed("token", "r2", "a") != base
    assert hash_miaospeed("secret", "r", "a") != base
    assert hash_miaospeed("token", "r", "b") != base


def test_sign_request_ignores_challenge_and_vendor():
    request = _request()
    signature = sign_request("token", request, "build")
    request.challenge = "anything"
    request.vendor = "Clash"
    assert sign_request("token", request, "build") == signature


def test_sign_request_covers_nodes():
    request = _request()
    signature = sign_request("token", request, "build")
    request.nodes[0].payload = "changed"
    assert sign_request("token", request, "build") != signature


def test_global_config_verifies_own_signature():
    config = GlobalConfig(token="token")
    request = _request()
    request.challenge = config.sign_request(request)
    assert config.verify_request(request) is True


def test_global_config_rejects_tampered_request():
    config = GlobalConfig(token="token")
    request = _request()
    request.challenge = config.sign_request(request)
    request.basics.id = "other"
    assert config.verify_request(request) is False


def test_global_config_rejects_other_token():
    request = _request()
    request.challenge = GlobalConfig(token="token").sign_request(request)
    assert GlobalConfig(token="secret").verify_request(request) is False


def test_whitelist():
    assert GlobalConfig().in_whitelist("anyone") is True
    config = GlobalConfig(whitelist=["1111", "2222"])
    assert config.in_whitelist("2222") is True
    assert config.in_whitelist("3333") is False