from miaospeed import preconfigs
from miaospeed.preconfigs import EmbedConfig, build_netcat_payload


def test_netcat_payload_lines():
    payload = build_netcat_payload("/generate_204", "gstatic.com", "1.0")
    assert payload.split("\n") == [
        "GET /generate_204 HTTP/1.1",
        "Accept: */*",
        "Accept-Encoding: gzip, deflate",
        "Host: gstatic.com",
        "User-Agent: HTTPie/3.0.2 MiaoSpeed/1.0",
        "",
        "",
    ]


def test_netcat_payload_default_version():
    payload = build_netcat_payload("/", "example.com")
    assert payload.endswith("MiaoSpeed/" + preconfigs.VERSION + "\n\n")


def test_netcat_payload_keeps_percent_signs_in_path():
    payload = build_netcat_payload("/a%20b?q=%s", "example.com", "v")
    assert payload.startswith("GET /a%20b?q=%s HTTP/1.1\n")


def test_embed_config_instances_are_independent():
    first = EmbedConfig()
    second = EmbedConfig(build_token="token")
    first.script_geo = "function handler() {}"
    assert second.script_geo == ""
    assert second.build_token == "token"
    assert first.build_token == ""