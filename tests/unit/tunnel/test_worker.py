from burrow.core.types import CloudflareConfig
from burrow.tunnel import worker


def test_script_fills_cookie_placeholders():
    source = worker.script()

    assert "__COOKIE__" not in source
    assert "burrow-sandbox-auth" in source
    assert str(worker.COOKIE_MAX_AGE) in source


def test_metadata_bindings():
    config = CloudflareConfig(websocket_url="wss://console.example.com/cable")

    metadata = worker.metadata("a1b2c3", "tok", config)

    assert metadata["main_module"] == "worker.js"
    bindings = {b["name"]: b["text"] for b in metadata["bindings"]}
    assert bindings["ACCESS_TOKEN"] == "tok"
    assert bindings["SANDBOX_SLUG"] == "a1b2c3"
    assert bindings["WS_URL"] == "wss://console.example.com/cable"
    assert bindings["API_URL"] == worker.DEFAULT_API_URL
