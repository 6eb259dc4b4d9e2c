from __future__ import annotations

import io
import json
import urllib.error
from unittest import mock

import pytest

from cockpit.adapters import EchoAdapter, OpenAIAdapter
from cockpit.adapters.base import split_messages
from cockpit.config import AdapterConfig, AppConfig
from cockpit.service import AdapterRegistry, HeadlessService


def _service() -> HeadlessService:
    return HeadlessService(
        AppConfig(
            default_adapter="echo",
            adapters=[
                AdapterConfig(name="echo", type="echo", settings={"prefix": "> "}),
                AdapterConfig(name="openai", type="openai"),
            ],
        )
    )


def test_split_messages_single_user_turn() -> None:
    system, prompt = split_messages(
        [{"role": "system", "content": "be brief"}, {"role": "user", "content": "hi"}]
    )
    assert system == "be brief"
    assert prompt == "hi"


def test_split_messages_transcript() -> None:
    system, prompt = split_messages(
        [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": ""},
            {"role": "user", "content": "bye"},
        ]
    )
    assert system is None
    assert prompt == "User: hi\n\nAssistant: hello\n\nUser: bye"


def test_service_resolves_and_caches_default_adapter() -> None:
    svc = _service()
    adapter = svc.resolve_adapter()
    assert isinstance(adapter, EchoAdapter)
    assert svc.resolve_adapter() is adapter
    assert svc.complete("ping", system="sys") == "> sys\nping"
    assert svc.chat([{"role": "user", "content": "ping"}]) == "> ping"


def test_scoped_adapter_does_not_touch_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    svc = _service()
    cached = svc.resolve_adapter("openai")
    assert cached.is_available() is False

    scoped = svc.scoped_adapter("openai", {"api_key": "sk-request"})
    assert scoped is not cached
    assert scoped.is_available() is True
    assert "api_key" not in svc.resolve_adapter("openai").settings


def test_apply_secrets_rebuilds_adapter(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    svc = _service()
    before = svc.resolve_adapter("openai")
    svc.apply_secrets(by_type={"openai": {"api_key": "sk-type"}})
    after = svc.resolve_adapter("openai")
    assert after is not before
    assert after.settings["api_key"] == "sk-type"


def test_unknown_adapter_type() -> None:
    with pytest.raises(ValueError):
        AdapterRegistry().create(AdapterConfig(name="x", type="nope"))


def test_no_enabled_adapters() -> None:
    svc = HeadlessService(AppConfig(adapters=[AdapterConfig(name="echo", type="echo", enabled=False)]))
    with pytest.raises(RuntimeError):
        svc.resolve_adapter()


def test_openai_local_base_url_needs_no_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    adapter = OpenAIAdapter("local", {"base_url": "http://127.0.0.1:1234/v1/"})
    assert adapter.is_available()
    assert adapter.resource_hint() == "local"
    assert adapter._build_url("chat/completions") == "http://127.0.0.1:1234/v1/chat/completions"


def test_openai_chat_posts_and_extracts_text() -> None:
    adapter = OpenAIAdapter("openai", {"api_key": "sk-test", "temperature": 0.1})
    body = json.dumps({"choices": [{"message": {"content": "pong"}}]}).encode("utf-8")
    response = mock.MagicMock()
    response.__enter__.return_value.read.return_value = body

    with mock.patch("urllib.request.urlopen", return_value=response) as urlopen:
        text = adapter.complete("ping", system="sys", model="gpt-test")

    assert text == "pong"
    request = urlopen.call_args.args[0]
    assert request.full_url == "https://api.openai.com/v1/chat/completions"
    assert request.get_header("Authorization") == "Bearer sk-test"
    payload = json.loads(request.data.decode("utf-8"))
    assert payload["model"] == "gpt-test"
    assert payload["temperature"] == 0.1
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]


def test_openai_http_error_is_runtime_error() -> None:
    adapter = OpenAIAdapter("openai", {"api_key": "sk-test"})
    error = urllib.error.HTTPError(
        "https://api.openai.com/v1/chat/completions", 401, "Unauthorized", {}, io.BytesIO(b"bad key")
    )
    with mock.patch("urllib.request.urlopen", side_effect=error):
        with pytest.raises(RuntimeError, match="401 bad key"):
            adapter.complete("ping")


def test_openai_missing_key_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="API key missing"):
        OpenAIAdapter("openai").complete("ping")


def test_extract_text_handles_content_parts() -> None:
    data = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "image"}, {"type": "text", "text": "b"}]}}]}
    assert OpenAIAdapter._extract_text(data) == "ab"
    assert OpenAIAdapter._extract_text({}) == ""
