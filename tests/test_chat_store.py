from __future__ import annotations

import json
from pathlib import Path

import pytest

from cockpit.chat_store import ChatStore


@pytest.fixture
def store(tmp_path: Path) -> ChatStore:
    return ChatStore(tmp_path / "data", tmp_path / "memory")


def test_create_and_list_threads(store: ChatStore) -> None:
    first = store.create_thread()
    second = store.create_thread("Release prep")
    assert first["title"] == "New chat 1"
    assert second["title"] == "Release prep"

    listed = store.list_threads()
    assert {t["id"] for t in listed} == {first["id"], second["id"]}
    assert all(t["count"] == 0 for t in listed)
    assert json.loads(store.chat_path.read_text(encoding="utf-8"))["threads"][0]["id"] == second["id"]


def test_first_user_message_retitles_thread(store: ChatStore) -> None:
    thread = store.create_thread()
    text = "Please refactor the parser so it reports line numbers in errors"
    store.append_message(thread["id"], "user", text)
    store.append_message(thread["id"], "assistant", "Sure.")

    loaded = store.get_thread(thread["id"])
    assert loaded["title"] == text[:48]
    assert [m["role"] for m in loaded["messages"]] == ["user", "assistant"]
    assert store.list_threads()[0]["count"] == 2


def test_named_thread_keeps_title(store: ChatStore) -> None:
    thread = store.create_thread("Keep me")
    store.append_message(thread["id"], "user", "hello")
    assert store.get_thread(thread["id"])["title"] == "Keep me"


def test_unknown_thread_and_role(store: ChatStore) -> None:
    assert store.get_thread("missing") is None
    assert store.append_message("missing", "user", "hi") is None
    with pytest.raises(ValueError):
        store.append_message("missing", "system", "hi")


def test_corrupt_store_reads_as_empty(store: ChatStore) -> None:
    store.data_dir.mkdir(parents=True)
    store.chat_path.write_text("{oops", encoding="utf-8")
    assert store.list_threads() == []


def test_memory_log_appends_flat_entries(store: ChatStore) -> None:
    path = store.log_memory_entry("t1", "user", "line one\nline two")
    store.log_memory_entry("t1", "assistant", "x" * 2000)

    assert path.parent == store.memory_dir
    assert path.suffix == ".md"
    content = path.read_text(encoding="utf-8")
    assert "| t1\n- user: line one line two\n" in content
    assert "- assistant: " + "x" * 1500 + "\n" in content
    assert "x" * 1501 not in content
