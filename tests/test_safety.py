from __future__ import annotations

from pathlib import Path

import pytest

from cockpit.safety import command_looks_unsafe, is_path_inside, resolve_path


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /",
        "rm -r -f /",
        "rm -f -r /",
        "rm --recursive --force /",
        "rm -R /",
        "rm -rf //",
        "rm -rf \"/\"",
        "rm -rf -- /",
        "sudo rm -rf / ",
        "rm -fr /*",
        "rm -rf --no-preserve-root /",
        "RM  -RF   /",
        "format c:",
        "diskpart /s script.txt",
        "shutdown -r now",
        "reg delete HKLM\\Software\\Foo",
        "del /f /s /q c:\\",
        "mkfs.ext4 /dev/sdb1",
        "dd if=/dev/zero of=/dev/sda bs=1M",
        ":(){ :|:& };:",
        "echo hi && rm -rf / ; echo bye",
    ],
)
def test_denylist_blocks_destructive_commands(command: str) -> None:
    assert command_looks_unsafe(command)


@pytest.mark.parametrize(
    "command",
    [
        "rm -rf /tmp/build",
        "rm -rf ./dist",
        "rm -f /tmp/lock",
        "rm -r -f /var/tmp/cache",
        "rm /",
        "ls -la /",
        "npm test",
        "git status",
        "echo formatting done",
        "",
    ],
)
def test_denylist_allows_ordinary_commands(command: str) -> None:
    assert not command_looks_unsafe(command)


def test_resolve_path_defaults_to_base(tmp_path: Path) -> None:
    assert resolve_path(None, base=tmp_path) == tmp_path.resolve()
    assert resolve_path("   ", base=tmp_path) == tmp_path.resolve()
    assert resolve_path("a/../b", base=tmp_path) == (tmp_path / "b").resolve()
    assert resolve_path(str(tmp_path / "x")) == (tmp_path / "x").resolve()


def test_is_path_inside(tmp_path: Path) -> None:
    root = tmp_path / "ws"
    assert is_path_inside(root, root)
    assert is_path_inside(root / "sub" / "deep", root)
    assert not is_path_inside(tmp_path, root)
    assert not is_path_inside(tmp_path / "ws-other", root)
    assert not is_path_inside(root / ".." / "escape", root)
    assert not is_path_inside("/etc", root)


def test_is_path_inside_follows_symlinks(tmp_path: Path) -> None:
    root = tmp_path / "ws"
    root.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)
    assert not is_path_inside(root / "link", root)
