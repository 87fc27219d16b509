"""Shared pytest fixtures for kodo CLI tests."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import IO

import pytest

# =============================================================================
# Environment Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the settings file at a temp path and clear QINIU_* variables.

    Keeps tests independent of the developer's own configuration.
    """
    import os

    for name in list(os.environ):
        if name.startswith("QINIU_"):
            monkeypatch.delenv(name)
    config_file = tmp_path / "kodo-settings" / "config.yaml"
    monkeypatch.setenv("KODO_CONFIG", str(config_file))
    return config_file


# =============================================================================
# Source Trees
# =============================================================================


@pytest.fixture
def photo_tree(tmp_path: Path) -> Path:
    """photos/ with a.jpg and sub/b.jpg."""
    root = tmp_path / "photos"
    (root / "sub").mkdir(parents=True)
    (root / "a.jpg").write_bytes(b"a" * 100)
    (root / "sub" / "b.jpg").write_bytes(b"b" * 200)
    return root


@pytest.fixture
def many_files(tmp_path: Path) -> Path:
    """A flat directory holding 65 small files."""
    root = tmp_path / "many"
    root.mkdir()
    for i in range(65):
        (root / f"file{i:02d}.txt").write_text(str(i))
    return root


# =============================================================================
# Fake Object Store Client
# =============================================================================


class FakeClient:
    """Records uploads; raises for keys listed in fail_keys.

    Safe to share between worker threads.
    """

    def __init__(self, fail_keys: dict[str, Exception] | None = None) -> None:
        self.fail_keys = fail_keys or {}
        self.calls: list[dict[str, object]] = []
        self.threads: set[str] = set()
        self._lock = threading.Lock()

    def upload(
        self,
        object_key: str,
        content: IO[bytes],
        size: int,
        part_size: int | None = None,
        worker_hint: int | None = None,
    ) -> None:
        data = content.read()
        with self._lock:
            self.calls.append(
                {
                    "key": object_key,
                    "data": data,
                    "size": size,
                    "part_size": part_size,
                    "worker_hint": worker_hint,
                }
            )
            self.threads.add(threading.current_thread().name)
        if object_key in self.fail_keys:
            raise self.fail_keys[object_key]

    @property
    def keys(self) -> list[str]:
        return [str(call["key"]) for call in self.calls]


@pytest.fixture
def fake_client() -> FakeClient:
    """A FakeClient that never fails."""
    return FakeClient()


@pytest.fixture
def client_factory() -> type[FakeClient]:
    """The FakeClient class, for tests that need failing keys."""
    return FakeClient
