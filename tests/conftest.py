"""Shared test fixtures: kubeconfig documents, store configs, and a counting fake store."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from kube_switch.config import StoreConfig, StoreKind
from kube_switch.stores.base import KubeconfigStore


def make_kubeconfig(*contexts: str) -> bytes:
    """Create a minimal kubeconfig document declaring the given contexts."""
    doc: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{"name": c, "cluster": {"server": f"https://{c}.example.com"}} for c in contexts],
        "users": [{"name": c, "user": {"token": "t"}} for c in contexts],
        "contexts": [{"name": c, "context": {"cluster": c, "user": c}} for c in contexts],
    }
    if contexts:
        doc["current-context"] = contexts[0]
    return yaml.safe_dump(doc).encode()


class CountingStore(KubeconfigStore):
    """In-memory store that records every call reaching it."""

    def __init__(
        self,
        store_config: StoreConfig,
        contexts: dict[str, str] | None = None,
        kubeconfigs: dict[str, bytes] | None = None,
    ) -> None:
        super().__init__(store_config)
        self.contexts = contexts or {}
        self.kubeconfigs = kubeconfigs or {}
        self.list_calls = 0
        self.get_calls: list[str] = []
        self.fail: Exception | None = None

    async def list_contexts(self) -> dict[str, str]:
        self.list_calls += 1
        # Yield so concurrent callers can interleave.
        await asyncio.sleep(0)
        if self.fail is not None:
            raise self.fail
        return dict(self.contexts)

    async def get_kubeconfig(self, path: str) -> bytes:
        self.get_calls.append(path)
        await asyncio.sleep(0)
        if self.fail is not None:
            raise self.fail
        return self.kubeconfigs[path]


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """State directory that does not exist yet."""
    return tmp_path / "switch-state"


@pytest.fixture
def kubeconfig_factory() -> Callable[..., bytes]:
    return make_kubeconfig


@pytest.fixture
def store_config_factory() -> Callable[..., StoreConfig]:
    def _make(kind: StoreKind = StoreKind.FILESYSTEM, **kwargs: Any) -> StoreConfig:
        kwargs.setdefault("paths", ("/tmp/kubeconfigs",))
        return StoreConfig(kind=kind, **kwargs)

    return _make


@pytest.fixture
def counting_store_factory(store_config_factory: Callable[..., StoreConfig]) -> Callable[..., CountingStore]:
    def _make(
        kind: StoreKind = StoreKind.FILESYSTEM,
        contexts: dict[str, str] | None = None,
        kubeconfigs: dict[str, bytes] | None = None,
        **config_kwargs: Any,
    ) -> CountingStore:
        return CountingStore(store_config_factory(kind, **config_kwargs), contexts, kubeconfigs)

    return _make
