"""Tests for VaultStore against an in-process KV v1 fake served through httpx.MockTransport."""

from __future__ import annotations

import base64
import os
from pathlib import Path
from typing import Any
from unittest.mock import patch

import httpx
import pytest

from kube_switch.cache import new_cache
from kube_switch.config import StoreConfig, StoreKind
from kube_switch.errors import StoreFetchError, StoreInitError
from kube_switch.resolver import ResolveResult
from kube_switch.stores import VaultStore


class FakeVault:
    """Serves LIST and GET for a flat dict of secret path -> secret data."""

    def __init__(self, secrets: dict[str, dict[str, Any]], denied: tuple[str, ...] = ()) -> None:
        self.secrets = secrets
        self.denied = denied
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1/")
        if request.headers.get("X-Vault-Token") != "s.token":
            return httpx.Response(403, json={"errors": ["permission denied"]})
        if path in self.denied:
            return httpx.Response(403, json={"errors": ["permission denied"]})

        if request.url.params.get("list") == "true":
            prefix = f"{path}/"
            keys: set[str] = set()
            for secret_path in self.secrets:
                if secret_path.startswith(prefix):
                    rest = secret_path[len(prefix) :]
                    head, sep, _ = rest.partition("/")
                    keys.add(head + sep)
            if not keys:
                return httpx.Response(404, json={"errors": []})
            return httpx.Response(200, json={"data": {"keys": sorted(keys)}})

        if path in self.secrets:
            return httpx.Response(200, json={"data": self.secrets[path]})
        return httpx.Response(404, json={"errors": []})


def _store(
    vault: FakeVault | httpx.MockTransport,
    paths: tuple[str, ...] = ("secret/clusters",),
    kubeconfig_name: str = "config",
) -> VaultStore:
    transport = vault if isinstance(vault, httpx.MockTransport) else httpx.MockTransport(vault)
    store_config = StoreConfig(kind=StoreKind.VAULT, paths=paths, config={"vaultAPIAddress": "https://vault.test"})
    return VaultStore(store_config, kubeconfig_name, token="s.token", transport=transport)


class TestConstruction:
    def test_address_required(self) -> None:
        with pytest.raises(StoreInitError, match="no Vault address"):
            VaultStore(StoreConfig(kind=StoreKind.VAULT, paths=("secret",)), "config", token="t")

    def test_address_from_options(self) -> None:
        store = VaultStore(
            StoreConfig(kind=StoreKind.VAULT, paths=("secret",)), "config", vault_address="https://v", token="t"
        )
        assert store.id == "vault"

    def test_token_from_environment(self) -> None:
        with patch.dict(os.environ, {"VAULT_TOKEN": "from-env"}):
            store = VaultStore(
                StoreConfig(kind=StoreKind.VAULT, paths=("secret",)), "config", vault_address="https://v"
            )
        assert store._client.headers["X-Vault-Token"] == "from-env"

    def test_token_from_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("VAULT_TOKEN", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / ".vault-token").write_text("from-file\n")

        store = VaultStore(StoreConfig(kind=StoreKind.VAULT, paths=("secret",)), "config", vault_address="https://v")

        assert store._client.headers["X-Vault-Token"] == "from-file"

    def test_token_required(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("VAULT_TOKEN", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))
        with pytest.raises(StoreInitError, match="no Vault token"):
            VaultStore(StoreConfig(kind=StoreKind.VAULT, paths=("secret",)), "config", vault_address="https://v")


class TestListContexts:
    """Tests for walking Vault paths into a context mapping."""

    async def test_walks_nested_paths(self, kubeconfig_factory) -> None:
        encoded = base64.b64encode(kubeconfig_factory("prod", "prod-ro")).decode()
        vault = FakeVault(
            {
                "secret/clusters/dev": {"config": kubeconfig_factory("dev").decode()},
                "secret/clusters/team/prod": {"config": encoded},
            }
        )

        contexts = await _store(vault).list_contexts()

        assert contexts == {
            "dev": "secret/clusters/dev",
            "prod": "secret/clusters/team/prod",
            "prod-ro": "secret/clusters/team/prod",
        }
        assert all(r.headers["X-Vault-Token"] == "s.token" for r in vault.requests)

    async def test_configured_path_may_be_a_secret(self, kubeconfig_factory) -> None:
        vault = FakeVault({"secret/single": {"config": kubeconfig_factory("solo").decode()}})

        assert await _store(vault, paths=("secret/single",)).list_contexts() == {"solo": "secret/single"}

    async def test_secret_without_kubeconfig_field_is_skipped(self, kubeconfig_factory) -> None:
        vault = FakeVault(
            {
                "secret/clusters/dev": {"config": kubeconfig_factory("dev").decode()},
                "secret/clusters/other": {"password": "hunter2"},
            }
        )

        assert await _store(vault).list_contexts() == {"dev": "secret/clusters/dev"}

    async def test_custom_field_name(self, kubeconfig_factory) -> None:
        vault = FakeVault({"secret/clusters/dev": {"kubeconfig": kubeconfig_factory("dev").decode()}})

        assert await _store(vault, kubeconfig_name="kubeconfig").list_contexts() == {"dev": "secret/clusters/dev"}

    async def test_denied_listing_fails_the_store(self) -> None:
        vault = FakeVault({}, denied=("secret/clusters",))

        with pytest.raises(StoreFetchError, match="permission denied"):
            await _store(vault).list_contexts()

    async def test_server_error_fails_the_store(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))

        with pytest.raises(StoreFetchError, match="unexpected status 500"):
            await _store(transport).list_contexts()

    async def test_connection_error_fails_the_store(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StoreFetchError, match="connection refused"):
            await _store(httpx.MockTransport(handler)).list_contexts()


class TestGetKubeconfig:
    async def test_plain_yaml(self, kubeconfig_factory) -> None:
        vault = FakeVault({"secret/clusters/dev": {"config": kubeconfig_factory("dev").decode()}})

        assert await _store(vault).get_kubeconfig("secret/clusters/dev") == kubeconfig_factory("dev")

    async def test_base64_value_is_decoded(self, kubeconfig_factory) -> None:
        encoded = base64.b64encode(kubeconfig_factory("dev")).decode()
        vault = FakeVault({"secret/clusters/dev": {"config": encoded}})

        assert await _store(vault).get_kubeconfig("secret/clusters/dev") == kubeconfig_factory("dev")

    async def test_missing_secret(self) -> None:
        with pytest.raises(StoreFetchError, match="not found"):
            await _store(FakeVault({})).get_kubeconfig("secret/clusters/gone")

    async def test_aclose(self) -> None:
        store = _store(FakeVault({}))
        await store.aclose()
        assert store._client.is_closed


class TestCachedVaultStore:
    """Tests for a VaultStore behind the resolver's cache."""

    @staticmethod
    def _secret_reads(vault: FakeVault, path: str) -> list[httpx.Request]:
        return [r for r in vault.requests if r.url.path == f"/v1/{path}" and "list" not in r.url.params]

    async def test_secret_read_while_listing_is_not_fetched_again(self, kubeconfig_factory) -> None:
        vault = FakeVault({"secret/clusters/dev": {"config": kubeconfig_factory("dev").decode()}})
        cached = new_cache(_store(vault))

        contexts = await cached.list_contexts()
        content = await cached.get_kubeconfig(contexts["dev"])

        assert content == kubeconfig_factory("dev")
        assert len(self._secret_reads(vault, "secret/clusters/dev")) == 1

    async def test_skipped_secret_is_not_cached(self, kubeconfig_factory) -> None:
        vault = FakeVault(
            {
                "secret/clusters/dev": {"config": kubeconfig_factory("dev").decode()},
                "secret/clusters/other": {"password": "hunter2"},
            }
        )
        cached = new_cache(_store(vault))

        await cached.list_contexts()

        with pytest.raises(StoreFetchError):
            await cached.get_kubeconfig("secret/clusters/other")
        assert len(self._secret_reads(vault, "secret/clusters/other")) == 2

    async def test_closing_cached_store_closes_client(self) -> None:
        store = _store(FakeVault({}))

        await new_cache(store).aclose()

        assert store._client.is_closed

    async def test_closing_resolve_result_closes_client(self, kubeconfig_factory) -> None:
        store = _store(FakeVault({"secret/clusters/dev": {"config": kubeconfig_factory("dev").decode()}}))

        async with ResolveResult(stores=[new_cache(store)], contexts={}) as result:
            assert await result.stores[0].list_contexts() == {"dev": "secret/clusters/dev"}
            assert not store._client.is_closed

        assert store._client.is_closed
