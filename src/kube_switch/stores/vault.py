"""HashiCorp Vault store: kubeconfigs kept as secrets in a KV v1 engine."""

from __future__ import annotations

import base64
import binascii
import os
from pathlib import Path
from typing import Any

import httpx
import structlog

from kube_switch.config import StoreConfig
from kube_switch.errors import KubeconfigError, StoreFetchError, StoreInitError
from kube_switch.kubeconfig import context_names
from kube_switch.stores.base import KubeconfigStore

log = structlog.get_logger()

VAULT_TOKEN_FILE = "~/.vault-token"
REQUEST_TIMEOUT_SECONDS = 10.0


def _read_token_file() -> str | None:
    path = Path(os.path.expanduser(VAULT_TOKEN_FILE))
    if not path.is_file():
        return None
    token = path.read_text().strip()
    return token or None


class VaultStore(KubeconfigStore):
    """Kubeconfigs stored under one or more Vault KV paths.

    Each secret below a configured path holds a kubeconfig in the field named
    after the kubeconfig name (``config`` by default), either as plain YAML
    or base64 encoded.
    """

    def __init__(
        self,
        store_config: StoreConfig,
        kubeconfig_name: str,
        vault_address: str | None = None,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(store_config)
        self._kubeconfig_name = kubeconfig_name
        address = store_config.config.get("vaultAPIAddress") or vault_address
        if not address:
            msg = "no Vault address configured: set 'vaultAPIAddress' in the store config or VAULT_ADDR"
            raise StoreInitError(msg, self.id, self.kind)
        token = token or os.environ.get("VAULT_TOKEN") or _read_token_file()
        if not token:
            msg = f"no Vault token found in VAULT_TOKEN or {VAULT_TOKEN_FILE}"
            raise StoreInitError(msg, self.id, self.kind)

        self._address = str(address).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._address,
            headers={"X-Vault-Token": token},
            timeout=httpx.Timeout(REQUEST_TIMEOUT_SECONDS),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, path: str, *, list_keys: bool = False) -> dict[str, Any] | None:
        params = {"list": "true"} if list_keys else None
        try:
            response = await self._client.get(f"/v1/{path.strip('/')}", params=params)
        except httpx.HTTPError as e:
            log.error("vault_request_failed", store=self.id, path=path, error=str(e))
            raise StoreFetchError(f"request to {self._address} failed: {e}", self.id, self.kind) from e

        if response.status_code == 404:
            return None
        if response.status_code == 403:
            msg = f"permission denied reading {path!r}"
            raise StoreFetchError(msg, self.id, self.kind)
        if response.is_error:
            msg = f"unexpected status {response.status_code} reading {path!r}"
            raise StoreFetchError(msg, self.id, self.kind)
        body: dict[str, Any] = response.json()
        return body.get("data") or {}

    async def _walk(self, root: str) -> list[str]:
        """Return every secret path below ``root``, descending into sub-paths."""
        secrets: list[str] = []
        pending = [root.strip("/")]
        while pending:
            current = pending.pop()
            listing = await self._request(current, list_keys=True)
            if listing is None:
                # Not a directory; treat the path itself as a secret.
                secrets.append(current)
                continue
            for key in listing.get("keys") or []:
                child = f"{current}/{key}".rstrip("/")
                if str(key).endswith("/"):
                    pending.append(child)
                else:
                    secrets.append(child)
        return sorted(secrets)

    async def list_contexts(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for root in self.config.paths:
            for secret_path in await self._walk(root):
                try:
                    raw = await self.get_kubeconfig(secret_path)
                    names = context_names(raw)
                except (StoreFetchError, KubeconfigError) as e:
                    log.warning("skipping_vault_secret", store=self.id, path=secret_path, error=str(e))
                    continue
                self._content_fetched(secret_path, raw)
                for name in names:
                    mapping.setdefault(name, secret_path)
        log.debug("vault_store_listed", store=self.id, contexts=len(mapping))
        return mapping

    async def get_kubeconfig(self, path: str) -> bytes:
        data = await self._request(path)
        if data is None:
            msg = f"secret {path!r} not found"
            raise StoreFetchError(msg, self.id, self.kind)
        value = data.get(self._kubeconfig_name)
        if not value:
            msg = f"secret {path!r} has no field {self._kubeconfig_name!r}"
            raise StoreFetchError(msg, self.id, self.kind)
        try:
            return base64.b64decode(str(value), validate=True)
        except (binascii.Error, ValueError):
            return str(value).encode()
