"""Local filesystem store: kubeconfig files and directories searched recursively."""

from __future__ import annotations

import asyncio
import fnmatch
import os
from pathlib import Path

import structlog

from kube_switch.config import StoreConfig
from kube_switch.errors import KubeconfigError, StoreFetchError, StoreInitError
from kube_switch.kubeconfig import context_names
from kube_switch.stores.base import KubeconfigStore

log = structlog.get_logger()


class FilesystemStore(KubeconfigStore):
    """Kubeconfigs found under local paths.

    A configured file is used as-is. A configured directory is walked
    recursively for files whose name matches the kubeconfig name, which may
    be a glob such as ``*.yaml``.
    """

    def __init__(self, store_config: StoreConfig, kubeconfig_name: str) -> None:
        super().__init__(store_config)
        self._kubeconfig_name = kubeconfig_name
        self._paths: list[Path] = []
        for raw in store_config.paths:
            path = Path(os.path.expandvars(os.path.expanduser(raw)))
            if not path.exists():
                msg = f"kubeconfig path {str(path)!r} does not exist"
                raise StoreInitError(msg, self.id, self.kind)
            self._paths.append(path)

    def _discover(self) -> list[Path]:
        found: list[Path] = []
        for root in self._paths:
            if root.is_file():
                found.append(root)
                continue
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames.sort()
                for filename in sorted(filenames):
                    if fnmatch.fnmatch(filename, self._kubeconfig_name):
                        found.append(Path(dirpath) / filename)
        return found

    def _read_contexts(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for path in self._discover():
            try:
                names = context_names(path.read_bytes())
            except (OSError, KubeconfigError) as e:
                log.warning("skipping_unreadable_kubeconfig", store=self.id, path=str(path), error=str(e))
                continue
            for name in names:
                # First file wins when the same context name appears twice.
                mapping.setdefault(name, str(path))
        return mapping

    async def list_contexts(self) -> dict[str, str]:
        contexts = await asyncio.to_thread(self._read_contexts)
        log.debug("filesystem_store_listed", store=self.id, contexts=len(contexts))
        return contexts

    async def get_kubeconfig(self, path: str) -> bytes:
        try:
            return await asyncio.to_thread(Path(path).read_bytes)
        except OSError as e:
            log.error("failed_to_read_kubeconfig", store=self.id, path=path)
            raise StoreFetchError(str(e), self.id, self.kind) from e
