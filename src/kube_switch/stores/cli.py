"""Shared plumbing for stores backed by a cloud provider CLI.

Wraps the provider binary via subprocess with JSON output.
"""

from __future__ import annotations

import asyncio
import json
import shutil
import subprocess
from typing import Any

import structlog

from kube_switch.config import StoreConfig
from kube_switch.errors import StoreFetchError, StoreInitError
from kube_switch.stores.base import KubeconfigStore

log = structlog.get_logger()

CLI_TIMEOUT_SECONDS = 60


class CliStore(KubeconfigStore):
    """Base class for stores that shell out to a provider CLI.

    Subclasses set ``binary`` and implement the store contract with ``_run_json``.
    """

    binary: str = ""

    def __init__(self, store_config: StoreConfig, binary_path: str | None = None) -> None:
        super().__init__(store_config)
        self._binary = self._find_binary(binary_path)
        self._log = log.bind(store=self.id, binary=self._binary)

    def _find_binary(self, binary_path: str | None) -> str:
        found = shutil.which(binary_path or self.binary)
        if not found:
            msg = f"{self.binary} binary not found in PATH"
            raise StoreInitError(msg, self.id, self.kind)
        return found

    def _run(self, args: list[str]) -> str:
        cmd = [self._binary, *args]
        self._log.debug("running_cli_command", args=args)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=CLI_TIMEOUT_SECONDS,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            msg = f"{self.binary} timed out after {CLI_TIMEOUT_SECONDS}s"
            raise StoreFetchError(msg, self.id, self.kind) from e
        except OSError as e:
            raise StoreFetchError(str(e), self.id, self.kind) from e

        if result.returncode != 0:
            stderr = result.stderr.strip()
            self._log.error("cli_command_failed", args=args, returncode=result.returncode, stderr=stderr)
            msg = f"{self.binary} exited with {result.returncode}: {stderr}"
            raise StoreFetchError(msg, self.id, self.kind)
        return result.stdout

    async def _run_json(self, args: list[str]) -> Any:
        output = await asyncio.to_thread(self._run, args)
        try:
            return json.loads(output) if output.strip() else None
        except json.JSONDecodeError as e:
            msg = f"{self.binary} returned invalid JSON: {e}"
            raise StoreFetchError(msg, self.id, self.kind) from e
