"""Exception hierarchy for store construction, fetches, and persisted state."""

from __future__ import annotations


class SwitchError(Exception):
    """Base class for every error raised by kube_switch."""


class ConfigError(SwitchError, ValueError):
    """The switch configuration is invalid. Raised before any store is built."""


class KubeconfigError(SwitchError, ValueError):
    """A blob could not be read as a kubeconfig document."""


class StoreInitError(SwitchError):
    """A store could not be constructed (credentials, endpoint, local path)."""

    def __init__(self, message: str, store_id: str, kind: str) -> None:
        super().__init__(f"store {store_id!r} (kind {kind}): {message}")
        self.store_id = store_id
        self.kind = kind


class StoreFetchError(SwitchError):
    """A live call against a store's backend failed."""

    def __init__(self, message: str, store_id: str, kind: str) -> None:
        super().__init__(f"store {store_id!r} (kind {kind}): {message}")
        self.store_id = store_id
        self.kind = kind


class CorruptStateError(SwitchError):
    """An index or index state file exists but cannot be deserialized.

    Always fatal: silently discarding the file could hide a staleness bug.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"could not read state file {path!r}: {reason}")
        self.path = path
