"""The store contract shared by every kubeconfig source."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable

from kube_switch.config import StoreConfig, StoreKind

ContentListener = Callable[[str, bytes], None]


class KubeconfigStore(ABC):
    """A source of kubeconfig contexts.

    ``list_contexts`` returns the available context names as the keys of a
    mapping whose values are the path (or backend identifier) holding each
    context. ``get_kubeconfig`` fetches the content behind such a path.

    Stores that read kubeconfig content while listing report it through
    ``_content_fetched`` so a wrapping cache can keep it.
    """

    def __init__(self, store_config: StoreConfig) -> None:
        self._store_config = store_config
        self._content_listener: ContentListener | None = None

    @property
    def config(self) -> StoreConfig:
        return self._store_config

    @property
    def kind(self) -> StoreKind:
        return self._store_config.kind

    @property
    def id(self) -> str:
        return self._store_config.store_id

    def set_content_listener(self, listener: ContentListener | None) -> None:
        self._content_listener = listener

    def _content_fetched(self, path: str, content: bytes) -> None:
        if self._content_listener is not None:
            self._content_listener(path, content)

    @abstractmethod
    async def list_contexts(self) -> dict[str, str]:
        """Return available context names mapped to the path that holds each one."""

    @abstractmethod
    async def get_kubeconfig(self, path: str) -> bytes:
        """Return the kubeconfig content stored at ``path``."""

    async def aclose(self) -> None:
        """Release backend connections. Stores that hold none keep this default."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"
