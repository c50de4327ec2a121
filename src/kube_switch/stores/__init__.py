"""Kubeconfig store implementations and the factory keyed by store kind."""

from __future__ import annotations

from collections.abc import Callable

from kube_switch.config import ResolveOptions, StoreConfig, StoreKind, SwitchConfig, effective_kubeconfig_name
from kube_switch.stores.azure import AzureStore
from kube_switch.stores.base import KubeconfigStore
from kube_switch.stores.eks import EKSStore
from kube_switch.stores.filesystem import FilesystemStore
from kube_switch.stores.gke import GKEStore
from kube_switch.stores.vault import VaultStore

StoreFactory = Callable[[StoreConfig, SwitchConfig, ResolveOptions], KubeconfigStore]

_FACTORIES: dict[StoreKind, StoreFactory] = {
    StoreKind.FILESYSTEM: lambda s, c, o: FilesystemStore(s, effective_kubeconfig_name(s, c, o)),
    StoreKind.VAULT: lambda s, c, o: VaultStore(s, effective_kubeconfig_name(s, c, o), o.vault_api_address),
    StoreKind.AZURE: lambda s, c, o: AzureStore(s),
    StoreKind.GKE: lambda s, c, o: GKEStore(s),
    StoreKind.EKS: lambda s, c, o: EKSStore(s),
}

_missing = set(StoreKind) - set(_FACTORIES)
if _missing:
    msg = f"no store factory for kinds: {sorted(_missing)}"
    raise RuntimeError(msg)


def new_store(store_config: StoreConfig, config: SwitchConfig, options: ResolveOptions) -> KubeconfigStore:
    """Construct the store for ``store_config``.

    Raises:
        StoreInitError: If the backend cannot be set up.
    """
    return _FACTORIES[store_config.kind](store_config, config, options)


__all__ = [
    "AzureStore",
    "EKSStore",
    "FilesystemStore",
    "GKEStore",
    "KubeconfigStore",
    "VaultStore",
    "new_store",
]
