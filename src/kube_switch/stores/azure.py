"""Azure store: AKS clusters of one subscription, via the ARM management API."""

from __future__ import annotations

import asyncio
import threading

import structlog
from azure.identity import DefaultAzureCredential
from azure.mgmt.containerservice import ContainerServiceClient

from kube_switch.config import StoreConfig
from kube_switch.errors import StoreFetchError, StoreInitError
from kube_switch.stores.base import KubeconfigStore

log = structlog.get_logger()


def _resource_group_from_id(resource_id: str) -> str:
    """Extract the resource group segment from an ARM resource id."""
    parts = resource_id.split("/")
    for i, part in enumerate(parts[:-1]):
        if part.lower() == "resourcegroups":
            return parts[i + 1]
    msg = f"no resource group in resource id {resource_id!r}"
    raise ValueError(msg)


class AzureStore(KubeconfigStore):
    """AKS clusters in one subscription.

    The store's paths, if any, restrict listing to those resource groups.
    Context names are ``<resourceGroup>--<cluster>``; paths are
    ``<resourceGroup>/<cluster>``.
    """

    def __init__(self, store_config: StoreConfig) -> None:
        super().__init__(store_config)
        subscription_id = store_config.config.get("subscriptionID")
        if not subscription_id:
            msg = "'subscriptionID' is required in the store config"
            raise StoreInitError(msg, self.id, self.kind)
        self._subscription_id = str(subscription_id)
        self._resource_groups = list(store_config.paths)

        # DefaultAzureCredential walks env vars, workload identity, managed
        # identity and the az CLI cache. Building it here surfaces a broken
        # credential chain at construction time.
        try:
            self._credential = DefaultAzureCredential()
        except Exception as e:
            log.error("failed_to_create_azure_credential", store=self.id)
            raise StoreInitError(str(e), self.id, self.kind) from e

        self._container_client: ContainerServiceClient | None = None
        self._lock = threading.Lock()

    def _get_container_client(self) -> ContainerServiceClient:
        with self._lock:
            if self._container_client is None:
                self._container_client = ContainerServiceClient(
                    credential=self._credential,
                    subscription_id=self._subscription_id,
                )
            return self._container_client

    def _list_clusters(self) -> dict[str, str]:
        client = self._get_container_client()
        if self._resource_groups:
            pages = [client.managed_clusters.list_by_resource_group(rg) for rg in self._resource_groups]
        else:
            pages = [client.managed_clusters.list()]

        mapping: dict[str, str] = {}
        for page in pages:
            for cluster in page:
                resource_group = _resource_group_from_id(cluster.id)
                mapping[f"{resource_group}--{cluster.name}"] = f"{resource_group}/{cluster.name}"
        return mapping

    async def list_contexts(self) -> dict[str, str]:
        try:
            contexts = await asyncio.to_thread(self._list_clusters)
        except Exception as e:
            log.error("failed_to_list_aks_clusters", store=self.id, subscription=self._subscription_id)
            raise StoreFetchError(str(e), self.id, self.kind) from e
        log.debug("azure_store_listed", store=self.id, contexts=len(contexts))
        return contexts

    async def get_kubeconfig(self, path: str) -> bytes:
        resource_group, _, cluster_name = path.partition("/")
        if not cluster_name:
            msg = f"invalid AKS path {path!r}, expected '<resourceGroup>/<cluster>'"
            raise StoreFetchError(msg, self.id, self.kind)

        client = self._get_container_client()
        try:
            credentials = await asyncio.to_thread(
                client.managed_clusters.list_cluster_user_credentials,
                resource_group,
                cluster_name,
            )
        except Exception as e:
            log.error("failed_to_get_aks_credentials", store=self.id, cluster=path)
            raise StoreFetchError(str(e), self.id, self.kind) from e

        # The API returns one kubeconfig per requested format; the first is the default.
        if not credentials.kubeconfigs:
            msg = f"no kubeconfig returned for cluster {path!r}"
            raise StoreFetchError(msg, self.id, self.kind)
        return bytes(credentials.kubeconfigs[0].value)

    def _close(self) -> None:
        with self._lock:
            if self._container_client is not None:
                self._container_client.close()
                self._container_client = None
        self._credential.close()

    async def aclose(self) -> None:
        await asyncio.to_thread(self._close)
