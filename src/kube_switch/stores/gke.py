"""GKE store: clusters of one or more Google Cloud projects, via gcloud."""

from __future__ import annotations

from typing import Any

import structlog

from kube_switch.config import StoreConfig
from kube_switch.errors import StoreFetchError, StoreInitError
from kube_switch.kubeconfig import build_exec_kubeconfig
from kube_switch.stores.cli import CliStore

log = structlog.get_logger()

AUTH_PLUGIN = "gke-gcloud-auth-plugin"


class GKEStore(CliStore):
    """GKE clusters listed with ``gcloud container clusters list``.

    Context names follow gcloud's own ``gke_<project>_<location>_<cluster>``
    scheme; paths are ``<project>/<location>/<cluster>``.
    """

    binary = "gcloud"

    def __init__(self, store_config: StoreConfig, binary_path: str | None = None) -> None:
        projects = store_config.config.get("projectIDs") or []
        if isinstance(projects, str):
            projects = [projects]
        if not projects:
            msg = "'projectIDs' is required in the store config"
            raise StoreInitError(msg, store_config.store_id, store_config.kind)
        self._projects = [str(p) for p in projects]
        super().__init__(store_config, binary_path)

    async def list_contexts(self) -> dict[str, str]:
        mapping: dict[str, str] = {}
        for project in self._projects:
            clusters: list[dict[str, Any]] = (
                await self._run_json(["container", "clusters", "list", "--project", project, "--format", "json"])
                or []
            )
            for cluster in clusters:
                name = cluster["name"]
                location = cluster.get("location") or cluster.get("zone", "")
                mapping[f"gke_{project}_{location}_{name}"] = f"{project}/{location}/{name}"
        log.debug("gke_store_listed", store=self.id, contexts=len(mapping))
        return mapping

    async def get_kubeconfig(self, path: str) -> bytes:
        parts = path.split("/")
        if len(parts) != 3:
            msg = f"invalid GKE path {path!r}, expected '<project>/<location>/<cluster>'"
            raise StoreFetchError(msg, self.id, self.kind)
        project, location, name = parts

        cluster = await self._run_json(
            [
                "container",
                "clusters",
                "describe",
                name,
                "--project",
                project,
                "--location",
                location,
                "--format",
                "json",
            ]
        )
        try:
            endpoint = cluster["endpoint"]
            ca_data = cluster["masterAuth"]["clusterCaCertificate"]
        except (KeyError, TypeError) as e:
            msg = f"cluster description for {path!r} lacks endpoint or CA: {e}"
            raise StoreFetchError(msg, self.id, self.kind) from e

        return build_exec_kubeconfig(
            name=f"gke_{project}_{location}_{name}",
            server=f"https://{endpoint}",
            certificate_authority_data=ca_data,
            command=AUTH_PLUGIN,
            args=[],
        )
