"""EKS store: clusters of one AWS region, via the aws CLI."""

from __future__ import annotations

import structlog

from kube_switch.config import StoreConfig
from kube_switch.errors import StoreFetchError, StoreInitError
from kube_switch.kubeconfig import build_exec_kubeconfig
from kube_switch.stores.cli import CliStore

log = structlog.get_logger()


class EKSStore(CliStore):
    """EKS clusters listed with ``aws eks list-clusters``.

    Context names are ``eks_<region>_<cluster>``; paths are ``<region>/<cluster>``.
    An optional ``profile`` in the store config selects the AWS CLI profile.
    """

    binary = "aws"

    def __init__(self, store_config: StoreConfig, binary_path: str | None = None) -> None:
        region = store_config.config.get("region")
        if not region:
            msg = "'region' is required in the store config"
            raise StoreInitError(msg, store_config.store_id, store_config.kind)
        self._region = str(region)
        self._profile = store_config.config.get("profile")
        super().__init__(store_config, binary_path)

    def _common_args(self, region: str) -> list[str]:
        args = ["--region", region, "--output", "json"]
        if self._profile:
            args += ["--profile", str(self._profile)]
        return args

    async def list_contexts(self) -> dict[str, str]:
        body = await self._run_json(["eks", "list-clusters", *self._common_args(self._region)]) or {}
        mapping = {f"eks_{self._region}_{name}": f"{self._region}/{name}" for name in body.get("clusters", [])}
        log.debug("eks_store_listed", store=self.id, contexts=len(mapping))
        return mapping

    async def get_kubeconfig(self, path: str) -> bytes:
        region, _, name = path.partition("/")
        if not name:
            msg = f"invalid EKS path {path!r}, expected '<region>/<cluster>'"
            raise StoreFetchError(msg, self.id, self.kind)

        body = await self._run_json(["eks", "describe-cluster", "--name", name, *self._common_args(region)])
        try:
            cluster = body["cluster"]
            endpoint = cluster["endpoint"]
            ca_data = cluster["certificateAuthority"]["data"]
        except (KeyError, TypeError) as e:
            msg = f"cluster description for {path!r} lacks endpoint or CA: {e}"
            raise StoreFetchError(msg, self.id, self.kind) from e

        env = {"AWS_PROFILE": str(self._profile)} if self._profile else None
        return build_exec_kubeconfig(
            name=f"eks_{region}_{name}",
            server=endpoint,
            certificate_authority_data=ca_data,
            command="aws",
            args=["eks", "get-token", "--cluster-name", name, "--region", region],
            env=env,
        )
