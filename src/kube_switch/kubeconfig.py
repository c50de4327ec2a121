"""Helpers for the small part of a kubeconfig document the resolver needs.

Kubeconfigs are otherwise treated as opaque bytes: only context names are read,
and generated kubeconfigs for managed clusters are emitted as plain YAML.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import yaml
from kubernetes import client as k8s_client
from kubernetes.config import new_client_from_config_dict

from kube_switch.errors import KubeconfigError

if TYPE_CHECKING:
    from kube_switch.stores.base import KubeconfigStore


def parse_kubeconfig(raw: bytes | str) -> dict[str, Any]:
    """Load a kubeconfig document into a dict.

    Raises:
        KubeconfigError: If the content is not YAML or not a mapping.
    """
    try:
        doc = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        msg = f"not a valid YAML document: {e}"
        raise KubeconfigError(msg) from e
    if not isinstance(doc, dict):
        msg = "kubeconfig must be a mapping"
        raise KubeconfigError(msg)
    return doc


def context_names(raw: bytes | str) -> list[str]:
    """Return the context names declared in a kubeconfig, in document order."""
    doc = parse_kubeconfig(raw)
    contexts = doc.get("contexts") or []
    if not isinstance(contexts, list):
        msg = "'contexts' must be a list"
        raise KubeconfigError(msg)
    names: list[str] = []
    for entry in contexts:
        if isinstance(entry, dict) and entry.get("name"):
            names.append(str(entry["name"]))
    return names


def build_exec_kubeconfig(
    name: str,
    server: str,
    certificate_authority_data: str,
    command: str,
    args: list[str],
    env: dict[str, str] | None = None,
) -> bytes:
    """Generate a single-context kubeconfig that authenticates through an exec plugin.

    Used for managed clusters whose providers hand out an endpoint and CA
    rather than a ready-made kubeconfig.
    """
    user: dict[str, Any] = {
        "exec": {
            "apiVersion": "client.authentication.k8s.io/v1beta1",
            "command": command,
            "args": args,
            "interactiveMode": "IfAvailable",
            "provideClusterInfo": True,
        }
    }
    if env:
        user["exec"]["env"] = [{"name": k, "value": v} for k, v in sorted(env.items())]

    doc = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [
            {
                "name": name,
                "cluster": {"server": server, "certificate-authority-data": certificate_authority_data},
            }
        ],
        "users": [{"name": name, "user": user}],
        "contexts": [{"name": name, "context": {"cluster": name, "user": name}}],
        "current-context": name,
    }
    return yaml.safe_dump(doc, sort_keys=False).encode()


async def load_api_client(store: KubeconfigStore, path: str, context: str) -> k8s_client.ApiClient:
    """Build an isolated Kubernetes API client for one context of a store.

    The kubeconfig is fetched through the (cached) store, so switching to a
    context that was just listed does not hit the backend again.
    """
    raw = await store.get_kubeconfig(path)
    doc = parse_kubeconfig(raw)
    return await asyncio.to_thread(new_client_from_config_dict, config_dict=doc, context=context)
