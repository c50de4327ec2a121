"""Resolve Kubernetes contexts across kubeconfig stores with caching and a persisted index."""

from kube_switch.config import ResolveOptions, StoreKind
from kube_switch.resolver import ResolveResult, clean, resolve, search_contexts

__all__ = ["ResolveOptions", "ResolveResult", "StoreKind", "clean", "resolve", "search_contexts"]
