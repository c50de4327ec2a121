"""Resolution pass: build stores, consult each store's index, reconcile contexts."""

from __future__ import annotations

import asyncio
import fnmatch
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog
from kubernetes import client as k8s_client

from kube_switch.cache import CachedStore, new_cache
from kube_switch.config import ResolveOptions, SwitchConfig, build_config
from kube_switch.errors import CorruptStateError, StoreInitError
from kube_switch.index import SearchIndex, remove_index
from kube_switch.kubeconfig import load_api_client
from kube_switch.models import ContextSource, Index, IndexState, StoreError
from kube_switch.stores import new_store

log = structlog.get_logger()


@dataclass
class ResolveResult:
    """Unified view over every active store."""

    stores: list[CachedStore]
    contexts: dict[str, ContextSource]
    errors: list[StoreError] = field(default_factory=list)

    def store(self, store_id: str) -> CachedStore:
        for store in self.stores:
            if store.id == store_id:
                return store
        msg = f"Unknown store '{store_id}'."
        raise KeyError(msg)

    async def aclose(self) -> None:
        """Release every store's backend connections."""
        await _close_stores(self.stores)

    async def __aenter__(self) -> ResolveResult:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


async def _close_stores(stores: list[CachedStore]) -> None:
    results = await asyncio.gather(*(s.aclose() for s in stores), return_exceptions=True)
    for store, result in zip(stores, results, strict=True):
        if isinstance(result, Exception):
            log.warning("store_close_failed", store=store.id, error=str(result))


def build_stores(config: SwitchConfig, options: ResolveOptions) -> tuple[list[CachedStore], list[StoreError]]:
    """Construct and cache-wrap one store per configured entry.

    A store with ``required: false`` that fails to construct is dropped and
    reported in the returned errors.

    Raises:
        StoreInitError: If a required store fails to construct.
    """
    stores: list[CachedStore] = []
    errors: list[StoreError] = []
    for store_config in config.stores:
        try:
            store = new_store(store_config, config, options)
        except StoreInitError as e:
            if store_config.required:
                log.error("required_store_failed", store=store_config.store_id, kind=store_config.kind, error=str(e))
                raise
            log.warning("skipping_optional_store", store=store_config.store_id, kind=store_config.kind, error=str(e))
            errors.append(
                StoreError(error=str(e), store_id=store_config.store_id, kind=str(store_config.kind), stage="construct")
            )
            continue
        stores.append(new_cache(store, store_config.cache))
    return stores, errors


async def _contexts_for_store(
    store: CachedStore,
    config: SwitchConfig,
    state_directory: Path,
    no_index: bool,
) -> dict[str, str]:
    """Read one store's contexts from its index when fresh, otherwise from the store."""
    index = SearchIndex(store.kind, state_directory, store.id)
    if (
        not no_index
        and index.has_kind(store.kind)
        and index.should_be_used(config, store.config.refresh_index_after)
    ):
        log.debug("using_search_index", store=store.id)
        return index.get_content()

    contexts = await store.list_contexts()
    index.write(Index(kind=str(store.kind), context_to_path_mapping=contexts))
    index.write_state(IndexState(kind=str(store.kind), last_update_time=datetime.now(tz=UTC)))
    log.debug("search_index_refreshed", store=store.id, contexts=len(contexts))
    return contexts


async def resolve_contexts(
    stores: list[CachedStore],
    config: SwitchConfig,
    state_directory: Path,
    no_index: bool = False,
) -> ResolveResult:
    """Query every store concurrently and merge their contexts.

    A failing store contributes no contexts and an entry in ``errors``;
    the other stores are unaffected. When two stores expose the same name,
    the one configured first wins.

    Raises:
        CorruptStateError: If any store's index or state file is unreadable.
    """
    tasks = [_contexts_for_store(s, config, state_directory, no_index) for s in stores]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    contexts: dict[str, ContextSource] = {}
    errors: list[StoreError] = []
    for store, result in zip(stores, results, strict=True):
        if isinstance(result, CorruptStateError):
            log.error("corrupt_search_index", store=store.id, path=result.path)
            raise result
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            log.error("store_fetch_failed", store=store.id, kind=store.kind, error=str(result))
            errors.append(StoreError(error=str(result), store_id=store.id, kind=str(store.kind), stage="fetch"))
            continue

        for name, path in sorted(result.items()):
            display_name = f"{store.id}/{name}" if store.config.show_prefix else name
            if display_name in contexts:
                log.warning(
                    "duplicate_context_ignored",
                    context=display_name,
                    store=store.id,
                    kept_store=contexts[display_name].store_id,
                )
                continue
            contexts[display_name] = ContextSource(store_id=store.id, kind=str(store.kind), path=path, name=name)

    return ResolveResult(stores=list(stores), contexts=contexts, errors=errors)


async def resolve(options: ResolveOptions | None = None) -> ResolveResult:
    """Run a full resolution pass from configuration to the unified context list.

    The returned result holds open store connections; close it with
    ``aclose()`` or use it as an async context manager.

    Raises:
        ConfigError: If the configuration is invalid.
        StoreInitError: If a required store cannot be constructed.
        CorruptStateError: If persisted index state is unreadable.
    """
    options = options or ResolveOptions()
    config = build_config(options)
    stores, construct_errors = build_stores(config, options)
    try:
        result = await resolve_contexts(stores, config, options.state_directory, options.no_index)
    except BaseException:
        await _close_stores(stores)
        raise
    result.errors = construct_errors + result.errors
    return result


def search_contexts(result: ResolveResult, pattern: str = "*") -> list[str]:
    """Return resolved context names matching a shell-style wildcard, sorted."""
    return sorted(name for name in result.contexts if fnmatch.fnmatchcase(name, pattern))


def clean(stores: list[CachedStore], state_directory: Path) -> None:
    """Flush every store cache and delete every store's search index."""
    for store in stores:
        store.flush()
        remove_index(state_directory, store.id)
        log.info("store_cleaned", store=store.id)


async def load_context_client(result: ResolveResult, context: str) -> k8s_client.ApiClient:
    """Build a Kubernetes API client for a resolved context name.

    Raises:
        KeyError: If the context was not resolved.
    """
    source = result.contexts.get(context)
    if source is None:
        msg = f"Unknown context '{context}'."
        raise KeyError(msg)
    return await load_api_client(result.store(source.store_id), source.path, source.name)
