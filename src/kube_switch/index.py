"""Persisted per-store search index and its staleness policy.

Each store owns two files in the state directory:

- ``switch.<storeId>.index``: the context name to kubeconfig path mapping.
- ``switch.<storeId>.index.state``: the store kind and the time of the last write.

The pair is written as two independent files. Any asymmetry between them
degrades to "refresh", never to serving data whose freshness is unknown.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
import yaml
from pydantic import BaseModel, ValidationError

from kube_switch.errors import CorruptStateError
from kube_switch.models import Index, IndexState
from kube_switch.utils import atomic_write_text

if TYPE_CHECKING:
    from kube_switch.config import SwitchConfig

log = structlog.get_logger()

INDEX_FILE_NAME = "index"
INDEX_STATE_FILE_NAME = "index.state"

M = TypeVar("M", bound=BaseModel)


def index_file_paths(state_directory: Path, store_id: str) -> tuple[Path, Path]:
    """Return the index and index state file paths of one store."""
    return (
        state_directory / f"switch.{store_id}.{INDEX_FILE_NAME}",
        state_directory / f"switch.{store_id}.{INDEX_STATE_FILE_NAME}",
    )


def remove_index(state_directory: Path, store_id: str) -> None:
    """Delete a store's index pair without parsing it. Missing files are ignored."""
    for path in index_file_paths(state_directory, store_id):
        path.unlink(missing_ok=True)


def _load_yaml_model(path: Path, model: type[M]) -> M | None:
    """Read ``path`` into ``model``; None if the file is missing or empty."""
    try:
        raw = path.read_text()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise CorruptStateError(str(path), str(e)) from e

    if not raw.strip():
        log.warning("empty_state_file_ignored", path=str(path))
        return None

    try:
        data: Any = yaml.safe_load(raw)
        return model.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise CorruptStateError(str(path), str(e)) from e


def _write_yaml_model(path: Path, model: BaseModel) -> None:
    """Replace ``path`` with the YAML form of ``model``."""
    output = yaml.safe_dump(model.model_dump(mode="json", by_alias=True), sort_keys=False)
    atomic_write_text(path, output)


class SearchIndex:
    """Index and index state for one store, bound to that store's kind."""

    def __init__(self, store_kind: str, state_directory: Path, store_id: str) -> None:
        """Create the state directory if needed and load an existing index.

        Raises:
            CorruptStateError: If an index file exists but cannot be parsed.
        """
        state_directory.mkdir(parents=True, exist_ok=True)
        self.store_kind = store_kind
        self.store_id = store_id
        self.state_directory = state_directory
        self.index_path, self.index_state_path = index_file_paths(state_directory, store_id)
        self._content = _load_yaml_model(self.index_path, Index)

    def has_content(self) -> bool:
        return self._content is not None

    def has_kind(self, kind: str) -> bool:
        return self._content is not None and self._content.kind == kind

    def get_content(self) -> dict[str, str]:
        """Return the loaded mapping, or an empty one if no index was loaded."""
        if self._content is None:
            return {}
        return dict(self._content.context_to_path_mapping)

    def get_state(self) -> IndexState | None:
        """Load the index state file.

        Raises:
            CorruptStateError: If the file exists but cannot be parsed.
        """
        state = _load_yaml_model(self.index_state_path, IndexState)
        if state is None:
            log.debug("index_state_not_found", store=self.store_id, path=str(self.index_state_path))
        return state

    def should_be_used(
        self,
        config: SwitchConfig | None,
        store_refresh_index_after: timedelta | None,
        now: datetime | None = None,
    ) -> bool:
        """Decide whether the persisted index is fresh enough to skip the store.

        Args:
            config: The switch configuration carrying the global refresh interval.
            store_refresh_index_after: Per-store interval; overrides the global one.
            now: Current time, defaulting to the wall clock in UTC.

        Returns:
            True only when a state of this store's kind exists, a refresh
            interval is configured, and ``now`` is strictly before the
            last update plus that interval.

        Raises:
            CorruptStateError: If the state file exists but cannot be parsed.
        """
        state = self.get_state()
        if state is None or state.kind != self.store_kind:
            return False

        refresh_after = store_refresh_index_after
        if refresh_after is None and config is not None:
            refresh_after = config.refresh_index_after
        if refresh_after is None:
            return False

        now = (now or datetime.now(tz=UTC)).astimezone(UTC)
        return now < state.last_update_time + refresh_after

    def write(self, index: Index) -> None:
        """Replace the whole index file with ``index``."""
        _write_yaml_model(self.index_path, index)
        self._content = index.model_copy(deep=True)

    def write_state(self, state: IndexState) -> None:
        """Replace the index state file. Call together with ``write``."""
        _write_yaml_model(self.index_state_path, state)

    def delete(self) -> None:
        """Remove both files. Files that do not exist are ignored."""
        remove_index(self.state_directory, self.store_id)
        self._content = None
