"""Pydantic v2 models for persisted index state and resolution results."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# --- Persisted index models ---


class Index(BaseModel):
    """Pre-computed mapping of context name to the kubeconfig path that defines it.

    ``kind`` is kept as a plain string so that an index written by another
    store kind still loads and is then rejected by the kind check.
    """

    model_config = ConfigDict(populate_by_name=True)

    kind: str
    context_to_path_mapping: dict[str, str] = Field(default_factory=dict, alias="contextToPathMapping")

    @field_validator("context_to_path_mapping", mode="before")
    @classmethod
    def _none_is_empty(cls, value: object) -> object:
        return {} if value is None else value


class IndexState(BaseModel):
    """Freshness marker written next to an Index."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str
    last_update_time: datetime = Field(alias="lastUpdateTime")

    @field_validator("last_update_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


# --- Resolution models ---


class ContextSource(BaseModel):
    """Where a resolved context lives."""

    store_id: str
    kind: str
    path: str
    name: str


class StoreError(BaseModel):
    """A store-scoped failure surfaced to the caller without aborting other stores."""

    error: str
    store_id: str
    kind: str
    stage: Literal["construct", "fetch"]
