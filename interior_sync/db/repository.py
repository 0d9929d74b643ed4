from __future__ import annotations

import threading
from dataclasses import replace
from typing import Protocol

from ..errors import PersistenceError
from ..models.records import LayoutRecord, ProjectRecord, UpsertAction

"""Persistence layer contract for project / layout records.

The orchestrator receives a repository instance (no module level client); each
upsert is its own atomic unit keyed by natural identity:
    project: name
    layout:  (project_name, layout_code)

InMemoryRepository backs mock mode (no DB connection) and the test suite.
"""

__all__ = [
    "ProjectRepository",
    "InMemoryRepository",
]


class ProjectRepository(Protocol):
    def get_project(self, name: str) -> ProjectRecord | None: ...

    def slug_exists(self, slug: str) -> bool: ...

    def upsert_project(self, record: ProjectRecord) -> UpsertAction: ...

    def list_projects(self) -> list[ProjectRecord]: ...

    def get_layout(self, project_name: str, layout_code: str) -> LayoutRecord | None: ...

    def upsert_layout(self, record: LayoutRecord) -> UpsertAction: ...

    def list_layouts(self) -> list[LayoutRecord]: ...

    def mark_project_synced(self, name: str, synced_hash: str) -> None: ...

    def mark_layout_synced(self, project_name: str, layout_code: str, synced_hash: str) -> None: ...


def project_content_equal(a: ProjectRecord, b: ProjectRecord) -> bool:
    # slug / synced_hash は比較対象外
    return (
        a.name == b.name
        and a.developer == b.developer
        and a.address == b.address
        and a.is_active == b.is_active
        and dict(a.extra) == dict(b.extra)
    )


def layout_content_equal(a: LayoutRecord, b: LayoutRecord) -> bool:
    return (
        a.unit_type == b.unit_type
        and a.area == b.area
        and a.price == b.price
        and tuple(a.image_ids) == tuple(b.image_ids)
    )


class InMemoryRepository:
    """Thread-safe dict-backed repository."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._projects: dict[str, ProjectRecord] = {}
        self._layouts: dict[tuple[str, str], LayoutRecord] = {}

    def get_project(self, name: str) -> ProjectRecord | None:
        with self._lock:
            return self._projects.get(name)

    def slug_exists(self, slug: str) -> bool:
        with self._lock:
            return any(p.slug == slug for p in self._projects.values())

    def upsert_project(self, record: ProjectRecord) -> UpsertAction:
        with self._lock:
            existing = self._projects.get(record.name)
            if existing is None:
                if self.slug_exists(record.slug):
                    raise PersistenceError(f"duplicate slug: {record.slug}")
                self._projects[record.name] = record
                return UpsertAction.CREATED
            # 既存 slug は維持 (外部 URL の安定性)
            merged = replace(record, slug=existing.slug)
            if record.synced_hash is None:
                merged = replace(merged, synced_hash=existing.synced_hash)
            self._projects[record.name] = merged
            if project_content_equal(existing, merged):
                return UpsertAction.UNCHANGED
            return UpsertAction.UPDATED

    def list_projects(self) -> list[ProjectRecord]:
        with self._lock:
            return sorted(self._projects.values(), key=lambda p: p.name)

    def get_layout(self, project_name: str, layout_code: str) -> LayoutRecord | None:
        with self._lock:
            return self._layouts.get((project_name, layout_code))

    def upsert_layout(self, record: LayoutRecord) -> UpsertAction:
        with self._lock:
            if record.project_name not in self._projects:
                raise PersistenceError(f"project not found: {record.project_name}")
            existing = self._layouts.get(record.natural_key)
            merged = record
            if existing is not None and record.synced_hash is None:
                merged = replace(record, synced_hash=existing.synced_hash)
            self._layouts[record.natural_key] = merged
            if existing is None:
                return UpsertAction.CREATED
            if layout_content_equal(existing, merged):
                return UpsertAction.UNCHANGED
            return UpsertAction.UPDATED

    def list_layouts(self) -> list[LayoutRecord]:
        with self._lock:
            return sorted(self._layouts.values(), key=lambda r: r.natural_key)

    def mark_project_synced(self, name: str, synced_hash: str) -> None:
        with self._lock:
            existing = self._projects.get(name)
            if existing is None:
                raise PersistenceError(f"project not found: {name}")
            self._projects[name] = replace(existing, synced_hash=synced_hash)

    def mark_layout_synced(self, project_name: str, layout_code: str, synced_hash: str) -> None:
        with self._lock:
            key = (project_name, layout_code)
            existing = self._layouts.get(key)
            if existing is None:
                raise PersistenceError(f"layout not found: {project_name}/{layout_code}")
            self._layouts[key] = replace(existing, synced_hash=synced_hash)
