from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ..mapping.apartment_type import UnitType

"""Persistence-side records for projects and layouts.

These mirror the rows owned by the persistence layer. synced_hash is the
fingerprint of the record's sheet cells at the last successful pull/push and
drives CONFLICT detection.
"""

__all__ = [
    "ProjectRecord",
    "LayoutRecord",
    "UpsertAction",
]


class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class ProjectRecord:
    name: str  # natural key
    slug: str
    developer: str | None = None
    address: str | None = None
    is_active: bool = True
    extra: dict[str, str] = field(default_factory=dict)
    synced_hash: str | None = None


@dataclass(frozen=True)
class LayoutRecord:
    project_name: str  # natural key part 1
    layout_code: str  # natural key part 2
    unit_type: UnitType
    area: Decimal
    price: Decimal
    image_ids: tuple[str, ...] = ()
    synced_hash: str | None = None

    @property
    def natural_key(self) -> tuple[str, str]:
        return (self.project_name, self.layout_code)
