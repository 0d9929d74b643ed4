from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..mapping.apartment_type import UnitType

"""Sheet row models for the interior sync engine.

SheetRow is the raw transport row; ParsedDuAnData / ParsedLayoutData are the
typed records produced by the parser. All three are transient: they live only
for the duration of one sync run.
"""

__all__ = [
    "SheetRow",
    "ParsedDuAnData",
    "ParsedLayoutData",
]


@dataclass(frozen=True)
class SheetRow:
    """Raw spreadsheet row.

    row_index is the 1-based spreadsheet line (header line included), so error
    reports point at exactly what the editor sees.
    """
    row_index: int
    cells: tuple[str, ...]

    @staticmethod
    def from_values(row_index: int, values: list[object] | tuple[object, ...]) -> SheetRow:
        # None / 数値セルも文字列として扱う
        cells = tuple("" if v is None else str(v) for v in values)
        return SheetRow(row_index=row_index, cells=cells)

    def is_blank(self) -> bool:
        return all(not c.strip() for c in self.cells)


@dataclass(frozen=True)
class ParsedDuAnData:
    """One project row from the DuAn tab."""
    row_index: int
    name: str  # TenDuAn (natural key)
    slug: str  # generate_slug(name), before collision suffixing
    developer: str | None = None  # ChuDauTu
    address: str | None = None  # DiaChi
    is_active: bool = True  # TrangThai
    extra: dict[str, str] = field(default_factory=dict)  # MaDuAn / SoTangMax / SoTrucMax


@dataclass(frozen=True)
class ParsedLayoutData:
    """One layout row from the LayoutIDs tab.

    unit_type is None when apartment_type_raw is not a known label; the
    orchestrator skips such rows.
    """
    row_index: int
    project_name: str  # TenDuAn -> parent project
    apartment_type_raw: str
    unit_type: UnitType | None
    area: Decimal
    price: Decimal
    image_ids: tuple[str, ...] = ()
    layout_code: str | None = None

    @property
    def natural_key(self) -> tuple[str, str | None]:
        return (self.project_name, self.layout_code)
