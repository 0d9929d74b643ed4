from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from ..mapping.apartment_type import unit_type_to_sheet
from ..mapping.slug import strip_diacritics
from ..models.config_models import DUAN_SHEET, LAYOUT_IDS_SHEET

"""Fixed column layout of the DuAn / LayoutIDs tabs.

Both directions go through the same canonical cell rendering: PULL compares
parsed sheet rows with database records cell by cell, PUSH writes the same cells
back. fingerprint() hashes those cells; it is the value stored as synced_hash.
"""

__all__ = [
    "ColumnDef",
    "DUAN_COLUMNS",
    "LAYOUT_COLUMNS",
    "DUAN_EXTRA_LABELS",
    "columns_for",
    "labels_for",
    "normalize_label",
    "format_decimal",
    "project_cells",
    "layout_cells",
    "cells_to_row",
    "fingerprint",
]


@dataclass(frozen=True)
class ColumnDef:
    label: str  # シート上の列名
    field: str  # Parsed*/Record 側のフィールド名
    required: bool = False


# 既定の列順 (ヘッダ行が無い場合もこの順で解釈)
DUAN_COLUMNS: tuple[ColumnDef, ...] = (
    ColumnDef("TenDuAn", "name", required=True),
    ColumnDef("ChuDauTu", "developer"),
    ColumnDef("DiaChi", "address"),
    ColumnDef("TrangThai", "is_active"),
    ColumnDef("MaDuAn", "extra"),
    ColumnDef("SoTangMax", "extra"),
    ColumnDef("SoTrucMax", "extra"),
)

LAYOUT_COLUMNS: tuple[ColumnDef, ...] = (
    ColumnDef("TenDuAn", "project_name", required=True),
    ColumnDef("ApartmentType", "apartment_type_raw", required=True),
    ColumnDef("DienTich", "area", required=True),
    ColumnDef("Gia", "price", required=True),
    ColumnDef("HinhAnh", "image_ids"),
    ColumnDef("MaLayout", "layout_code"),
)

DUAN_EXTRA_LABELS: tuple[str, ...] = tuple(c.label for c in DUAN_COLUMNS if c.field == "extra")

_LABEL_NOISE_RE = re.compile(r"[\s_\-]+")


def columns_for(sheet_name: str) -> tuple[ColumnDef, ...]:
    if sheet_name == DUAN_SHEET:
        return DUAN_COLUMNS
    if sheet_name == LAYOUT_IDS_SHEET:
        return LAYOUT_COLUMNS
    raise KeyError(f"unknown sheet: {sheet_name}")


def labels_for(sheet_name: str) -> list[str]:
    return [c.label for c in columns_for(sheet_name)]


def normalize_label(label: str) -> str:
    """'Tên Dự Án' / 'ten_du_an' / 'TenDuAn' -> 'tenduan'."""
    return _LABEL_NOISE_RE.sub("", strip_diacritics(str(label))).casefold()


def format_decimal(value: Decimal) -> str:
    # 指数表記を避ける (2.5E+9 -> 2500000000)
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        normalized = normalized.quantize(Decimal(1))
    return format(normalized, "f")


def project_cells(item: Any) -> dict[str, str]:
    """Render a ParsedDuAnData or ProjectRecord as DuAn cells (label -> text)."""
    extra = getattr(item, "extra", None) or {}
    cells = {
        "TenDuAn": item.name,
        "ChuDauTu": item.developer or "",
        "DiaChi": item.address or "",
        "TrangThai": "active" if item.is_active else "inactive",
    }
    for label in DUAN_EXTRA_LABELS:
        cells[label] = extra.get(label, "")
    return cells


def layout_cells(item: Any) -> dict[str, str]:
    """Render a ParsedLayoutData or LayoutRecord as LayoutIDs cells.

    An unmapped ParsedLayoutData keeps its raw ApartmentType text.
    """
    if item.unit_type is not None:
        apartment_type = unit_type_to_sheet(item.unit_type)
    else:
        apartment_type = getattr(item, "apartment_type_raw", "")
    return {
        "TenDuAn": item.project_name,
        "ApartmentType": apartment_type,
        "DienTich": format_decimal(item.area),
        "Gia": format_decimal(item.price),
        "HinhAnh": ", ".join(item.image_ids),
        "MaLayout": item.layout_code or "",
    }


def cells_to_row(sheet_name: str, cells: dict[str, str]) -> list[str]:
    return [cells.get(label, "") for label in labels_for(sheet_name)]


def fingerprint(cells: dict[str, str]) -> str:
    payload = json.dumps(sorted(cells.items()), ensure_ascii=False)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()
