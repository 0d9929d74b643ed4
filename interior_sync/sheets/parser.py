from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from decimal import Decimal, InvalidOperation

from ..errors import ParseError
from ..mapping.apartment_type import map_apartment_type
from ..mapping.slug import generate_slug, strip_diacritics
from ..models.config_models import DUAN_SHEET, LAYOUT_IDS_SHEET
from ..models.sheet_row import ParsedDuAnData, ParsedLayoutData, SheetRow
from ..models.sync_error import SyncError
from .columns import DUAN_EXTRA_LABELS, ColumnDef, columns_for, format_decimal, normalize_label

"""Sheet row parser: raw SheetRow -> typed records + row-scoped errors.

- 1行目に既知の列名が1つでもあればヘッダ行として扱い、列位置をヘッダから解決する。
  無ければ既定の列順 (columns.DUAN_COLUMNS / LAYOUT_COLUMNS) で解釈する。
- 必須列の欠落 / 空セル / 数値変換失敗はその行だけの SyncError となり、行は結果から除外される。
- 未知の列は無視する (シート編集への前方互換)。
- 全セル空の行は黙って読み飛ばす。
"""

__all__ = [
    "parse_duan_sheet",
    "parse_layout_ids_sheet",
    "parse_number",
    "parse_status_flag",
    "parse_image_ids",
    "resolve_columns",
]

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^[+-]?[\d.,]+$")
_IMAGE_SPLIT_RE = re.compile(r"[,;\n]+")

_TRUE_FLAGS = {"1", "true", "yes", "y", "x", "active", "hoat dong", "dang ban", "co"}
_FALSE_FLAGS = {"0", "false", "no", "n", "inactive", "ngung", "ngung ban", "ngung hoat dong", "khong"}


def parse_number(raw: str, *, column: str | None = None, row_index: int = -1) -> Decimal:
    """Parse a locale formatted number.

    Accepted: "2.500.000.000", "2,500,000,000", "1 800 000", "55,5", "55.5".
    When both '.' and ',' appear, the last one is the decimal separator. A single
    separator followed by exactly three digits is read as a thousands separator.

    Raises:
        ParseError: blank or non-numeric content, or malformed digit grouping
    """
    text = re.sub(r"\s", "", raw or "")
    if not text:
        raise ParseError(f"{column or 'value'} is empty", row_index=row_index, column=column)
    if not _NUMBER_RE.match(text) or not any(ch.isdigit() for ch in text):
        raise ParseError(
            f"invalid number for {column or 'value'}: {raw!r}", row_index=row_index, column=column
        )

    sign = ""
    if text[0] in "+-":
        sign, text = text[0], text[1:]

    if "." in text and "," in text:
        decimal_sep = "." if text.rfind(".") > text.rfind(",") else ","
        thousands_sep = "," if decimal_sep == "." else "."
        int_part, _, frac_part = text.rpartition(decimal_sep)
        if decimal_sep in int_part:
            raise ParseError(f"invalid number for {column}: {raw!r}", row_index=row_index, column=column)
        int_digits = _strip_grouping(int_part, thousands_sep, raw, column, row_index)
        normalized = f"{int_digits}.{frac_part}"
    elif "." in text or "," in text:
        sep = "." if "." in text else ","
        parts = text.split(sep)
        if len(parts) > 2 or (len(parts) == 2 and len(parts[1]) == 3 and parts[0] not in ("", "0")):
            # 千区切り
            normalized = _strip_grouping(text, sep, raw, column, row_index)
        else:
            normalized = f"{parts[0] or '0'}.{parts[1]}"
    else:
        normalized = text

    try:
        return Decimal(sign + normalized)
    except InvalidOperation as e:
        raise ParseError(
            f"invalid number for {column or 'value'}: {raw!r}", row_index=row_index, column=column
        ) from e


def _strip_grouping(text: str, sep: str, raw: str, column: str | None, row_index: int) -> str:
    groups = text.split(sep)
    if not groups[0] or len(groups[0]) > 3 or any(len(g) != 3 for g in groups[1:]):
        raise ParseError(
            f"invalid digit grouping for {column or 'value'}: {raw!r}", row_index=row_index, column=column
        )
    return "".join(groups)


def parse_status_flag(raw: str, *, column: str = "TrangThai", row_index: int = -1) -> bool:
    """Blank -> active. Vietnamese and English yes/no words are accepted."""
    text = " ".join(strip_diacritics(raw or "").casefold().split())
    if not text or text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    raise ParseError(f"invalid status flag: {raw!r}", row_index=row_index, column=column)


def parse_image_ids(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in _IMAGE_SPLIT_RE.split(raw or "") if p.strip())


def resolve_columns(
    rows: Sequence[SheetRow], columns: Sequence[ColumnDef]
) -> tuple[dict[str, int | None], list[SheetRow]]:
    """Return (label -> cell position, data rows).

    If the first row looks like a header, positions come from it and the row is
    dropped from the data rows; otherwise the default column order is used.
    """
    if not rows:
        return {}, []
    known = {normalize_label(c.label): c.label for c in columns}
    header = rows[0]
    header_positions: dict[str, int] = {}
    for pos, cell in enumerate(header.cells):
        label = known.get(normalize_label(cell)) if cell.strip() else None
        if label is not None and label not in header_positions:
            header_positions[label] = pos
    if header_positions:
        positions: dict[str, int | None] = {c.label: header_positions.get(c.label) for c in columns}
        return positions, list(rows[1:])
    return {c.label: i for i, c in enumerate(columns)}, list(rows)


def _cell(row: SheetRow, positions: dict[str, int | None], label: str) -> str:
    pos = positions.get(label)
    if pos is None or pos >= len(row.cells):
        return ""
    return row.cells[pos].strip()


def _require(row: SheetRow, positions: dict[str, int | None], columns: Sequence[ColumnDef]) -> None:
    missing = [c.label for c in columns if c.required and not _cell(row, positions, c.label)]
    if missing:
        raise ParseError(
            f"Missing required fields: {', '.join(missing)}",
            row_index=row.row_index,
            column=missing[0],
            error_type="MISSING_REQUIRED_FIELD",
        )


def _parse_duan_row(row: SheetRow, positions: dict[str, int | None]) -> ParsedDuAnData:
    _require(row, positions, columns_for(DUAN_SHEET))
    name = _cell(row, positions, "TenDuAn")
    slug = generate_slug(name)
    if not slug:
        raise ParseError(
            f"project name yields an empty slug: {name!r}", row_index=row.row_index, column="TenDuAn"
        )
    return ParsedDuAnData(
        row_index=row.row_index,
        name=name,
        slug=slug,
        developer=_cell(row, positions, "ChuDauTu") or None,
        address=_cell(row, positions, "DiaChi") or None,
        is_active=parse_status_flag(_cell(row, positions, "TrangThai"), row_index=row.row_index),
        extra={label: _cell(row, positions, label) for label in DUAN_EXTRA_LABELS},
    )


def _parse_layout_row(row: SheetRow, positions: dict[str, int | None]) -> ParsedLayoutData:
    _require(row, positions, columns_for(LAYOUT_IDS_SHEET))
    area = parse_number(_cell(row, positions, "DienTich"), column="DienTich", row_index=row.row_index)
    if area <= 0:
        raise ParseError(f"DienTich must be positive: {area}", row_index=row.row_index, column="DienTich")
    price = parse_number(_cell(row, positions, "Gia"), column="Gia", row_index=row.row_index)
    if price < 0:
        raise ParseError(f"Gia must not be negative: {price}", row_index=row.row_index, column="Gia")

    apartment_type_raw = _cell(row, positions, "ApartmentType")
    unit_type = map_apartment_type(apartment_type_raw)
    layout_code = _cell(row, positions, "MaLayout") or None
    if layout_code is None and unit_type is not None:
        # 小数点は区切りに置換 (72.5 -> 72-5)
        layout_code = generate_slug(f"{unit_type.value} {format_decimal(area).replace('.', ' ')}")

    return ParsedLayoutData(
        row_index=row.row_index,
        project_name=_cell(row, positions, "TenDuAn"),
        apartment_type_raw=apartment_type_raw,
        unit_type=unit_type,
        area=area,
        price=price,
        image_ids=parse_image_ids(_cell(row, positions, "HinhAnh")),
        layout_code=layout_code,
    )


def _parse_sheet(rows, sheet_name, parse_row):
    columns = columns_for(sheet_name)
    positions, data_rows = resolve_columns(rows, columns)
    parsed = []
    errors: list[SyncError] = []
    for row in data_rows:
        if row.is_blank():
            continue
        try:
            parsed.append(parse_row(row, positions))
        except ParseError as e:
            errors.append(e.to_sync_error(sheet=sheet_name))
            logger.warning("sheet=%s row=%d rejected: %s", sheet_name, row.row_index, e.message)
    return parsed, errors


def parse_duan_sheet(rows: Sequence[SheetRow]) -> tuple[list[ParsedDuAnData], list[SyncError]]:
    """Parse the DuAn tab. Returns (parsed, errors); one error per rejected row."""
    return _parse_sheet(rows, DUAN_SHEET, _parse_duan_row)


def parse_layout_ids_sheet(rows: Sequence[SheetRow]) -> tuple[list[ParsedLayoutData], list[SyncError]]:
    """Parse the LayoutIDs tab.

    Unknown apartment types are NOT parse errors: the row is returned with
    unit_type=None and the orchestrator decides what to do with it.
    """
    return _parse_sheet(rows, LAYOUT_IDS_SHEET, _parse_layout_row)
