"""Pure normalization helpers: apartment type mapping and slug generation."""

from .apartment_type import (
    APARTMENT_TYPE_MAP,
    UNIT_TYPE_TO_SHEET,
    UnitType,
    map_apartment_type,
    unit_type_to_sheet,
)
from .slug import generate_slug, strip_diacritics, unique_slug

__all__ = [
    "APARTMENT_TYPE_MAP",
    "UNIT_TYPE_TO_SHEET",
    "UnitType",
    "map_apartment_type",
    "unit_type_to_sheet",
    "generate_slug",
    "strip_diacritics",
    "unique_slug",
]
