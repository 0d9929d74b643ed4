from __future__ import annotations

from enum import Enum
from types import MappingProxyType

"""Apartment type normalization.

Sheet editors type unit types by hand ("1pn", " STUDIO ", "1PN+" ...). This module
folds those labels into the closed UnitType set. Lookup is pure: no logging, no
hidden state; the caller decides what an unknown label means for the row.
"""

__all__ = [
    "UnitType",
    "APARTMENT_TYPE_MAP",
    "UNIT_TYPE_TO_SHEET",
    "map_apartment_type",
    "unit_type_to_sheet",
]


class UnitType(str, Enum):
    """Closed set of apartment configurations stored in the database."""
    ONE_BEDROOM = "1PN"
    TWO_BEDROOM = "2PN"
    THREE_BEDROOM = "3PN"
    STUDIO = "STUDIO"
    PENTHOUSE = "PENTHOUSE"
    DUPLEX = "DUPLEX"


# 正規化済みキー (trim + lower) -> UnitType
APARTMENT_TYPE_MAP: MappingProxyType[str, UnitType] = MappingProxyType({
    "1pn": UnitType.ONE_BEDROOM,
    "1pn+": UnitType.ONE_BEDROOM,
    "2pn": UnitType.TWO_BEDROOM,
    "3pn": UnitType.THREE_BEDROOM,
    "studio": UnitType.STUDIO,
    "penthouse": UnitType.PENTHOUSE,
    "duplex": UnitType.DUPLEX,
})

# PUSH 時の書き戻しラベル
UNIT_TYPE_TO_SHEET: MappingProxyType[UnitType, str] = MappingProxyType({
    UnitType.ONE_BEDROOM: "1pn",
    UnitType.TWO_BEDROOM: "2pn",
    UnitType.THREE_BEDROOM: "3pn",
    UnitType.STUDIO: "studio",
    UnitType.PENTHOUSE: "penthouse",
    UnitType.DUPLEX: "duplex",
})


def map_apartment_type(raw: str | None) -> UnitType | None:
    """Map a free-text apartment type label to a UnitType.

    Returns None for blank, numeric-only, punctuation-only or otherwise unknown
    labels. Never raises.
    """
    if not isinstance(raw, str):
        return None
    return APARTMENT_TYPE_MAP.get(raw.strip().lower())


def unit_type_to_sheet(unit_type: UnitType) -> str:
    return UNIT_TYPE_TO_SHEET[UnitType(unit_type)]
