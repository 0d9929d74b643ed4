#!/usr/bin/env python3
"""Sample spreadsheet generation for manual runs and performance tests.

Generates <output>.xlsx with the two tabs the sync engine reads:
- DuAn:      header row + one row per project
- LayoutIDs: header row + `layouts` rows per project

A share of rows can be made malformed / unmapped on purpose (--bad-ratio) so the
PARTIAL path of a pull run can be exercised.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

DUAN_HEADER = ["TenDuAn", "ChuDauTu", "DiaChi", "TrangThai", "MaDuAn", "SoTangMax", "SoTrucMax"]
LAYOUT_HEADER = ["TenDuAn", "ApartmentType", "DienTich", "Gia", "HinhAnh", "MaLayout"]

_PREFIXES = ["Vinhomes", "Masteri", "Sunshine", "Ecopark", "Lumière", "Đảo Kim Cương", "The Global City"]
_SUFFIXES = ["Grand Park", "Central Park", "Riverside", "Thảo Điền", "Sky Garden", "Quận 9", "Ocean Park"]
_DEVELOPERS = ["Vingroup", "Masterise Homes", "Sunshine Group", "Ecopark", "SonKim Land"]
_TYPE_LABELS = ["1pn", "1PN+", "2pn", "3pn", " STUDIO ", "Penthouse", "duplex"]
_AREA_BY_TYPE = {"1pn": (45, 60), "1PN+": (50, 65), "2pn": (60, 85), "3pn": (85, 120),
                 " STUDIO ": (25, 35), "Penthouse": (150, 300), "duplex": (120, 220)}


def generate_projects(projects: int, rng: np.random.Generator) -> pd.DataFrame:
    names = []
    for i in range(projects):
        base = f"{_PREFIXES[i % len(_PREFIXES)]} {_SUFFIXES[(i // len(_PREFIXES)) % len(_SUFFIXES)]}"
        names.append(base if i < len(_PREFIXES) * len(_SUFFIXES) else f"{base} {i}")
    return pd.DataFrame({
        "TenDuAn": names,
        "ChuDauTu": rng.choice(_DEVELOPERS, projects).tolist(),
        "DiaChi": [f"Phường {rng.integers(1, 20)}, TP. Thủ Đức" for _ in range(projects)],
        "TrangThai": rng.choice(["active", "active", "active", "inactive"], projects).tolist(),
        "MaDuAn": [f"DA{i + 1:04d}" for i in range(projects)],
        "SoTangMax": rng.integers(15, 45, projects).astype(str).tolist(),
        "SoTrucMax": rng.integers(8, 24, projects).astype(str).tolist(),
    }, columns=DUAN_HEADER)


def generate_layouts(project_names: list[str], layouts: int, bad_ratio: float,
                     rng: np.random.Generator) -> pd.DataFrame:
    rows = []
    for name in project_names:
        for j in range(layouts):
            label = _TYPE_LABELS[j % len(_TYPE_LABELS)]
            lo, hi = _AREA_BY_TYPE[label]
            area = round(float(rng.uniform(lo, hi)), 1)
            price = int(area * rng.integers(45, 90)) * 1_000_000
            # 価格はロケール書式 (2.500.000.000) で書く
            price_text = f"{price:,}".replace(",", ".")
            if rng.random() < bad_ratio:
                label = "apartment"  # 未知の種別 -> pull では skip
            rows.append([name, label, str(area).replace(".", ","), price_text,
                         f"img-{rng.integers(1000, 9999)}", f"L{j + 1:02d}"])
    return pd.DataFrame(rows, columns=LAYOUT_HEADER)


def create_workbook(output_path: Path, projects: int, layouts: int, bad_ratio: float = 0.0,
                    seed: int = 42) -> tuple[int, int]:
    """Write the DuAn / LayoutIDs workbook. Returns (project rows, layout rows)."""
    rng = np.random.default_rng(seed)
    duan = generate_projects(projects, rng)
    layout_df = generate_layouts(duan["TenDuAn"].tolist(), layouts, bad_ratio, rng)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        duan.to_excel(writer, sheet_name="DuAn", index=False)
        layout_df.to_excel(writer, sheet_name="LayoutIDs", index=False)
    return len(duan), len(layout_df)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a sample DuAn / LayoutIDs workbook",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s sheets/demo.xlsx
  %(prog)s sheets/big.xlsx --projects 200 --layouts 20 --bad-ratio 0.05
        """,
    )
    parser.add_argument("output", type=Path, help="Output workbook path (<sheet_id>.xlsx)")
    parser.add_argument("--projects", type=int, default=10, help="Number of projects (default: 10)")
    parser.add_argument("--layouts", type=int, default=7, help="Layouts per project (default: 7)")
    parser.add_argument("--bad-ratio", type=float, default=0.0,
                        help="Share of layout rows with an unknown apartment type (default: 0)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.projects <= 0 or args.layouts <= 0:
        print("Error: --projects and --layouts must be positive", file=sys.stderr)
        return 1
    if not 0.0 <= args.bad_ratio <= 1.0:
        print("Error: --bad-ratio must be within 0..1", file=sys.stderr)
        return 1

    n_projects, n_layouts = create_workbook(args.output, args.projects, args.layouts, args.bad_ratio, args.seed)
    print(f"Created workbook: {args.output}")
    print(f"  DuAn rows: {n_projects}")
    print(f"  LayoutIDs rows: {n_layouts}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
