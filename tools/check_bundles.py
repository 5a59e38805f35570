#!/usr/bin/env python3
"""Check packed bundles against their sidecar records.

For each category:
- every position record points at an atlas that exists
- the recorded rectangle lies inside the atlas and is not fully transparent
- every page except the last one is full
- (with --sprites) every sprite file decodes, and none carries garbage
  after its IEND chunk

Usage:
    python3 tools/check_bundles.py
    python3 tools/check_bundles.py clot --grid
    python3 tools/check_bundles.py glas --sprites --verbose
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from bundle_packer import DEFAULT_CONFIG, load_bundle_config, resolve_root
from bundle_state import list_categories, list_sprites
from grid_packer import SpriteDecodeError, load_sprite
from page_allocator import parse_atlas_index
from png_sanitizer import has_png_signature, trailing_garbage
from sprite_metadata import SIDECAR_NAME, load_sidecar, read_position


def region_has_content(image, rect: dict) -> bool:
    """True if any pixel inside rect has non-zero alpha."""
    box = (rect["x"], rect["y"], rect["x"] + rect["w"], rect["y"] + rect["h"])
    return image.crop(box).getchannel("A").getbbox() is not None


def cell_occupancy(image, cols: int, rows: int, cell_size=None) -> list[list[bool]]:
    """Return rows x cols flags telling which grid cells hold any pixels."""
    if cell_size is None:
        cell_size = (image.width // cols, image.height // rows)
    cell_w, cell_h = cell_size
    grid = []
    for r in range(rows):
        row = []
        for c in range(cols):
            rect = {"x": c * cell_w, "y": r * cell_h, "w": cell_w, "h": cell_h}
            row.append(cell_w > 0 and cell_h > 0 and region_has_content(image, rect))
        grid.append(row)
    return grid


def check_sprite_file(path: Path) -> dict:
    """Inspect one sprite PNG: signature, trailing garbage and decodability."""
    result = {
        "path": str(path),
        "signature": False,
        "garbage": 0,
        "size": None,
        "error": None,
    }
    try:
        data = path.read_bytes()
    except OSError as e:
        result["error"] = str(e)
        return result
    result["signature"] = has_png_signature(data)
    result["garbage"] = trailing_garbage(data)
    try:
        result["size"] = load_sprite(data).size
    except SpriteDecodeError as e:
        result["error"] = str(e)
    return result


def collect_records(metadata_root: Path, category: str) -> tuple[dict, list[str]]:
    """Read every position record of a category: rel_path -> record."""
    records = {}
    errors = []
    meta_dir = metadata_root / category
    if not meta_dir.is_dir():
        return records, errors
    for path in sorted(meta_dir.rglob(SIDECAR_NAME)):
        rel_dir = path.parent.relative_to(metadata_root).as_posix()
        try:
            data = load_sidecar(path)
        except (OSError, ValueError) as e:
            errors.append(f"cannot read {path}: {e}")
            continue
        for filename, entry in data.items():
            record = read_position(entry)
            if record is not None:
                records[f"{rel_dir}/{filename}"] = record
    return records, errors


def verify_category(
    category: str,
    metadata_root: Path,
    bundle_root: Path,
    cols: int = 4,
    rows: int = 4,
    image_root: Path | None = None,
) -> tuple[list[str], list[str]]:
    """Validate one category's atlases against its records.

    Returns (errors, warnings).
    """
    records, errors = collect_records(metadata_root, category)
    warnings = []

    members: dict[str, list[str]] = {}
    for rel_path, record in records.items():
        members.setdefault(record["atlas"], []).append(rel_path)

    for atlas in sorted(members):
        atlas_path = bundle_root / atlas
        if not atlas_path.exists():
            errors.append(f"{atlas}: referenced by {len(members[atlas])} sprite(s) but missing")
            continue
        try:
            image = load_sprite(atlas_path)
        except SpriteDecodeError as e:
            errors.append(f"{atlas}: cannot decode: {e}")
            continue
        for rel_path in members[atlas]:
            rect = records[rel_path]["position"]
            if (rect["x"] < 0 or rect["y"] < 0 or rect["w"] < 1 or rect["h"] < 1
                    or rect["x"] + rect["w"] > image.width
                    or rect["y"] + rect["h"] > image.height):
                errors.append(f"{rel_path}: rectangle {rect} outside {atlas} "
                              f"({image.width}x{image.height})")
            elif not region_has_content(image, rect):
                errors.append(f"{rel_path}: rectangle in {atlas} is fully transparent")

    indexed = []
    for atlas, rel_paths in members.items():
        index = parse_atlas_index(category, atlas)
        if index is None:
            warnings.append(f"{atlas}: not a recognised atlas name for {category}")
            continue
        indexed.append((index, atlas, len(rel_paths)))
    indexed.sort()
    for index, atlas, count in indexed[:-1]:
        if count != cols * rows:
            errors.append(f"{atlas}: page {index} holds {count} sprite(s) "
                          f"but is not the last page (expected {cols * rows})")
    if len({i for i, _, _ in indexed}) != len(indexed):
        errors.append(f"{category}: two atlases share a page index")

    if image_root is not None and (image_root / category).is_dir():
        on_disk = set(list_sprites(image_root, category))
        for rel_path in sorted(set(records) - on_disk):
            warnings.append(f"{rel_path}: recorded but missing on disk")
        unpacked = sorted(on_disk - set(records))
        if unpacked:
            warnings.append(f"{category}: {len(unpacked)} sprite(s) not yet packed")

    return errors, warnings


def print_grid(atlas_path: Path, cols: int, rows: int) -> None:
    image = load_sprite(atlas_path)
    print(f"  {atlas_path.name}: {image.width}x{image.height} "
          f"(Cell: {image.width // cols}x{image.height // rows})")
    for r, row in enumerate(cell_occupancy(image, cols, rows)):
        cells = " ".join("#" if filled else "." for filled in row)
        print(f"    [{r}] {cells}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Verify atlas bundles against sidecar position records."
    )
    parser.add_argument("categories", nargs="*",
                        help="Categories to check (default: all)")
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG,
                        help="Path to bundle_config.json")
    parser.add_argument("--image-root", type=Path, default=None)
    parser.add_argument("--metadata-root", type=Path, default=None)
    parser.add_argument("--bundle-root", type=Path, default=None)
    parser.add_argument("--grid", action="store_true",
                        help="Print cell occupancy of every atlas")
    parser.add_argument("--sprites", action="store_true",
                        help="Also check every sprite file for garbage and decode errors")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Show warnings")
    args = parser.parse_args(argv)

    try:
        config = load_bundle_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Error: cannot load config {args.config}: {e}", file=sys.stderr)
        return 1

    image_root = args.image_root or resolve_root(config["image_root"])
    metadata_root = args.metadata_root or resolve_root(config["metadata_root"])
    bundle_root = args.bundle_root or resolve_root(config["bundle_root"])
    cols, rows = int(config["cols"]), int(config["rows"])

    if args.categories:
        categories = args.categories
    elif image_root.is_dir():
        categories = list_categories(image_root)
    else:
        print(f"Error: image root not found: {image_root}", file=sys.stderr)
        return 1

    all_errors = []
    all_warnings = []
    print(f"=== Bundle Check: {len(categories)} category(ies) ===")

    for category in categories:
        errors, warnings = verify_category(
            category, metadata_root, bundle_root, cols, rows, image_root
        )

        if args.sprites and (image_root / category).is_dir():
            for rel_path in list_sprites(image_root, category):
                info = check_sprite_file(image_root / rel_path)
                if info["error"]:
                    errors.append(f"{rel_path}: {info['error']}")
                if info["garbage"]:
                    warnings.append(f"{rel_path}: {info['garbage']} byte(s) after IEND")
                if not info["signature"]:
                    warnings.append(f"{rel_path}: missing PNG signature")

        if args.grid and bundle_root.is_dir():
            for atlas_path in sorted(bundle_root.glob(f"{category}*.png")):
                if parse_atlas_index(category, atlas_path.name) is None:
                    continue
                try:
                    print_grid(atlas_path, cols, rows)
                except SpriteDecodeError as e:
                    errors.append(f"{atlas_path.name}: cannot decode: {e}")

        all_errors.extend(errors)
        all_warnings.extend(warnings)
        status = "PASS" if not errors else "FAIL"
        warn_str = f" ({len(warnings)} warnings)" if warnings else ""
        print(f"  {status}: {category}{warn_str}")

    if all_warnings and args.verbose:
        print(f"\n{len(all_warnings)} warning(s):")
        for w in all_warnings:
            print(f"  ! {w}")

    if all_errors:
        print(f"\n{len(all_errors)} error(s):")
        for e in all_errors:
            print(f"  x {e}")
        return 1

    print(f"\nAll {len(categories)} category(ies) passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
