#!/usr/bin/env python3
"""Work out which sprites of a category are already bundled.

scan_category() takes a snapshot of one category: the sprite PNGs on disk
and every name.json sidecar beside them. reconcile() turns a snapshot
into the packing state without touching the filesystem again:

  - packed:      sprite paths that carry a position record
  - pages:       atlas filename -> members in row-major cell order
  - new_sprites: sprites on disk with no position record

Sprite paths are relative to the image root and always use "/", e.g.
"clot/boy/m_clot001.png".

Usage:
    python3 tools/bundle_state.py clot --image-root img --metadata-root names
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from sprite_metadata import (
    BUNDLE_KEY,
    SIDECAR_NAME,
    load_sidecar,
    read_position,
    sidecar_dir,
)


@dataclass
class CategorySnapshot:
    """Sprites and sidecars of one category as read from disk."""

    category: str
    sprites: list[str]
    sidecars: dict[str, dict]  # sidecar rel dir -> parsed name.json
    errors: list[str] = field(default_factory=list)


@dataclass
class Reconciliation:
    """Packing state of one category."""

    category: str
    packed: set[str]
    pages: dict[str, list[str]]
    new_sprites: list[str]
    positions: dict[str, dict] = field(default_factory=dict)
    stale: list[str] = field(default_factory=list)
    missing_entries: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def list_categories(image_root: Path) -> list[str]:
    """Top-level directories under the image root, sorted."""
    return sorted(p.name for p in image_root.iterdir() if p.is_dir())


def list_sprites(image_root: Path, category: str) -> list[str]:
    """All PNGs under a category, as sorted root-relative POSIX paths."""
    category_dir = image_root / category
    return sorted(
        p.relative_to(image_root).as_posix()
        for p in category_dir.rglob("*.png")
        if p.is_file()
    )


def scan_category(image_root: Path, metadata_root: Path, category: str) -> CategorySnapshot:
    """Read a category's sprite tree and sidecars.

    Raises FileNotFoundError if the category has no image directory.
    Sidecars that cannot be parsed are recorded in ``errors`` and left out.
    """
    category_dir = image_root / category
    if not category_dir.is_dir():
        raise FileNotFoundError(f"sprite directory not found: {category_dir}")

    sprites = list_sprites(image_root, category)

    sidecars = {}
    errors = []
    meta_dir = metadata_root / category
    if meta_dir.is_dir():
        for path in sorted(meta_dir.rglob(SIDECAR_NAME)):
            rel_dir = path.parent.relative_to(metadata_root).as_posix()
            try:
                sidecars[rel_dir] = load_sidecar(path)
            except (OSError, ValueError) as e:
                errors.append(f"cannot read sidecar {path}: {e}")

    return CategorySnapshot(category, sprites, sidecars, errors)


def _cell_order(item):
    rel_path, record = item
    pos = record["position"]
    return (pos["y"], pos["x"], rel_path)


def reconcile(snapshot: CategorySnapshot) -> Reconciliation:
    """Compute packed / new sprites and page membership from a snapshot."""
    on_disk = set(snapshot.sprites)
    positions = {}
    stale = []
    warnings = []

    for rel_dir in sorted(snapshot.sidecars):
        for filename, entry in snapshot.sidecars[rel_dir].items():
            if not isinstance(entry, dict) or BUNDLE_KEY not in entry:
                continue
            rel_path = f"{rel_dir}/{filename}"
            record = read_position(entry)
            if record is None:
                warnings.append(f"malformed bundle record for {rel_path}; treating as unpacked")
                continue
            if rel_path not in on_disk:
                warnings.append(
                    f"{rel_path} is recorded in {record['atlas']} but missing on disk; dropped"
                )
                stale.append(rel_path)
                continue
            positions[rel_path] = record

    pages: dict[str, list[str]] = {}
    for rel_path, record in sorted(positions.items(), key=_cell_order):
        pages.setdefault(record["atlas"], []).append(rel_path)

    packed = set(positions)
    new_sprites = [p for p in snapshot.sprites if p not in packed]

    missing_entries = []
    for rel_path in snapshot.sprites:
        entries = snapshot.sidecars.get(sidecar_dir(rel_path), {})
        if PurePosixPath(rel_path).name not in entries:
            missing_entries.append(rel_path)
    if missing_entries:
        warnings.append(f"{len(missing_entries)} sprite(s) have no sidecar entry")

    return Reconciliation(
        category=snapshot.category,
        packed=packed,
        pages=pages,
        new_sprites=new_sprites,
        positions=positions,
        stale=stale,
        missing_entries=missing_entries,
        warnings=warnings,
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Show the bundling state of a sprite category."
    )
    parser.add_argument("category", help="Category directory name (e.g., clot)")
    parser.add_argument("--image-root", type=Path, required=True,
                        help="Root of the sprite tree")
    parser.add_argument("--metadata-root", type=Path, required=True,
                        help="Root of the name.json sidecars")
    args = parser.parse_args(argv)

    try:
        snapshot = scan_category(args.image_root, args.metadata_root, args.category)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    for err in snapshot.errors:
        print(f"Error: {err}", file=sys.stderr)
    state = reconcile(snapshot)
    for w in state.warnings:
        print(f"  WARNING: {w}")

    print(f"=== Bundle state: {args.category} ===")
    print(f"  Sprites:  {len(snapshot.sprites)}")
    print(f"  Packed:   {len(state.packed)}")
    print(f"  New:      {len(state.new_sprites)}")
    for atlas, members in sorted(state.pages.items()):
        print(f"  {atlas}: {len(members)} sprite(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
