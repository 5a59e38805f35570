#!/usr/bin/env python3
"""Incrementally pack sprite PNGs into fixed-grid atlas bundles.

For each category directory under the image root, sprites that have no
position record in their name.json sidecar are appended to the category's
last atlas page (re-rendering it) or, once that page is full, to new
pages. Every packed sprite's sidecar entry then gets a "bundle" record
naming its atlas and its rectangle inside it.

Runs are idempotent: a category with nothing new is left untouched.

The packer takes no locks. Invocations touching the same category must
be serialized by the caller (single scheduled job, or an external lock
file such as `flock dist/.lock python3 tools/bundle_packer.py`).

Usage:
    python3 tools/bundle_packer.py
    python3 tools/bundle_packer.py clot glas
    python3 tools/bundle_packer.py --dry-run
    python3 tools/bundle_packer.py clot --rows 8 --cols 8
"""
from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path

from bundle_state import list_categories, reconcile, scan_category
from grid_packer import SpriteDecodeError, load_sprite, pack_grid, save_atlas
from page_allocator import (
    NAMING_CONVENTIONS,
    allocate_pages,
    infer_page0_naming,
    open_page,
    page_count,
    parse_atlas_index,
)
from sprite_metadata import (
    apply_positions,
    load_manifest,
    position_record,
    save_manifest,
)

SCRIPT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = SCRIPT_DIR.parent
DEFAULT_CONFIG = SCRIPT_DIR / "bundle_config.json"

DEFAULT_SETTINGS = {
    "rows": 4,
    "cols": 4,
    "image_root": "img",
    "metadata_root": "names",
    "bundle_root": "dist",
    "create_missing_entries": True,
}


def load_bundle_config(config_path: Path = DEFAULT_CONFIG) -> dict:
    """Load bundle_config.json merged over the built-in defaults."""
    config = dict(DEFAULT_SETTINGS)
    if config_path.exists():
        with open(config_path) as f:
            config.update(json.load(f))
    return config


def resolve_root(value, base: Path = PROJECT_ROOT) -> Path:
    """Resolve a configured directory relative to the project root."""
    path = Path(value)
    return path if path.is_absolute() else base / path


@dataclass
class CategoryReport:
    """What one category run did."""

    category: str
    new: int = 0
    packed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)  # decode failures
    pages_written: list[str] = field(default_factory=list)
    sidecars_written: list[Path] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def _known_atlas_files(bundle_root: Path, category: str) -> list[str]:
    if not bundle_root.is_dir():
        return []
    return [
        p.name for p in bundle_root.glob(f"{category}*.png")
        if parse_atlas_index(category, p.name) is not None
    ]


def _page0_naming(manifest: dict, state, bundle_root: Path, pages_needed: int) -> str:
    naming = manifest.get("page0_naming")
    if naming in NAMING_CONVENTIONS:
        return naming
    # First run under the manifest: decide from what already exists
    names = list(state.pages) + _known_atlas_files(bundle_root, state.category)
    return infer_page0_naming(state.category, names, pages_needed)


def _merge_manifest(manifest: dict, category: str, naming: str, cols: int,
                    rows: int, page_infos: list[dict]) -> dict:
    pages = {p["atlas"]: p for p in manifest.get("pages", []) if isinstance(p, dict) and "atlas" in p}
    for info in page_infos:
        pages[info["atlas"]] = info
    return {
        "category": category,
        "page0_naming": naming,
        "cols": cols,
        "rows": rows,
        "pages": sorted(pages.values(), key=lambda p: (p.get("index", 0), p["atlas"])),
    }


def pack_category(
    category: str,
    image_root: Path,
    metadata_root: Path,
    bundle_root: Path,
    cols: int = 4,
    rows: int = 4,
    create_missing: bool = True,
    dry_run: bool = False,
) -> CategoryReport:
    """Bring one category's atlases and sidecars up to date.

    Raises OSError if the category's sprite directory can't be read.
    Decode, atlas-write and sidecar-write failures are reported in the
    returned CategoryReport instead.
    """
    report = CategoryReport(category)
    cells_per_page = cols * rows

    snapshot = scan_category(image_root, metadata_root, category)
    if snapshot.errors:
        for err in snapshot.errors:
            print(f"Error: {err}", file=sys.stderr)
        report.errors.extend(snapshot.errors)
        return report

    state = reconcile(snapshot)
    for w in state.warnings:
        print(f"  WARNING: {w}")
    for atlas in sorted(state.pages):
        if parse_atlas_index(category, atlas) is None:
            print(f"  WARNING: {category}: ignoring unrecognised atlas name {atlas}")

    report.new = len(state.new_sprites)
    if not state.new_sprites:
        print(f"  Up to date ({len(state.packed)} sprites packed)")
        return report

    print(f"  New sprites: {len(state.new_sprites)}")

    # Raw bytes only; rasters are decoded again one page at a time
    sources = {}

    def _load(rel_path):
        try:
            data = (image_root / rel_path).read_bytes()
            load_sprite(data)
        except (OSError, SpriteDecodeError) as e:
            print(f"Error: cannot decode {rel_path}: {e}", file=sys.stderr)
            report.failed.append(rel_path)
            return False
        sources[rel_path] = data
        return True

    candidates = [p for p in state.new_sprites if _load(p)]
    if not candidates:
        print("  No decodable new sprites; nothing to pack")
        return report

    # Members of a re-rendered page that no longer decode lose their
    # record, but only once that page has actually been rewritten
    dropped = []
    available = None
    top = open_page(category, state.pages, cells_per_page)
    if top is not None:
        available = set()
        for rel_path in top[2]:
            if _load(rel_path):
                available.add(rel_path)
            else:
                dropped.append(rel_path)

    manifest = load_manifest(bundle_root, category)
    pending = len(candidates) + (len(available) if available else 0)
    naming = _page0_naming(
        manifest, state, bundle_root, page_count(pending, cells_per_page)
    )
    plans = allocate_pages(
        category, candidates, state.pages, cells_per_page, naming, available
    )

    updates = {}
    page_infos = []
    for plan in plans:
        action = "Re-rendering" if plan.replaces_existing else "Creating"
        print(f"  > {action} page {plan.index}: {plan.atlas} "
              f"({len(plan.members)} sprites)")
        page = pack_grid([(p, sources[p]) for p in plan.members], cols, rows)
        if page.image is None:
            continue

        atlas_path = bundle_root / plan.atlas
        if dry_run:
            print(f"  [DRY RUN] Would write: {atlas_path}")
        else:
            try:
                save_atlas(page.image, atlas_path)
            except OSError as e:
                msg = f"cannot write {atlas_path}: {e}"
                print(f"Error: {msg}", file=sys.stderr)
                report.errors.append(msg)
                # Later page indices depend on this one; retry them next run
                break
            print(f"    Saved {atlas_path}")

        if plan.replaces_existing:
            for rel_path in dropped:
                updates[rel_path] = None
        for rel_path in page.order:
            updates[rel_path] = position_record(plan.atlas, page.rects[rel_path])
        report.pages_written.append(plan.atlas)
        page_infos.append({
            "index": plan.index,
            "atlas": plan.atlas,
            "cell": list(page.cell_size),
            "size": list(page.image.size),
            "members": len(page.order),
        })

    written, failed = apply_positions(
        metadata_root, updates, create_missing=create_missing, dry_run=dry_run
    )
    report.sidecars_written = written
    for path in failed:
        report.errors.append(f"cannot update sidecar {path}")
    report.packed = [p for p in candidates if updates.get(p) is not None]

    if page_infos and not dry_run:
        merged = _merge_manifest(manifest, category, naming, cols, rows, page_infos)
        try:
            save_manifest(bundle_root, category, merged)
        except OSError as e:
            msg = f"cannot write manifest for {category}: {e}"
            print(f"Error: {msg}", file=sys.stderr)
            report.errors.append(msg)

    return report


def run(categories, image_root: Path, metadata_root: Path, bundle_root: Path,
        cols: int = 4, rows: int = 4, create_missing: bool = True,
        dry_run: bool = False) -> list[CategoryReport]:
    """Pack each category in turn; one category's failure never stops the rest."""
    reports = []
    for category in categories:
        print(f"Processing {category} (Grid Mode)...")
        try:
            report = pack_category(
                category, image_root, metadata_root, bundle_root,
                cols=cols, rows=rows, create_missing=create_missing,
                dry_run=dry_run,
            )
        except OSError as e:
            print(f"Error: {category}: {e}", file=sys.stderr)
            report = CategoryReport(category, errors=[str(e)])
        reports.append(report)
    return reports


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Pack new sprites into grid atlas bundles."
    )
    parser.add_argument(
        "categories", nargs="*",
        help="Categories to process (default: every directory under the image root)"
    )
    parser.add_argument(
        "--config", type=Path, default=DEFAULT_CONFIG,
        help="Path to bundle_config.json"
    )
    parser.add_argument("--image-root", type=Path, default=None,
                        help="Sprite tree root (default: from config)")
    parser.add_argument("--metadata-root", type=Path, default=None,
                        help="Sidecar root (default: from config)")
    parser.add_argument("--bundle-root", type=Path, default=None,
                        help="Atlas output directory (default: from config)")
    parser.add_argument("--rows", type=int, default=None,
                        help="Grid rows per page (default: from config)")
    parser.add_argument("--cols", type=int, default=None,
                        help="Grid columns per page (default: from config)")
    parser.add_argument(
        "--no-create-entries", action="store_true",
        help="Do not add sidecar entries for sprites that lack one"
    )
    parser.add_argument(
        "--dry-run", action="store_true",
        help="Print what would be done without writing files"
    )
    args = parser.parse_args(argv)

    try:
        config = load_bundle_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Error: cannot load config {args.config}: {e}", file=sys.stderr)
        return 1

    image_root = args.image_root or resolve_root(config["image_root"])
    metadata_root = args.metadata_root or resolve_root(config["metadata_root"])
    bundle_root = args.bundle_root or resolve_root(config["bundle_root"])
    rows = args.rows if args.rows is not None else int(config["rows"])
    cols = args.cols if args.cols is not None else int(config["cols"])
    create_missing = bool(config["create_missing_entries"]) and not args.no_create_entries

    if rows < 1 or cols < 1:
        print(f"Error: grid must be at least 1x1, got {cols}x{rows}", file=sys.stderr)
        return 1
    if not image_root.is_dir():
        print(f"Error: image root not found: {image_root}", file=sys.stderr)
        return 1

    categories = args.categories or list_categories(image_root)
    prefix = "[DRY RUN] " if args.dry_run else ""
    print(f"=== {prefix}Bundle Packer: {len(categories)} category(ies) ===")
    print(f"  Images:   {image_root}")
    print(f"  Names:    {metadata_root}")
    print(f"  Bundles:  {bundle_root}")
    print(f"  Grid:     {cols}x{rows}")

    reports = run(
        categories, image_root, metadata_root, bundle_root,
        cols=cols, rows=rows, create_missing=create_missing,
        dry_run=args.dry_run,
    )

    packed = sum(len(r.packed) for r in reports)
    pages = sum(len(r.pages_written) for r in reports)
    failed = sum(len(r.failed) for r in reports)
    bad = [r.category for r in reports if not r.ok]
    print(f"=== {prefix}Done: {packed} sprite(s) packed into {pages} page(s), "
          f"{failed} decode failure(s) ===")
    if bad:
        print(f"Error: {len(bad)} category(ies) had errors: {', '.join(bad)}",
              file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
