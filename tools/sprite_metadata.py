#!/usr/bin/env python3
"""Read and write sprite metadata sidecars and category bundle manifests.

Sidecars live at {metadata_root}/{category}/{subdirectory}/name.json and
map each sprite filename to an entry object::

    {"m_clot001.png": {"name": "Red Coat", "hideBaseLayer": false,
                       "bundle": {"atlas": "clot_0.png",
                                  "position": {"x": 0, "y": 0, "w": 32, "h": 40}}}}

Packing only ever adds, replaces or clears the "bundle" key; every other
key belongs to the ingestion side and is carried through untouched.

The category manifest ({bundle_root}/{category}.json) records how page 0
of the category is named so the choice never has to be re-guessed from
files on disk.

Usage:
    python3 tools/sprite_metadata.py --metadata-root names
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path, PurePosixPath

SIDECAR_NAME = "name.json"
BUNDLE_KEY = "bundle"


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def write_json(path: Path, data) -> None:
    """Write JSON with 2-space indent and a trailing newline, atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def load_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# Sidecars
# ---------------------------------------------------------------------------

def sidecar_dir(rel_path: str) -> str:
    """Relative directory holding the sidecar for a sprite path."""
    return str(PurePosixPath(rel_path).parent)


def sidecar_path(metadata_root: Path, rel_dir: str) -> Path:
    return metadata_root / rel_dir / SIDECAR_NAME


def load_sidecar(path: Path) -> dict:
    """Load a sidecar file.

    Raises OSError when unreadable and ValueError when the content is not
    a JSON object.
    """
    data = load_json(path)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object, got {type(data).__name__}")
    return data


def save_sidecar(path: Path, data: dict) -> None:
    write_json(path, data)


def iter_sidecars(metadata_root: Path):
    """Yield (rel_dir, path) for every sidecar under *metadata_root*, sorted."""
    if not metadata_root.is_dir():
        return
    for path in sorted(metadata_root.rglob(SIDECAR_NAME)):
        rel_dir = path.parent.relative_to(metadata_root).as_posix()
        yield rel_dir, path


def position_record(atlas: str, rect: dict) -> dict:
    """Build the value stored under an entry's "bundle" key."""
    return {
        "atlas": atlas,
        "position": {
            "x": int(rect["x"]),
            "y": int(rect["y"]),
            "w": int(rect["w"]),
            "h": int(rect["h"]),
        },
    }


def read_position(entry) -> dict | None:
    """Return an entry's position record, or None if absent or malformed."""
    if not isinstance(entry, dict):
        return None
    bundle = entry.get(BUNDLE_KEY)
    if not isinstance(bundle, dict):
        return None
    atlas = bundle.get("atlas")
    pos = bundle.get("position")
    if not isinstance(atlas, str) or not isinstance(pos, dict):
        return None
    try:
        return position_record(atlas, pos)
    except (KeyError, TypeError, ValueError):
        return None


def _updated_entry(filename: str, entry, record: dict | None):
    """Return the entry with its bundle key replaced (or removed)."""
    if entry is None:
        entry = {"name": PurePosixPath(filename).stem}
    elif not isinstance(entry, dict):
        # Old sidecars stored the display name as a bare string
        entry = {"name": entry}
    else:
        entry = dict(entry)

    if record is None:
        entry.pop(BUNDLE_KEY, None)
    else:
        entry[BUNDLE_KEY] = record
    return entry


def apply_positions(
    metadata_root: Path,
    updates: dict[str, dict | None],
    create_missing: bool = True,
    dry_run: bool = False,
) -> tuple[list[Path], list[Path]]:
    """Upsert position records into their sidecars.

    *updates* maps sprite relative paths to a position record, or to None
    to clear a stale record. Each sidecar is loaded, mutated in memory and
    written back as a whole; a failure on one sidecar is reported and the
    rest are still processed. Sidecars whose content would not change are
    not rewritten.

    Returns (written_paths, failed_paths).
    """
    grouped: dict[str, dict[str, dict | None]] = {}
    for rel_path, record in updates.items():
        grouped.setdefault(sidecar_dir(rel_path), {})[
            PurePosixPath(rel_path).name
        ] = record

    written = []
    failed = []
    for rel_dir in sorted(grouped):
        path = sidecar_path(metadata_root, rel_dir)
        try:
            if path.exists():
                data = load_sidecar(path)
            elif create_missing:
                print(f"  WARNING: creating missing sidecar {path}")
                data = {}
            else:
                print(f"  WARNING: no sidecar at {path}; "
                      f"{len(grouped[rel_dir])} position(s) not recorded")
                continue

            changed = False
            for filename, record in grouped[rel_dir].items():
                entry = data.get(filename)
                if record is None and read_position(entry) is None:
                    continue
                if entry is None:
                    if not create_missing:
                        print(f"  WARNING: {rel_dir}/{filename} has no sidecar "
                              f"entry; position not recorded")
                        continue
                    print(f"  WARNING: adding sidecar entry for {rel_dir}/{filename}")
                new_entry = _updated_entry(filename, entry, record)
                if new_entry != entry:
                    data[filename] = new_entry
                    changed = True

            if not changed:
                continue
            if dry_run:
                print(f"  [DRY RUN] Would write: {path}")
                continue
            save_sidecar(path, data)
            written.append(path)
        except (OSError, ValueError) as e:
            print(f"Error: sidecar update failed for {path}: {e}", file=sys.stderr)
            failed.append(path)

    return written, failed


# ---------------------------------------------------------------------------
# Category bundle manifest
# ---------------------------------------------------------------------------

def manifest_path(bundle_root: Path, category: str) -> Path:
    return bundle_root / f"{category}.json"


def load_manifest(bundle_root: Path, category: str) -> dict:
    """Load a category's bundle manifest; missing file gives an empty dict."""
    path = manifest_path(bundle_root, category)
    if not path.exists():
        return {}
    try:
        data = load_json(path)
    except (OSError, ValueError) as e:
        print(f"  WARNING: ignoring unreadable manifest {path}: {e}")
        return {}
    if not isinstance(data, dict):
        print(f"  WARNING: ignoring malformed manifest {path}")
        return {}
    return data


def save_manifest(bundle_root: Path, category: str, manifest: dict) -> Path:
    path = manifest_path(bundle_root, category)
    write_json(path, manifest)
    return path


# ---------------------------------------------------------------------------
# Downstream lookup table
# ---------------------------------------------------------------------------

def build_lookup(metadata_root: Path) -> dict[str, str]:
    """Map "{category}/{subdirectory}/{filename}" to its atlas filename.

    Sidecars that cannot be read are reported and skipped.
    """
    lookup = {}
    for rel_dir, path in iter_sidecars(metadata_root):
        try:
            data = load_sidecar(path)
        except (OSError, ValueError) as e:
            print(f"Error: cannot read {path}: {e}", file=sys.stderr)
            continue
        for filename, entry in data.items():
            record = read_position(entry)
            if record is not None:
                lookup[f"{rel_dir}/{filename}"] = record["atlas"]
    return lookup


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Print the sprite-to-atlas lookup table built from sidecars."
    )
    parser.add_argument(
        "--metadata-root", type=Path, required=True,
        help="Root directory of the name.json sidecars"
    )
    args = parser.parse_args(argv)

    if not args.metadata_root.is_dir():
        print(f"Error: metadata root not found: {args.metadata_root}",
              file=sys.stderr)
        return 1

    lookup = build_lookup(args.metadata_root)
    json.dump(lookup, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
