#!/usr/bin/env python3
"""Render a batch of sprites into one fixed-grid atlas page.

Every cell on a page has the same size: the largest width and the largest
height found in the batch. Sprites keep their own size and sit in the
top-left corner of their cell (row-major order, no scaling, no centering),
and the rectangle recorded for each sprite is its own bounds inside the
atlas, not the cell.

Requires: Pillow (PIL)

Usage:
    python3 tools/grid_packer.py out.png a.png b.png c.png --cols 4 --rows 4
"""
from __future__ import annotations

import argparse
import io
import json
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

from png_sanitizer import sanitize_png

Image = None  # lazy import — Pillow not available in all CI environments


def _require_pil():
    """Import PIL lazily so the module can be imported without Pillow."""
    global Image
    if Image is not None:
        return
    try:
        from PIL import Image as _Image
        Image = _Image
    except ImportError:
        print("Error: Pillow is required. Install with: pip install Pillow",
              file=sys.stderr)
        sys.exit(1)


DEFAULT_COLS = 4
DEFAULT_ROWS = 4


class SpriteDecodeError(Exception):
    """A sprite could not be read or decoded."""


@dataclass
class PackedPage:
    """Result of rendering one page."""

    image: object  # PIL.Image.Image, or None when nothing decoded
    cell_size: tuple[int, int]
    rects: dict[str, dict] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)


def decode_png(data: bytes):
    """Decode PNG bytes (sanitized first) into an RGBA image."""
    _require_pil()
    try:
        with Image.open(io.BytesIO(sanitize_png(data))) as img:
            img.load()
            return img.convert("RGBA")
    except (OSError, ValueError, SyntaxError, EOFError, IndexError,
            Image.DecompressionBombError) as e:
        raise SpriteDecodeError(str(e) or type(e).__name__) from e


def load_sprite(source):
    """Return an RGBA image from a path, raw bytes, or a decoded image."""
    _require_pil()
    if isinstance(source, Image.Image):
        return source if source.mode == "RGBA" else source.convert("RGBA")
    if isinstance(source, (bytes, bytearray)):
        return decode_png(bytes(source))
    try:
        data = Path(source).read_bytes()
    except OSError as e:
        raise SpriteDecodeError(f"cannot read {source}: {e}") from e
    return decode_png(data)


def cell_origin(index: int, cols: int, cell_w: int, cell_h: int) -> tuple[int, int]:
    """Top-left pixel of the cell at a row-major batch position."""
    return (index % cols) * cell_w, (index // cols) * cell_h


def pack_grid(entries, cols: int = DEFAULT_COLS, rows: int = DEFAULT_ROWS) -> PackedPage:
    """Composite (key, source) entries into a cols x rows grid canvas.

    Entries that fail to decode are reported and left out of the grid;
    the remaining sprites fill the cells in order without gaps.
    """
    _require_pil()
    if cols < 1 or rows < 1:
        raise ValueError(f"grid must be at least 1x1, got {cols}x{rows}")
    if len(entries) > cols * rows:
        raise ValueError(
            f"{len(entries)} sprites do not fit a {cols}x{rows} grid"
        )

    loaded = []
    failed = []
    for key, source in entries:
        try:
            loaded.append((key, load_sprite(source)))
        except SpriteDecodeError as e:
            print(f"Error: cannot decode {key}: {e}", file=sys.stderr)
            failed.append((key, str(e)))

    if not loaded:
        return PackedPage(None, (0, 0), failed=failed)

    # Force minimum size to avoid 0x0 canvases
    cell_w = max(1, max(img.width for _, img in loaded))
    cell_h = max(1, max(img.height for _, img in loaded))
    sheet_w = cols * cell_w
    sheet_h = rows * cell_h
    canvas = Image.new("RGBA", (sheet_w, sheet_h), (0, 0, 0, 0))
    print(f"    Canvas: {sheet_w}x{sheet_h} (Cell: {cell_w}x{cell_h})")

    page = PackedPage(canvas, (cell_w, cell_h), failed=failed)
    for i, (key, img) in enumerate(loaded):
        x, y = cell_origin(i, cols, cell_w, cell_h)
        canvas.paste(img, (x, y))
        page.rects[key] = {"x": x, "y": y, "w": img.width, "h": img.height}
        page.order.append(key)
    return page


def save_atlas(image, path: Path) -> None:
    """Write a page PNG, replacing any previous file only once fully written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        image.save(tmp_path, "PNG")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Pack PNG files into a single grid atlas page."
    )
    parser.add_argument("output", type=Path, help="Atlas PNG to write")
    parser.add_argument("sprites", nargs="+", type=Path, help="Sprite PNGs, in cell order")
    parser.add_argument("--cols", type=int, default=DEFAULT_COLS,
                        help=f"Grid columns (default: {DEFAULT_COLS})")
    parser.add_argument("--rows", type=int, default=DEFAULT_ROWS,
                        help=f"Grid rows (default: {DEFAULT_ROWS})")
    args = parser.parse_args(argv)

    entries = [(str(p), p) for p in args.sprites]
    try:
        page = pack_grid(entries, args.cols, args.rows)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if page.image is None:
        print("Error: no sprite could be decoded", file=sys.stderr)
        return 1

    try:
        save_atlas(page.image, args.output)
    except OSError as e:
        print(f"Error: cannot write {args.output}: {e}", file=sys.stderr)
        return 1
    print(f"  Wrote: {args.output}")
    json.dump(page.rects, sys.stdout, indent=2)
    sys.stdout.write("\n")
    return 1 if page.failed else 0


if __name__ == "__main__":
    sys.exit(main())
