#!/usr/bin/env python3
"""Strip trailing garbage appended after a PNG's IEND chunk.

Upstream SWF-to-PNG conversion occasionally leaves junk bytes after the
logical end of the image, which strict decoders reject. The repair is
purely byte-level (no Pillow needed): the buffer is cut right after the
CRC that follows the last IEND chunk type.

Usage:
    python3 tools/png_sanitizer.py img/glas/all/u_glas248.png
    python3 tools/png_sanitizer.py img/glas/all/*.png --write
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
IEND_TYPE = b"IEND"
CRC_LENGTH = 4


def has_png_signature(data: bytes) -> bool:
    """Return True if the buffer starts with the 8-byte PNG signature."""
    return data[:8] == PNG_SIGNATURE


def logical_end(data: bytes) -> int | None:
    """Return the offset just past the final IEND chunk's CRC.

    Returns None when there is no IEND marker, or when its CRC would run
    past the end of the buffer (the file is truncated, not padded).
    """
    idx = data.rfind(IEND_TYPE)
    if idx == -1:
        return None
    end = idx + len(IEND_TYPE) + CRC_LENGTH
    if end > len(data):
        return None
    return end


def trailing_garbage(data: bytes) -> int:
    """Number of bytes sanitize_png() would discard."""
    end = logical_end(data)
    if end is None:
        return 0
    return len(data) - end


def sanitize_png(data: bytes) -> bytes:
    """Return *data* truncated after its IEND chunk.

    Buffers without an IEND marker are returned unchanged; decoding them
    fails downstream and is reported there.
    """
    end = logical_end(data)
    if end is None or end == len(data):
        return data
    return data[:end]


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Report (and optionally strip) bytes after a PNG's IEND chunk."
    )
    parser.add_argument("files", nargs="+", type=Path, help="PNG files to check")
    parser.add_argument(
        "--write", action="store_true",
        help="Rewrite files in place with the garbage removed"
    )
    args = parser.parse_args(argv)

    failed = 0
    for path in args.files:
        try:
            data = path.read_bytes()
        except OSError as e:
            print(f"Error: cannot read {path}: {e}", file=sys.stderr)
            failed += 1
            continue

        if not has_png_signature(data):
            print(f"  WARNING: {path} does not start with a PNG signature")
        extra = trailing_garbage(data)
        if extra == 0:
            print(f"  OK: {path}")
            continue

        print(f"  GARBAGE: {path} has {extra} byte(s) after IEND")
        if args.write:
            path.write_bytes(sanitize_png(data))
            print(f"  Wrote: {path}")

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
