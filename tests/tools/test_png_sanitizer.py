"""Tests for tools/png_sanitizer.py — trailing garbage removal."""
from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest

# Ensure tools/ is importable
TOOLS_DIR = Path(__file__).resolve().parent.parent.parent / "tools"
sys.path.insert(0, str(TOOLS_DIR))

import png_sanitizer as san

try:
    from PIL import Image as _PIL_Image
    HAS_PIL = True
except ImportError:
    HAS_PIL = False

requires_pil = pytest.mark.skipif(not HAS_PIL, reason="Pillow not installed")

IEND_CHUNK = b"\x00\x00\x00\x00IEND\xaeB`\x82"
GARBAGE = b"\xab" * 200


def fake_png(body=b"\x00\x00\x00\x0dIHDR" + b"\x00" * 17):
    """Signature + some chunk bytes + IEND; not decodable, but well-formed at the end."""
    return san.PNG_SIGNATURE + body + IEND_CHUNK


def real_png(width=8, height=8, color=(10, 200, 30, 255)):
    from PIL import Image
    buf = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, "PNG")
    return buf.getvalue()


class TestSanitizePng:
    def test_clean_buffer_unchanged(self):
        data = fake_png()
        assert san.sanitize_png(data) == data

    def test_strips_trailing_garbage(self):
        data = fake_png()
        assert san.sanitize_png(data + GARBAGE) == data

    def test_uses_last_iend(self):
        # An IEND string inside earlier chunk data must not cut the image short
        data = fake_png(body=b"\x00\x00\x00\x04tEXtIEND")
        assert san.sanitize_png(data + GARBAGE) == data

    def test_no_marker_passes_through(self):
        data = b"not a png at all" * 4
        assert san.sanitize_png(data) == data

    def test_truncated_crc_passes_through(self):
        data = san.PNG_SIGNATURE + b"\x00\x00\x00\x00IEND\xae"
        assert san.sanitize_png(data) == data

    def test_empty_buffer(self):
        assert san.sanitize_png(b"") == b""


class TestTrailingGarbage:
    def test_counts_extra_bytes(self):
        assert san.trailing_garbage(fake_png() + GARBAGE) == 200

    def test_zero_for_clean(self):
        assert san.trailing_garbage(fake_png()) == 0

    def test_zero_without_marker(self):
        assert san.trailing_garbage(b"garbage only") == 0


class TestSignature:
    def test_png_signature(self):
        assert san.has_png_signature(fake_png())

    def test_non_png(self):
        assert not san.has_png_signature(b"GIF89a....")


@requires_pil
class TestRealImages:
    def test_sanitized_buffer_decodes(self):
        from PIL import Image
        clean = real_png(12, 7)
        dirty = clean + GARBAGE

        repaired = san.sanitize_png(dirty)

        assert repaired == clean
        img = Image.open(io.BytesIO(repaired))
        img.load()
        assert img.size == (12, 7)


class TestMain:
    def test_reports_garbage(self, tmp_path, capsys):
        path = tmp_path / "bad.png"
        path.write_bytes(fake_png() + GARBAGE)

        result = san.main([str(path)])

        assert result == 0
        assert "200 byte(s) after IEND" in capsys.readouterr().out
        assert path.read_bytes() == fake_png() + GARBAGE

    def test_write_repairs_file(self, tmp_path):
        path = tmp_path / "bad.png"
        path.write_bytes(fake_png() + GARBAGE)

        assert san.main([str(path), "--write"]) == 0
        assert path.read_bytes() == fake_png()

    def test_missing_file_returns_error(self, tmp_path):
        assert san.main([str(tmp_path / "nope.png")]) == 1
