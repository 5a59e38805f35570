"""Tests for tools/sprite_metadata.py — sidecars, manifests, lookup table."""
from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

# Ensure tools/ is importable
TOOLS_DIR = Path(__file__).resolve().parent.parent.parent / "tools"
sys.path.insert(0, str(TOOLS_DIR))

import sprite_metadata as sm


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def write_sidecar(metadata_root, rel_dir, data):
    path = metadata_root / rel_dir / "name.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))
    return path


def read_sidecar(metadata_root, rel_dir):
    with open(metadata_root / rel_dir / "name.json") as f:
        return json.load(f)


RECT = {"x": 32, "y": 0, "w": 30, "h": 28}


# ---------------------------------------------------------------------------
# Position records
# ---------------------------------------------------------------------------

class TestPositionRecord:
    def test_shape(self):
        assert sm.position_record("clot.png", RECT) == {
            "atlas": "clot.png",
            "position": {"x": 32, "y": 0, "w": 30, "h": 28},
        }

    def test_read_position_roundtrips(self):
        entry = {"name": "Coat", "bundle": sm.position_record("clot.png", RECT)}
        assert sm.read_position(entry) == sm.position_record("clot.png", RECT)

    def test_read_position_absent(self):
        assert sm.read_position({"name": "Coat"}) is None

    def test_read_position_malformed(self):
        assert sm.read_position({"bundle": {"atlas": "x.png"}}) is None
        assert sm.read_position({"bundle": {"atlas": "x.png", "position": {"x": 1}}}) is None
        assert sm.read_position("legacy string entry") is None

    def test_sidecar_dir(self):
        assert sm.sidecar_dir("clot/boy/m_clot001.png") == "clot/boy"


# ---------------------------------------------------------------------------
# apply_positions
# ---------------------------------------------------------------------------

class TestApplyPositions:
    def test_adds_bundle_and_keeps_other_keys(self, tmp_path):
        write_sidecar(tmp_path, "glas/all", {
            "u_glas001.png": {
                "name": "Shades",
                "hideBaseLayer": True,
                "animate": {"isAnimated": False, "animateFrame": 0},
            },
        })
        record = sm.position_record("glas.png", RECT)

        written, failed = sm.apply_positions(tmp_path, {"glas/all/u_glas001.png": record})

        assert failed == []
        assert len(written) == 1
        entry = read_sidecar(tmp_path, "glas/all")["u_glas001.png"]
        assert entry["bundle"] == record
        assert entry["hideBaseLayer"] is True
        assert entry["animate"] == {"isAnimated": False, "animateFrame": 0}

    def test_preserves_key_order(self, tmp_path):
        write_sidecar(tmp_path, "clot/boy", {
            "m_clot003.png": {"name": "c"},
            "m_clot001.png": {"name": "a"},
        })
        sm.apply_positions(tmp_path, {
            "clot/boy/m_clot001.png": sm.position_record("clot.png", RECT),
        })
        assert list(read_sidecar(tmp_path, "clot/boy")) == ["m_clot003.png", "m_clot001.png"]

    def test_unchanged_sidecar_not_rewritten(self, tmp_path):
        record = sm.position_record("clot.png", RECT)
        path = write_sidecar(tmp_path, "clot/boy", {
            "m_clot001.png": {"name": "a", "bundle": record},
        })
        before = path.read_text()

        written, failed = sm.apply_positions(tmp_path, {"clot/boy/m_clot001.png": record})

        assert written == []
        assert failed == []
        assert path.read_text() == before

    def test_creates_missing_entry(self, tmp_path):
        write_sidecar(tmp_path, "clot/boy", {"m_clot001.png": {"name": "a"}})
        record = sm.position_record("clot.png", RECT)

        sm.apply_positions(tmp_path, {"clot/boy/m_clot002.png": record})

        entry = read_sidecar(tmp_path, "clot/boy")["m_clot002.png"]
        assert entry == {"name": "m_clot002", "bundle": record}

    def test_creates_missing_sidecar_file(self, tmp_path):
        record = sm.position_record("hats.png", RECT)
        written, _ = sm.apply_positions(tmp_path, {"hats/girl/f_hats001.png": record})
        assert written == [tmp_path / "hats" / "girl" / "name.json"]
        assert read_sidecar(tmp_path, "hats/girl")["f_hats001.png"]["bundle"] == record

    def test_skip_missing_entry_when_disabled(self, tmp_path, capsys):
        path = write_sidecar(tmp_path, "clot/boy", {"m_clot001.png": {"name": "a"}})
        before = path.read_text()

        written, failed = sm.apply_positions(
            tmp_path,
            {"clot/boy/m_clot002.png": sm.position_record("clot.png", RECT)},
            create_missing=False,
        )

        assert written == []
        assert failed == []
        assert path.read_text() == before
        assert "no sidecar entry" in capsys.readouterr().out

    def test_upgrades_string_entry(self, tmp_path):
        write_sidecar(tmp_path, "clot/boy", {"m_clot001.png": "Red Coat"})
        record = sm.position_record("clot.png", RECT)
        sm.apply_positions(tmp_path, {"clot/boy/m_clot001.png": record})
        assert read_sidecar(tmp_path, "clot/boy")["m_clot001.png"] == {
            "name": "Red Coat", "bundle": record,
        }

    def test_none_clears_bundle(self, tmp_path):
        write_sidecar(tmp_path, "clot/boy", {
            "m_clot001.png": {"name": "a", "bundle": sm.position_record("clot.png", RECT)},
        })
        sm.apply_positions(tmp_path, {"clot/boy/m_clot001.png": None})
        assert read_sidecar(tmp_path, "clot/boy")["m_clot001.png"] == {"name": "a"}

    def test_broken_sidecar_does_not_block_others(self, tmp_path, capsys):
        bad = tmp_path / "clot" / "boy" / "name.json"
        bad.parent.mkdir(parents=True)
        bad.write_text("{not json")
        write_sidecar(tmp_path, "clot/girl", {"f_clot001.png": {"name": "b"}})
        record = sm.position_record("clot.png", RECT)

        written, failed = sm.apply_positions(tmp_path, {
            "clot/boy/m_clot001.png": record,
            "clot/girl/f_clot001.png": record,
        })

        assert failed == [bad]
        assert written == [tmp_path / "clot" / "girl" / "name.json"]
        assert bad.read_text() == "{not json"
        assert "sidecar update failed" in capsys.readouterr().err

    def test_dry_run_writes_nothing(self, tmp_path):
        path = write_sidecar(tmp_path, "clot/boy", {"m_clot001.png": {"name": "a"}})
        before = path.read_text()
        written, _ = sm.apply_positions(
            tmp_path,
            {"clot/boy/m_clot001.png": sm.position_record("clot.png", RECT)},
            dry_run=True,
        )
        assert written == []
        assert path.read_text() == before

    def test_written_file_format(self, tmp_path):
        sm.apply_positions(tmp_path, {
            "clot/boy/m_clot001.png": sm.position_record("clot.png", RECT),
        })
        text = (tmp_path / "clot" / "boy" / "name.json").read_text()
        assert text.endswith("}\n")
        assert '\n  "m_clot001.png"' in text
        assert not (tmp_path / "clot" / "boy" / "name.json.tmp").exists()

    def test_failed_write_leaves_no_temp_file(self, tmp_path):
        path = write_sidecar(tmp_path, "clot/boy", {"m_clot001.png": {"name": "a"}})
        before = path.read_text()

        with pytest.raises(TypeError):
            sm.write_json(path, {"m_clot001.png": object()})

        assert path.read_text() == before
        assert not path.with_name("name.json.tmp").exists()


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

class TestManifest:
    def test_missing_manifest_is_empty(self, tmp_path):
        assert sm.load_manifest(tmp_path, "clot") == {}

    def test_save_and_load(self, tmp_path):
        manifest = {"category": "clot", "page0_naming": "explicit", "pages": []}
        path = sm.save_manifest(tmp_path, "clot", manifest)
        assert path == tmp_path / "clot.json"
        assert sm.load_manifest(tmp_path, "clot") == manifest

    def test_unreadable_manifest_is_ignored(self, tmp_path, capsys):
        (tmp_path / "clot.json").write_text("[1, 2")
        assert sm.load_manifest(tmp_path, "clot") == {}
        assert "WARNING" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Lookup table
# ---------------------------------------------------------------------------

class TestBuildLookup:
    def test_maps_sprites_to_atlases(self, tmp_path):
        write_sidecar(tmp_path, "clot/boy", {
            "m_clot001.png": {"name": "a", "bundle": sm.position_record("clot_0.png", RECT)},
            "m_clot002.png": {"name": "b"},
        })
        write_sidecar(tmp_path, "glas/all", {
            "u_glas001.png": {"name": "c", "bundle": sm.position_record("glas.png", RECT)},
        })

        assert sm.build_lookup(tmp_path) == {
            "clot/boy/m_clot001.png": "clot_0.png",
            "glas/all/u_glas001.png": "glas.png",
        }

    def test_empty_root(self, tmp_path):
        assert sm.build_lookup(tmp_path / "missing") == {}

    def test_main_prints_json(self, tmp_path, capsys):
        write_sidecar(tmp_path, "clot/boy", {
            "m_clot001.png": {"name": "a", "bundle": sm.position_record("clot.png", RECT)},
        })
        assert sm.main(["--metadata-root", str(tmp_path)]) == 0
        assert json.loads(capsys.readouterr().out) == {"clot/boy/m_clot001.png": "clot.png"}

    def test_main_missing_root(self, tmp_path):
        assert sm.main(["--metadata-root", str(tmp_path / "nope")]) == 1
