import pytest

from errors import ManifestParseError
from manifest import (
    build_index, candidate_edges, load_manifest_file, parse_from_directory,
    strength_from_fixed, strength_to_fixed,
)
from conftest import write_manifest


class TestStrength:
    @pytest.mark.parametrize("value,fixed", [
        (0.75, 8),
        (1.0, 10),
        (0.25, 3),
        (-0.25, -3),
        (0.0, 0),
    ])
    def test_rounds_half_away_from_zero(self, value, fixed):
        assert strength_to_fixed(value) == fixed

    def test_from_fixed(self):
        assert strength_from_fixed(75) == 7.5
        assert strength_from_fixed(None) is None


class TestBuildIndex:
    def test_metadata_maps(self):
        index = build_index(
            [{"file": "base.safetensors", "name": "Base", "autoencoder": "vae.safetensors",
              "clip_encoder": "clip.safetensors", "text_encoder": "t5.safetensors"}],
            [{"file": "style.safetensors", "name": " Style ", "weight": {"value": 0.6}}],
            [{"file": "canny.safetensors"}],
        )

        assert index.get_display_name("base.safetensors") == "Base"
        assert index.get_display_name("style.safetensors") == "Style"
        assert index.get_kind("vae.safetensors") == "vae"
        assert index.get_kind("clip.safetensors") == "clip"
        assert index.get_kind("t5.safetensors") == "text"
        assert index.get_kind("canny.safetensors") == "control"
        assert index.get_strength("style.safetensors") == 6
        assert index.get_display_order("style.safetensors") == 0
        assert candidate_edges(index) == [
            ("base.safetensors", "vae.safetensors"),
            ("base.safetensors", "clip.safetensors"),
            ("base.safetensors", "t5.safetensors"),
        ]

    def test_explicit_entry_beats_encoder_inference(self):
        index = build_index(
            [{"file": "a.ckpt", "autoencoder": "b.ckpt"}, {"file": "b.ckpt"}], [], [])
        assert index.get_kind("b.ckpt") == "model"


class TestParsing:
    def test_missing_files_are_empty(self, tmp_path):
        index = parse_from_directory(tmp_path)
        assert index.is_empty()
        assert index.errors == []

    def test_malformed_file_is_recorded_not_fatal(self, tmp_path):
        (tmp_path / "custom.json").write_text("{not json", encoding="utf-8")
        write_manifest(tmp_path, "custom_lora.json", [{"file": "l.safetensors"}])

        index = parse_from_directory(tmp_path)

        assert len(index.errors) == 1
        assert "custom.json" in index.errors[0]
        assert index.get_kind("l.safetensors") == "lora"

    def test_non_list_raises(self, tmp_path):
        path = write_manifest(tmp_path, "custom.json", {"file": "x"})
        with pytest.raises(ManifestParseError):
            load_manifest_file(path)

    def test_entries_without_file_are_ignored(self, tmp_path):
        path = write_manifest(tmp_path, "custom.json", [{"name": "no file"}, {"file": "ok.ckpt"}])
        assert load_manifest_file(path) == [{"file": "ok.ckpt"}]
