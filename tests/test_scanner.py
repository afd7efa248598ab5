from unittest.mock import patch

import file_ops

from classifier import ModelClassifier
from errors import IOFailure
from manifest import parse_from_directory
from relationships import resolve_relationships
from scanner import import_directory
from conftest import write_file, write_manifest


def scan(catalog, models_dir, location="host", **kwargs):
    manifest = parse_from_directory(models_dir)
    classifier = ModelClassifier(manifest)
    return import_directory(catalog, models_dir, location, classifier, manifest, **kwargs)


class TestImportDirectory:
    def test_heuristic_lora(self, catalog, tmp_path):
        write_file(tmp_path / "Models" / "my_lora_v2.safetensors")

        result = scan(catalog, tmp_path / "Models")

        assert result.imported_count == 1
        model = catalog.get_model("my_lora_v2.safetensors")
        assert model.kind == "lora"
        assert model.exists_host and not model.exists_stash

    def test_second_scan_is_idempotent(self, catalog, tmp_path):
        models = tmp_path / "Models"
        write_file(models / "a.ckpt")
        write_file(models / "b_vae.safetensors")
        write_manifest(models, "custom.json", [{"file": "a.ckpt", "name": "A"}])

        first = scan(catalog, models)
        before = [catalog.get_model(n) for n in ("a.ckpt", "b_vae.safetensors")]
        second = scan(catalog, models)
        after = [catalog.get_model(n) for n in ("a.ckpt", "b_vae.safetensors")]

        assert first.imported_count == 2
        assert second.imported_count == 0
        assert second.updated_count == 0
        assert second.scanned_count == 2
        assert before == after

    def test_missing_directory(self, catalog, tmp_path):
        result = scan(catalog, tmp_path / "nothing")
        assert (result.scanned_count, result.imported_count, result.errors) == (0, 0, [])

    def test_bad_file_does_not_abort(self, catalog, tmp_path):
        models = tmp_path / "Models"
        write_file(models / "a.ckpt")
        write_file(models / "b.ckpt")

        real_size = file_ops.get_file_size

        def flaky(path):
            if path.name == "a.ckpt":
                raise IOFailure("unreadable", path)
            return real_size(path)

        with patch("file_ops.get_file_size", side_effect=flaky):
            result = scan(catalog, models)

        assert result.scanned_count == 2
        assert result.imported_count == 1
        assert len(result.errors) == 1
        assert "a.ckpt" in result.errors[0]

    def test_kind_filter(self, catalog, tmp_path):
        models = tmp_path / "Models"
        write_file(models / "x_lora.safetensors")
        write_file(models / "base.ckpt")

        result = scan(catalog, models, kind="lora")

        assert result.scanned_count == 1
        assert catalog.model_exists("x_lora.safetensors")
        assert not catalog.model_exists("base.ckpt")

    def test_manifest_metadata(self, catalog, tmp_path):
        models = tmp_path / "Models"
        write_file(models / "style.safetensors")
        write_manifest(models, "custom_lora.json", [
            {"file": "other.safetensors"},
            {"file": "style.safetensors", "name": "Style", "weight": {"value": 0.8}},
        ])

        scan(catalog, models)

        model = catalog.get_model("style.safetensors")
        assert (model.kind, model.kind_source) == ("lora", "manifest")
        assert model.display_name == "Style"
        assert model.host_display_order == 1
        assert model.strength == 8

    def test_full_scan_clears_vanished_files(self, catalog, tmp_path):
        models = tmp_path / "Models"
        gone = write_file(models / "gone.ckpt")
        write_file(models / "kept.ckpt")
        scan(catalog, models)

        gone.unlink()
        result = scan(catalog, models)

        assert result.missing == ["gone.ckpt"]
        assert not catalog.get_model("gone.ckpt").exists_host
        assert catalog.get_model("kept.ckpt").exists_host


class TestRelationshipResolution:
    def test_only_existing_endpoints(self, catalog, tmp_path):
        models = tmp_path / "Models"
        write_file(models / "base.safetensors")
        write_file(models / "ae.safetensors")
        write_manifest(models, "custom.json", [{
            "file": "base.safetensors",
            "autoencoder": "ae.safetensors",
            "text_encoder": "not_downloaded.safetensors",
        }])
        scan(catalog, models)
        manifest = parse_from_directory(models)

        assert resolve_relationships(catalog, manifest) == 1
        assert resolve_relationships(catalog, manifest) == 0

        edges = [(e.parent_filename, e.child_filename) for e in catalog.get_all_relationships()]
        assert edges == [("base.safetensors", "ae.safetensors")]
        assert catalog.get_model("ae.safetensors").kind == "vae"
