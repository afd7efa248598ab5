import sqlite3

import pytest

from database import ModelEntry, UPSERT_INSERTED, UPSERT_UNCHANGED, UPSERT_UPDATED
from errors import NotFoundError


def add(catalog, filename, **fields):
    entry = ModelEntry(filename=filename, **fields)
    catalog.upsert_model(entry)
    return catalog.get_model(filename)


class TestUpsert:
    def test_insert_then_unchanged(self, catalog):
        entry = ModelEntry("a.ckpt", kind="model", kind_source="heuristic",
                           file_size=10, exists_host=True)
        assert catalog.upsert_model(entry) == UPSERT_INSERTED
        assert catalog.upsert_model(entry) == UPSERT_UNCHANGED
        assert catalog.get_model_count() == 1

    def test_location_flags_accumulate(self, catalog):
        add(catalog, "a.ckpt", exists_host=True)
        outcome = catalog.upsert_model(ModelEntry("a.ckpt", exists_stash=True))
        model = catalog.get_model("a.ckpt")
        assert outcome == UPSERT_UPDATED
        assert model.exists_host and model.exists_stash

    def test_manifest_name_does_not_clobber(self, catalog):
        add(catalog, "a.ckpt", display_name="Mine")
        catalog.upsert_model(ModelEntry("a.ckpt", display_name="From manifest"))
        assert catalog.get_model("a.ckpt").display_name == "Mine"

    def test_manifest_name_fills_null(self, catalog):
        add(catalog, "a.ckpt")
        catalog.upsert_model(ModelEntry("a.ckpt", display_name="From manifest"))
        assert catalog.get_model("a.ckpt").display_name == "From manifest"

    def test_user_action_overrides(self, catalog):
        add(catalog, "a.ckpt", display_name="Old")
        catalog.upsert_model(ModelEntry("a.ckpt", display_name="New", kind="vae"), user_action=True)
        model = catalog.get_model("a.ckpt")
        assert model.display_name == "New"
        assert (model.kind, model.kind_source) == ("vae", "user")

    def test_kind_policy(self, catalog):
        add(catalog, "a.ckpt", kind="lora", kind_source="heuristic")
        catalog.upsert_model(ModelEntry("a.ckpt", kind="model", kind_source="manifest"))
        assert catalog.get_model("a.ckpt").kind == "model"

        catalog.upsert_model(ModelEntry("a.ckpt", kind="lora", kind_source="heuristic"))
        assert catalog.get_model("a.ckpt").kind == "model"

        catalog.set_kind("a.ckpt", "vae")
        catalog.upsert_model(ModelEntry("a.ckpt", kind="model", kind_source="manifest"))
        assert catalog.get_model("a.ckpt").kind == "vae"

    def test_size_change_drops_checksum(self, catalog):
        add(catalog, "a.ckpt", file_size=10, checksum="abc")
        catalog.upsert_model(ModelEntry("a.ckpt", file_size=20))
        model = catalog.get_model("a.ckpt")
        assert model.file_size == 20
        assert model.checksum is None

    def test_unknown_kind_rejected(self, catalog):
        with pytest.raises(ValueError):
            catalog.upsert_model(ModelEntry("a.ckpt", kind="checkpoint"))


class TestOrdering:
    def test_reorder_then_list(self, catalog):
        for name in ("b.ckpt", "a.ckpt", "c.ckpt"):
            add(catalog, name, exists_host=True)

        catalog.update_display_orders([("a.ckpt", 0), ("b.ckpt", 1)])

        names = [listing.model.filename for listing in catalog.get_models()]
        assert names == ["a.ckpt", "b.ckpt", "c.ckpt"]

    def test_hidden_models_sort_after_visible(self, catalog):
        add(catalog, "a.ckpt", exists_host=True, host_display_order=5)
        add(catalog, "b.ckpt", exists_stash=True)
        add(catalog, "c.ckpt", exists_host=True, host_display_order=1)

        listings = catalog.get_models()

        assert [l.model.filename for l in listings] == ["c.ckpt", "a.ckpt", "b.ckpt"]
        assert [l.is_on_host for l in listings] == [True, True, False]

    def test_reorder_is_all_or_nothing(self, catalog):
        add(catalog, "a.ckpt", host_display_order=3)
        with pytest.raises(NotFoundError):
            catalog.update_display_orders([("a.ckpt", 0), ("missing.ckpt", 1)])
        assert catalog.get_model("a.ckpt").host_display_order == 3

    def test_hide_clears_order(self, catalog):
        add(catalog, "a.ckpt", exists_host=True, host_display_order=2)
        catalog.set_host_visibility("a.ckpt", False)
        model = catalog.get_model("a.ckpt")
        assert not model.exists_host
        assert model.host_display_order is None

        catalog.set_host_visibility("a.ckpt", True, 4)
        assert catalog.get_model("a.ckpt").host_display_order == 4

    def test_visibility_unknown_model(self, catalog):
        with pytest.raises(NotFoundError):
            catalog.set_host_visibility("missing.ckpt", True)


class TestRelationships:
    def test_edges_require_endpoints(self, catalog):
        add(catalog, "base.ckpt")
        with pytest.raises(sqlite3.IntegrityError):
            catalog.add_relationship("base.ckpt", "missing.vae")

    def test_insert_if_absent_and_cascade(self, catalog):
        add(catalog, "base.ckpt")
        add(catalog, "enc.vae.pt")
        assert catalog.add_relationship("base.ckpt", "enc.vae.pt")
        assert not catalog.add_relationship("base.ckpt", "enc.vae.pt")
        assert [e.child_filename for e in catalog.get_relationships("base.ckpt")] == ["enc.vae.pt"]
        assert [e.parent_filename for e in catalog.get_parents("enc.vae.pt")] == ["base.ckpt"]

        catalog.delete_model("enc.vae.pt")
        assert catalog.get_all_relationships() == []


class TestConfigStore:
    def test_latest_write_wins(self, catalog):
        assert catalog.get_config("HOST_DIR") is None
        catalog.set_config("HOST_DIR", "/a")
        catalog.set_config("HOST_DIR", "/b")
        assert catalog.get_config("HOST_DIR") == "/b"

    def test_clear_missing(self, catalog):
        add(catalog, "a.ckpt", exists_host=True, host_display_order=0)
        add(catalog, "b.ckpt", exists_host=True)
        assert catalog.clear_missing("host", ["b.ckpt"]) == ["a.ckpt"]
        model = catalog.get_model("a.ckpt")
        assert not model.exists_host and model.host_display_order is None
