import sqlite3

import pytest

import db_update
from database import CatalogDB


def legacy_db(path, version=2):
    """A database in the version 1/2 layout"""
    conn = sqlite3.connect(path)
    db_update.create_legacy_tables(conn)
    db_update.set_schema_version(conn, version)
    conn.commit()
    return conn


def add_legacy_model(conn, filename, model_type="model", host=None, stash_path=None):
    cursor = conn.execute(
        "INSERT INTO models (filename, display_name, model_type, file_size) VALUES (?, ?, ?, ?)",
        (filename, filename.split('.')[0].title(), model_type, 100))
    model_id = cursor.lastrowid
    if host is not None:
        order, visible, strength = host
        conn.execute("""
            INSERT INTO host_models (model_id, display_order, is_visible, lora_strength)
            VALUES (?, ?, ?, ?)
        """, (model_id, order, visible, strength))
    if stash_path is not None:
        conn.execute("INSERT INTO stash_models (model_id, stash_path) VALUES (?, ?)",
                     (model_id, stash_path))
    conn.commit()


class TestMigration:
    def test_fresh_database_reaches_latest(self, tmp_path):
        conn = sqlite3.connect(tmp_path / "new.db")
        assert db_update.migrate_database(conn) == db_update.LATEST_VERSION
        tables = db_update.check_existing_tables(conn)
        assert {"catalog_models", "model_dependencies", "config"} <= tables
        assert not tables & set(db_update.LEGACY_TABLES)
        conn.close()

    def test_legacy_rows_merge(self, tmp_path):
        path = tmp_path / "old.db"
        conn = legacy_db(path)
        add_legacy_model(conn, "base.ckpt", host=(0, 1, None), stash_path="/stash/base.ckpt")
        add_legacy_model(conn, "style.safetensors", "lora", host=(1, 1, 0.75))
        add_legacy_model(conn, "canny.pth", "controlnet", stash_path="/stash/canny.pth")
        add_legacy_model(conn, "hidden.ckpt", host=(2, 0, None))
        add_legacy_model(conn, "orphan.ckpt")
        conn.close()

        with CatalogDB(path) as db:
            assert db.get_schema_version() == db_update.LATEST_VERSION
            assert db.get_model_count() == 5
            assert not db_update.check_existing_tables(db.conn) & set(db_update.LEGACY_TABLES)

            base = db.get_model("base.ckpt")
            assert base.exists_host and base.exists_stash
            assert base.host_display_order == 0
            assert base.source_path == "/stash/base.ckpt"

            style = db.get_model("style.safetensors")
            assert style.kind == "lora"
            assert style.strength == 8

            canny = db.get_model("canny.pth")
            assert canny.kind == "control"
            assert not canny.exists_host and canny.exists_stash

            assert not db.get_model("hidden.ckpt").exists_host

            orphan = db.get_model("orphan.ckpt")
            assert not orphan.exists_host and not orphan.exists_stash
            assert orphan.display_name == "Orphan"

    def test_mac_models_layout_merges(self, tmp_path):
        path = tmp_path / "desktop.db"
        conn = sqlite3.connect(path)
        db_update.create_legacy_tables(conn, 'mac_models')
        db_update.set_schema_version(conn, 1)
        cursor = conn.execute(
            "INSERT INTO models (filename, display_name, model_type, file_size) VALUES (?, ?, ?, ?)",
            ("style.safetensors", "Style Raw", "lora", 100))
        conn.execute("""
            INSERT INTO mac_models (model_id, display_order, is_visible, custom_name, lora_strength)
            VALUES (?, 3, 1, 'Style', 0.75)
        """, (cursor.lastrowid,))
        conn.commit()
        assert "host_models" not in db_update.check_existing_tables(conn)
        conn.close()

        with CatalogDB(path) as db:
            style = db.get_model("style.safetensors")
            assert style.exists_host
            assert style.host_display_order == 3
            assert style.display_name == "Style"
            assert style.strength == 8

            tables = db_update.check_existing_tables(db.conn)
            assert "mac_models" not in tables
            assert not tables & set(db_update.LEGACY_TABLES)

    def test_already_current_is_noop(self, tmp_path):
        path = tmp_path / "c.db"
        with CatalogDB(path) as db:
            db.set_config("HOST_DIR", "/h")
        with CatalogDB(path) as db:
            assert db.get_config("HOST_DIR") == "/h"
            assert db.get_schema_version() == db_update.LATEST_VERSION

    def test_failed_step_keeps_legacy_tables(self, tmp_path, monkeypatch):
        path = tmp_path / "old.db"
        conn = legacy_db(path)
        add_legacy_model(conn, "base.ckpt")

        def broken(conn, host_tables=None):
            raise sqlite3.IntegrityError("boom")

        monkeypatch.setattr(db_update, "migrate_legacy_rows", broken)
        with pytest.raises(sqlite3.IntegrityError):
            db_update.migrate_database(conn)

        assert db_update.get_schema_version(conn) == 2
        tables = db_update.check_existing_tables(conn)
        assert "models" in tables
        assert "catalog_models" not in tables
        assert conn.execute("SELECT COUNT(*) FROM models").fetchone()[0] == 1
        conn.close()
