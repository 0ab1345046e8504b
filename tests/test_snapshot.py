# tests/test_snapshot.py
"""
Backup / restore through portable snapshot files.
"""
import sqlite3

import pytest

from storage import SQLiteStore
from storage.connection import open_conn
from storage.errors import SnapshotCorrupt
from storage.migrations import ensure_current_schema
from storage.schema import DATA_TABLES, SCHEMA_VERSION
from storage.snapshot import (
    SNAPSHOT_FORMAT,
    copy_store,
    export_snapshot,
    import_snapshot,
    load_snapshot,
    read_store,
)


def _dump(store):
    return {table: store.get_all(table) for table in DATA_TABLES}


@pytest.fixture
def snapshot_path(tmp_path):
    return tmp_path / "backups" / "snap.sqlite"


class TestRoundTrip:
    def test_export_then_import_into_empty_store(self, store, populated, snapshot_path):
        store.upsert_setting("syndicateSignature", "data:image/png;base64,AAAA")
        summary = export_snapshot(store, snapshot_path)

        assert summary["schema_version"] == SCHEMA_VERSION
        assert summary["tables"]["payments"] == 4
        assert snapshot_path.exists()
        assert not snapshot_path.with_name("snap.sqlite.tmp").exists()

        with SQLiteStore(":memory:") as target:
            target.wipe_transactional_data()
            result = import_snapshot(target, snapshot_path)

            assert result["tables"]["clients"] == 2
            assert _dump(target) == _dump(store)

    def test_document_content_byte_for_byte(self, store, client_id, snapshot_path):
        blob = bytes(range(256)) * 3
        store.insert("documents", {"client_id": client_id, "name": "scan.pdf", "content": blob})
        export_snapshot(store, snapshot_path)

        with SQLiteStore(":memory:") as target:
            import_snapshot(target, snapshot_path)
            docs = target.get_documents_by_client(client_id)
            assert docs[0]["content"] == blob
            assert isinstance(docs[0]["content"], bytes)

    def test_settings_keep_their_types(self, store, snapshot_path):
        store.upsert_setting("limits", {"max": 3, "names": ["a", "b"]})
        export_snapshot(store, snapshot_path)

        rows = load_snapshot(snapshot_path)
        settings = {r["key"]: r["value"] for r in rows["settings"]}
        assert settings["limits"] == {"max": 3, "names": ["a", "b"]}

    def test_snapshot_meta(self, store, snapshot_path):
        export_snapshot(store, snapshot_path)

        conn = sqlite3.connect(str(snapshot_path))
        try:
            meta = dict(conn.execute("SELECT key, value FROM snapshot_meta").fetchall())
        finally:
            conn.close()
        assert meta["format"] == SNAPSHOT_FORMAT
        assert meta["schema_version"] == str(SCHEMA_VERSION)
        assert meta["app"] == "sindicato-gestao"

    def test_copy_store(self, store, populated):
        with SQLiteStore(":memory:") as target:
            counts = copy_store(store, target)
            assert counts["documents"] == 2
            assert read_store(target) == read_store(store)


class TestCorruptArtifacts:
    def test_garbage_file_leaves_store_unchanged(self, store, populated, tmp_path):
        bad = tmp_path / "bad.sqlite"
        bad.write_bytes(b"this is not a database" * 100)
        before = _dump(store)

        with pytest.raises(SnapshotCorrupt):
            import_snapshot(store, bad)

        assert _dump(store) == before

    def test_missing_file(self, store, tmp_path):
        with pytest.raises(SnapshotCorrupt):
            import_snapshot(store, tmp_path / "nope.sqlite")

    def test_plain_database_is_rejected(self, store, populated, tmp_path):
        other = tmp_path / "other.sqlite"
        with SQLiteStore(other, exclusive=False):
            pass
        before = _dump(store)

        with pytest.raises(SnapshotCorrupt, match="snapshot_meta"):
            import_snapshot(store, other)
        assert _dump(store) == before

    def test_newer_snapshot_is_rejected(self, store, snapshot_path):
        export_snapshot(store, snapshot_path)
        conn = sqlite3.connect(str(snapshot_path))
        conn.execute("UPDATE snapshot_meta SET value = '99' WHERE key = 'schema_version'")
        conn.commit()
        conn.close()

        with pytest.raises(SnapshotCorrupt, match="mais nova"):
            load_snapshot(snapshot_path)

    def test_bad_setting_value(self, store, snapshot_path):
        export_snapshot(store, snapshot_path)
        conn = sqlite3.connect(str(snapshot_path))
        conn.execute("UPDATE settings SET value = '{broken' WHERE key = 'syndicateName'")
        conn.commit()
        conn.close()

        with pytest.raises(SnapshotCorrupt):
            load_snapshot(snapshot_path)

    def test_wrong_table_shape_restores_nothing(self, store, populated, snapshot_path):
        export_snapshot(store, snapshot_path)
        conn = sqlite3.connect(str(snapshot_path))
        # clients no longer matches the declared v8 shape
        conn.execute("DROP TABLE clients")
        conn.execute("CREATE TABLE clients (id INTEGER PRIMARY KEY, nome_completo TEXT, cpf TEXT)")
        conn.execute("INSERT INTO clients (id, nome_completo, cpf) VALUES (1, 'Sem CPF', NULL)")
        conn.commit()
        conn.close()
        before = _dump(store)

        with pytest.raises(SnapshotCorrupt):
            import_snapshot(store, snapshot_path)
        assert _dump(store) == before


class TestOlderSnapshots:
    def test_v1_snapshot_is_upgraded_on_import(self, store, tmp_path):
        path = tmp_path / "v1.sqlite"
        conn = open_conn(path)
        ensure_current_schema(conn, target_version=1, populate=False)
        conn.execute("CREATE TABLE snapshot_meta (key TEXT PRIMARY KEY, value TEXT)")
        conn.executemany(
            "INSERT INTO snapshot_meta (key, value) VALUES (?, ?)",
            [("format", SNAPSHOT_FORMAT), ("schema_version", "1"), ("app", "sindicato-gestao")],
        )
        conn.execute("INSERT INTO clients (id, nome_completo, cpf) VALUES (7, 'Ana', '333.333.333-33')")
        conn.execute(
            "INSERT INTO payments (id, client_id, mes_referencia, ano_referencia, valor) "
            "VALUES (1, 7, 6, 2023, 50.0)"
        )
        conn.close()

        import_snapshot(store, path)

        client = store.get_by_id("clients", 7)
        assert client["status"] == "Ativo"
        payment = store.get_payments_by_client(7)[0]
        assert payment["referencia"] == "2023-06"
        assert "mes_referencia" not in payment
        # users arrive through the v4 upgrade of the snapshot copy
        assert store.count("users") == 2
        assert store.get_setting("paymentDeclarationTemplate")
