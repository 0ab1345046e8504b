# tests/test_schema_migrations.py
"""
Tests for database schema and migrations.
"""
import dataclasses
import logging
import sqlite3

import pytest

from storage import migrations
from storage.codec import decode_setting, encode_setting
from storage.connection import open_conn
from storage.errors import SchemaError, StoreBlocked
from storage.migrations import (
    STEPS,
    check_integrity,
    ensure_current_schema,
    ensure_default_users,
    ensure_seeded,
    get_schema_version,
    get_table_columns,
    html_paragraphs,
    list_tables,
    payment_reference_from_legacy,
    set_schema_version,
    table_exists,
)
from storage.schema import (
    CREATE_SCHEMA_VERSION,
    DATA_TABLES,
    DEFAULT_SETTINGS,
    LATEST,
    PAYMENT_STATUS_TEMPLATE,
    SCHEMA_V1,
    SCHEMA_V2,
    SCHEMA_VERSION,
    Table,
    Column,
)
from storage.sqlite_store import SQLiteStore


@pytest.fixture
def fresh_conn(temp_db):
    """Create a fresh database connection."""
    conn = open_conn(temp_db)
    yield conn
    conn.close()


@pytest.fixture
def v1_conn(fresh_conn):
    """A database created at schema v1 with legacy month/year payments."""
    ensure_current_schema(fresh_conn, target_version=1, populate=False)
    fresh_conn.execute(
        "INSERT INTO clients (id, nome_completo, cpf, data_filiacao) VALUES (1, 'Ana Souza', '333.333.333-33', '2020-02-01')"
    )
    fresh_conn.execute(
        "INSERT INTO clients (id, nome_completo, cpf) VALUES (2, 'Pedro Lima', '444.444.444-44')"
    )
    fresh_conn.execute(
        "INSERT INTO payments (id, client_id, mes_referencia, ano_referencia, data_pagamento, valor) "
        "VALUES (1, 1, 6, 2023, '2023-06-10', 50.0)"
    )
    fresh_conn.execute(
        "INSERT INTO payments (id, client_id, mes_referencia, ano_referencia, data_pagamento, valor) "
        "VALUES (2, 1, 12, 2023, '2023-12-11', 50.0)"
    )
    # malformed legacy row: year without month
    fresh_conn.execute(
        "INSERT INTO payments (id, client_id, mes_referencia, ano_referencia, valor) "
        "VALUES (3, 2, NULL, 2023, 25.0)"
    )
    fresh_conn.execute("INSERT INTO declarations (client_id, data_emissao) VALUES (1, '2023-07-01')")
    return fresh_conn


class TestSchemaSnapshots:
    """Every version is a full table set; later versions never drop a table."""

    def test_versions_are_cumulative(self):
        seen = set()
        for step in STEPS:
            names = set(step.schema.table_names)
            assert seen <= names
            seen = names
        assert seen == set(DATA_TABLES)

    def test_steps_cover_every_version(self):
        assert [s.version for s in STEPS] == list(range(1, SCHEMA_VERSION + 1))

    def test_evolve_rejects_gaps_and_duplicates(self):
        with pytest.raises(ValueError):
            SCHEMA_V1.evolve(3)
        with pytest.raises(ValueError):
            SCHEMA_V1.evolve(2, add=[Table("clients", (Column("id"),))])
        with pytest.raises(ValueError):
            SCHEMA_V2.evolve(3, redefine=[Table("nope", (Column("id"),))])

    def test_latest_table_set(self):
        assert set(DATA_TABLES) == {
            "clients",
            "payments",
            "declarations",
            "expenses",
            "documents",
            "settings",
            "users",
            "attendances",
        }


class TestSchemaVersion:
    """Tests for schema version tracking."""

    def test_fresh_db_version_zero(self, fresh_conn):
        assert get_schema_version(fresh_conn) == 0

    def test_set_and_get_version(self, fresh_conn):
        fresh_conn.execute(CREATE_SCHEMA_VERSION)
        set_schema_version(fresh_conn, 4)
        assert get_schema_version(fresh_conn) == 4

    def test_table_detection(self, fresh_conn):
        assert not table_exists(fresh_conn, "clients")
        fresh_conn.execute("CREATE TABLE test_table (id INTEGER)")
        assert table_exists(fresh_conn, "test_table")


class TestFreshInitialization:
    """Tests for initializing a fresh database."""

    def test_fresh_db_gets_initialized(self, fresh_conn):
        result = ensure_current_schema(fresh_conn)

        assert result["status"] == "initialized"
        assert result["version"] == SCHEMA_VERSION
        assert get_schema_version(fresh_conn) == SCHEMA_VERSION
        assert set(list_tables(fresh_conn)) == set(DATA_TABLES)

    def test_fresh_db_is_seeded(self, fresh_conn):
        result = ensure_current_schema(fresh_conn)

        assert result["users_seeded"] == 2
        assert result["settings_seeded"] == len(DEFAULT_SETTINGS)
        users = fresh_conn.execute("SELECT username, role FROM users ORDER BY id").fetchall()
        assert [tuple(u) for u in users] == [("admin", "admin"), ("vinicius", "user")]
        keys = {r[0] for r in fresh_conn.execute("SELECT key FROM settings")}
        assert keys == {k for k, _ in DEFAULT_SETTINGS}

    def test_reopen_does_not_duplicate_seed(self, temp_db):
        with SQLiteStore(temp_db) as s:
            assert s.count("users") == 2
        with SQLiteStore(temp_db) as s:
            assert s.count("users") == 2
            assert s.count("settings") == len(DEFAULT_SETTINGS)
            assert s.ensure_schema()["status"] == "current"

    def test_seeding_is_idempotent(self, fresh_conn):
        ensure_current_schema(fresh_conn)
        assert ensure_seeded(fresh_conn) == {"users_seeded": 0, "settings_seeded": 0}
        assert ensure_default_users(fresh_conn) == 0

    def test_populate_skipped_when_disabled(self, fresh_conn):
        result = ensure_current_schema(fresh_conn, populate=False)
        assert result["users_seeded"] == 0
        assert fresh_conn.execute("SELECT COUNT(*) FROM settings").fetchone()[0] == 0

    def test_old_target_is_not_populated(self, fresh_conn):
        result = ensure_current_schema(fresh_conn, target_version=1)
        assert result["status"] == "initialized"
        assert get_schema_version(fresh_conn) == 1
        assert set(list_tables(fresh_conn)) == {"clients", "payments", "declarations"}


class TestMigrationFromV1:
    """Upgrading a v1 database straight to the latest version."""

    def test_full_table_set_after_upgrade(self, v1_conn):
        result = ensure_current_schema(v1_conn)

        assert result["status"] == "migrated"
        assert result["from_version"] == 1
        assert result["to_version"] == SCHEMA_VERSION
        assert result["steps"] == list(range(2, SCHEMA_VERSION + 1))
        assert set(list_tables(v1_conn)) == set(DATA_TABLES)
        for table in LATEST.tables:
            assert get_table_columns(v1_conn, table.name) == table.column_names

    def test_legacy_reference_folded(self, v1_conn):
        ensure_current_schema(v1_conn)

        row = v1_conn.execute("SELECT * FROM payments WHERE id = 1").fetchone()
        assert row["referencia"] == "2023-06"
        assert "mes_referencia" not in row.keys()
        assert "ano_referencia" not in row.keys()
        assert v1_conn.execute("SELECT referencia FROM payments WHERE id = 2").fetchone()[0] == "2023-12"

    def test_malformed_legacy_row_kept_and_logged(self, v1_conn, caplog):
        with caplog.at_level(logging.WARNING, logger="storage.migrations"):
            ensure_current_schema(v1_conn)

        row = v1_conn.execute("SELECT * FROM payments WHERE id = 3").fetchone()
        assert row is not None
        assert row["referencia"] is None
        assert row["valor"] == 25.0
        assert any("malformed legacy reference" in r.getMessage() for r in caplog.records)

    def test_no_rows_lost(self, v1_conn):
        ensure_current_schema(v1_conn)
        assert v1_conn.execute("SELECT COUNT(*) FROM clients").fetchone()[0] == 2
        assert v1_conn.execute("SELECT COUNT(*) FROM payments").fetchone()[0] == 3
        assert v1_conn.execute("SELECT COUNT(*) FROM declarations").fetchone()[0] == 1

    def test_existing_clients_become_active(self, v1_conn):
        ensure_current_schema(v1_conn)
        statuses = {r[0] for r in v1_conn.execute("SELECT status FROM clients")}
        assert statuses == {"Ativo"}

    def test_v4_seeds_users_once(self, v1_conn):
        ensure_current_schema(v1_conn)
        assert v1_conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 2

    def test_undeclared_table_stops_upgrade(self, v1_conn):
        ensure_current_schema(v1_conn, target_version=3, populate=False)
        # users belongs to v4; a stray copy must not be silently adopted
        v1_conn.execute(LATEST.table("users").ddl())

        with pytest.raises(SchemaError, match="not part of v3"):
            ensure_current_schema(v1_conn, target_version=4)
        assert get_schema_version(v1_conn) == 3

    def test_user_seed_skipped_when_users_exist(self, fresh_conn):
        ensure_current_schema(fresh_conn, populate=False)
        fresh_conn.execute("INSERT INTO users (username, password, role) VALUES ('chefe', 'x', 'admin')")

        assert ensure_default_users(fresh_conn) == 0
        assert fresh_conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 1

    def test_payment_template_added_in_v8(self, v1_conn):
        ensure_current_schema(v1_conn)
        row = v1_conn.execute(
            "SELECT value FROM settings WHERE key = 'paymentDeclarationTemplate'"
        ).fetchone()
        assert decode_setting(row[0]) == PAYMENT_STATUS_TEMPLATE

    def test_plain_template_converted_to_html(self, v1_conn):
        ensure_current_schema(v1_conn, target_version=7)
        v1_conn.execute(
            "INSERT INTO settings (key, value) VALUES ('declarationTemplate', ?)",
            (encode_setting("Declaramos que {{NOME_ASSOCIADO}}\né associado.\n\nAtenciosamente"),),
        )
        result = ensure_current_schema(v1_conn)

        assert result["steps"] == [8]
        row = v1_conn.execute("SELECT value FROM settings WHERE key = 'declarationTemplate'").fetchone()
        assert decode_setting(row[0]) == (
            "<p>Declaramos que {{NOME_ASSOCIADO}}<br>é associado.</p><p>Atenciosamente</p>"
        )

    def test_failed_step_rolls_back_everything(self, v1_conn, monkeypatch):
        def boom(conn):
            raise sqlite3.OperationalError("boom")

        steps = tuple(
            dataclasses.replace(s, upgrade=boom) if s.version == SCHEMA_VERSION else s
            for s in STEPS
        )
        monkeypatch.setattr(migrations, "STEPS", steps)

        with pytest.raises(SchemaError):
            ensure_current_schema(v1_conn)

        assert get_schema_version(v1_conn) == 1
        assert set(list_tables(v1_conn)) == {"clients", "payments", "declarations"}
        assert "mes_referencia" in get_table_columns(v1_conn, "payments")


class TestLegacyReference:
    def test_complete_pair(self):
        row = payment_reference_from_legacy({"id": 1, "mes_referencia": 6, "ano_referencia": 2023})
        assert row == {"id": 1, "referencia": "2023-06"}

    def test_string_pair(self):
        row = payment_reference_from_legacy({"id": 1, "mes_referencia": "1", "ano_referencia": "2024"})
        assert row["referencia"] == "2024-01"

    @pytest.mark.parametrize("month,year", [(None, 2023), (6, None), (13, 2023), ("jun", 2023)])
    def test_malformed_pair(self, month, year):
        row = payment_reference_from_legacy({"id": 9, "mes_referencia": month, "ano_referencia": year})
        assert row["referencia"] is None
        assert "mes_referencia" not in row

    def test_html_paragraphs(self):
        assert html_paragraphs("a\nb\n\nc") == "<p>a<br>b</p><p>c</p>"


class TestRefusals:
    def test_newer_database_refused(self, fresh_conn):
        ensure_current_schema(fresh_conn)
        fresh_conn.execute("INSERT INTO schema_version (version, applied_at) VALUES (99, 'x')")

        with pytest.raises(SchemaError, match="newer"):
            ensure_current_schema(fresh_conn)

    def test_unversioned_tables_refused(self, fresh_conn):
        fresh_conn.execute("CREATE TABLE clients (id INTEGER PRIMARY KEY, cpf TEXT)")

        with pytest.raises(SchemaError, match="without a schema version"):
            ensure_current_schema(fresh_conn)

    def test_invalid_target_version(self, fresh_conn):
        with pytest.raises(ValueError):
            ensure_current_schema(fresh_conn, target_version=0)

    def test_second_session_is_blocked(self, temp_db):
        first = SQLiteStore(temp_db, timeout=0.1)
        first.open()
        second = SQLiteStore(temp_db, timeout=0.1)
        try:
            with pytest.raises(StoreBlocked):
                second.open()
        finally:
            second.close()
            first.close()

        # once the first session is closed the file opens normally
        with SQLiteStore(temp_db, timeout=0.1) as s:
            assert s.count("users") == 2


class TestIntegrityCheck:
    """Tests for database integrity checking."""

    def test_fresh_db_integrity_ok(self, fresh_conn):
        ensure_current_schema(fresh_conn)

        result = check_integrity(fresh_conn)

        assert result["status"] == "ok"
        assert result["integrity_check"] == "ok"
        assert result["issues"] == []
        assert result["tables"]["users"]["rows"] == 2

    def test_old_version_is_warning(self, fresh_conn):
        ensure_current_schema(fresh_conn, target_version=3, populate=False)

        result = check_integrity(fresh_conn)

        assert result["status"] == "warning"
        assert any("expected v" in issue for issue in result["issues"])
        assert any("Missing table: users" == issue for issue in result["issues"])
