# tests/conftest.py
import gc
import os
import tempfile
import time

import pytest

from storage import SQLiteStore


@pytest.fixture
def temp_db():
    """Create a temporary database file."""
    fd, path = tempfile.mkstemp(suffix=".sqlite")
    os.close(fd)
    yield path
    # Windows workaround: give time for connections to fully close
    gc.collect()
    time.sleep(0.05)
    try:
        os.unlink(path)
    except PermissionError:
        pass  # Windows sometimes holds file locks


@pytest.fixture
def store(temp_db):
    """A freshly initialized file-backed store."""
    with SQLiteStore(temp_db) as s:
        yield s


@pytest.fixture
def mem_store():
    with SQLiteStore(":memory:") as s:
        yield s


@pytest.fixture
def client_id(store):
    return store.insert(
        "clients",
        {
            "nome_completo": "Maria da Silva Santos",
            "cpf": "111.111.111-11",
            "rg": "1234567",
            "telefone": "(79) 98888-7777",
            "status": "Ativo",
            "data_filiacao": "2023-01-01",
        },
    )


@pytest.fixture
def populated(store, client_id):
    """
    Two clients with payments, a declaration log entry, a document and an
    attendance each, plus one expense.
    """
    other = store.insert(
        "clients",
        {
            "nome_completo": "José Pereira",
            "cpf": "222.222.222-22",
            "status": "Ativo",
            "data_filiacao": "2022-03-10",
        },
    )
    for cid in (client_id, other):
        store.insert(
            "payments",
            {"client_id": cid, "referencia": "2024-04", "data_pagamento": "2024-04-10", "valor": 30.0},
        )
        store.insert(
            "payments",
            {"client_id": cid, "referencia": "2024-05", "data_pagamento": "2024-05-08", "valor": 30.0},
        )
        store.insert("declarations", {"client_id": cid, "data_emissao": "2024-05-09"})
        store.insert(
            "documents",
            {"client_id": cid, "name": "rg.png", "type": "image/png", "content": b"\x89PNG\r\n\x00\xff"},
        )
        store.insert("attendances", {"client_id": cid, "notes": "Atendimento inicial", "created_by": "admin"})
    store.insert(
        "expenses",
        {"description": "Conta de luz", "category": "Contas", "amount": 120.5, "date": "2024-05-02"},
    )
    return {"client_id": client_id, "other_id": other}
