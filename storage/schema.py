# storage/schema.py
"""
Database schema definitions for the union management store.

Every schema version is a full snapshot of the tables and indexes that exist
at that version. A version is derived from the previous one with
``SchemaVersion.evolve``, which can add or redefine tables but has no way to
drop one, so a later version always restates every earlier table.

Schema version history:
  v1: clients, payments (month/year reference), declarations
  v2: declarations.created_at index
  v3: expenses, documents, settings; clients.status
  v4: users
  v5: payments.registered_by
  v6: payments reference rewritten as a single YYYY-MM column
  v7: attendances
  v8: payment-status declaration template (data only)
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class Column:
    name: str
    decl: str = "TEXT"

    def ddl(self) -> str:
        return f"{self.name} {self.decl}"


@dataclass(frozen=True)
class Table:
    name: str
    columns: Tuple[Column, ...]
    constraints: Tuple[str, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def has_id(self) -> bool:
        return "id" in self.column_names

    def ddl(self, name: Optional[str] = None) -> str:
        body = [c.ddl() for c in self.columns] + list(self.constraints)
        return f"CREATE TABLE {name or self.name} (\n    " + ",\n    ".join(body) + "\n)"

    def with_columns(self, *columns: Column) -> "Table":
        return replace(self, columns=self.columns + tuple(columns))

    def without_columns(self, *names: str) -> "Table":
        return replace(self, columns=tuple(c for c in self.columns if c.name not in names))

    def with_constraints(self, *constraints: str) -> "Table":
        return replace(self, constraints=tuple(constraints))


@dataclass(frozen=True)
class Index:
    name: str
    table: str
    columns: str
    unique: bool = False

    def ddl(self) -> str:
        unique = "UNIQUE " if self.unique else ""
        return f"CREATE {unique}INDEX IF NOT EXISTS {self.name} ON {self.table}({self.columns})"


@dataclass(frozen=True)
class SchemaVersion:
    version: int
    tables: Tuple[Table, ...]
    indexes: Tuple[Index, ...] = field(default_factory=tuple)

    @property
    def table_names(self) -> List[str]:
        return [t.name for t in self.tables]

    def table(self, name: str) -> Table:
        for t in self.tables:
            if t.name == name:
                return t
        raise KeyError(f"Table {name!r} is not declared in schema v{self.version}")

    def evolve(
        self,
        version: int,
        *,
        add: Iterable[Table] = (),
        redefine: Iterable[Table] = (),
        add_indexes: Iterable[Index] = (),
        drop_indexes: Iterable[str] = (),
    ) -> "SchemaVersion":
        """
        Build the next full snapshot from this one.
        Tables not mentioned are carried over unchanged.
        """
        if version != self.version + 1:
            raise ValueError(f"v{version} cannot follow v{self.version}")

        known = set(self.table_names)
        added = list(add)
        redefined: Dict[str, Table] = {t.name: t for t in redefine}
        for t in added:
            if t.name in known:
                raise ValueError(f"v{version}: table {t.name!r} already exists")
        for name in redefined:
            if name not in known:
                raise ValueError(f"v{version}: cannot redefine unknown table {name!r}")

        tables = tuple(redefined.get(t.name, t) for t in self.tables) + tuple(added)

        dropped = set(drop_indexes)
        indexes = tuple(i for i in self.indexes if i.name not in dropped) + tuple(
            add_indexes
        )
        table_names = {t.name for t in tables}
        for idx in indexes:
            if idx.table not in table_names:
                raise ValueError(f"v{version}: index {idx.name} on unknown table")
        return SchemaVersion(version=version, tables=tables, indexes=indexes)


# =============================================================================
# Version snapshots
# =============================================================================

ID = Column("id", "INTEGER PRIMARY KEY AUTOINCREMENT")

CLIENTS_V1 = Table(
    "clients",
    (
        ID,
        Column("nome_completo"),
        Column("cpf", "TEXT NOT NULL UNIQUE"),
        Column("rg"),
        Column("endereco"),
        Column("telefone"),
        Column("email"),
        Column("data_filiacao"),
        Column("foto"),
        Column("created_at"),
        Column("updated_at"),
    ),
)

PAYMENTS_V1 = Table(
    "payments",
    (
        ID,
        Column("client_id", "INTEGER NOT NULL"),
        Column("mes_referencia", "INTEGER"),
        Column("ano_referencia", "INTEGER"),
        Column("data_pagamento"),
        Column("valor", "REAL NOT NULL"),
        Column("created_at"),
    ),
    ("UNIQUE (client_id, mes_referencia, ano_referencia)",),
)

DECLARATIONS_V1 = Table(
    "declarations",
    (
        ID,
        Column("client_id", "INTEGER NOT NULL"),
        Column("data_emissao"),
        Column("created_at"),
    ),
)

SCHEMA_V1 = SchemaVersion(
    version=1,
    tables=(CLIENTS_V1, PAYMENTS_V1, DECLARATIONS_V1),
    indexes=(
        Index("idx_clients_nome", "clients", "nome_completo"),
        Index("idx_clients_rg", "clients", "rg"),
        Index("idx_payments_client_id", "payments", "client_id"),
        Index("idx_payments_mes_ano", "payments", "ano_referencia, mes_referencia"),
        Index("idx_payments_data", "payments", "data_pagamento"),
        Index("idx_declarations_client_id", "declarations", "client_id"),
        Index("idx_declarations_data", "declarations", "data_emissao"),
    ),
)

SCHEMA_V2 = SCHEMA_V1.evolve(
    2,
    add_indexes=[Index("idx_declarations_created_at", "declarations", "created_at")],
)

EXPENSES = Table(
    "expenses",
    (
        ID,
        Column("description", "TEXT NOT NULL"),
        Column("category"),
        Column("amount", "REAL NOT NULL"),
        Column("date"),
        Column("created_at"),
    ),
)

DOCUMENTS = Table(
    "documents",
    (
        ID,
        Column("client_id", "INTEGER NOT NULL"),
        Column("name"),
        Column("type"),
        Column("content", "BLOB"),
        Column("created_at"),
    ),
)

SETTINGS = Table(
    "settings",
    (
        Column("key", "TEXT PRIMARY KEY"),
        Column("value"),
    ),
)

SCHEMA_V3 = SCHEMA_V2.evolve(
    3,
    add=[EXPENSES, DOCUMENTS, SETTINGS],
    redefine=[CLIENTS_V1.with_columns(Column("status", "TEXT"))],
    add_indexes=[
        Index("idx_clients_status", "clients", "status"),
        Index("idx_expenses_date", "expenses", "date"),
        Index("idx_expenses_category", "expenses", "category"),
        Index("idx_documents_client_id", "documents", "client_id"),
        Index("idx_documents_name", "documents", "name"),
    ],
)

USERS = Table(
    "users",
    (
        ID,
        Column("username", "TEXT NOT NULL UNIQUE COLLATE NOCASE"),
        Column("password", "TEXT NOT NULL"),
        Column("role", "TEXT NOT NULL DEFAULT 'user'"),
        Column("created_at"),
    ),
)

SCHEMA_V4 = SCHEMA_V3.evolve(4, add=[USERS])

PAYMENTS_V5 = PAYMENTS_V1.with_columns(Column("registered_by"))

SCHEMA_V5 = SCHEMA_V4.evolve(
    5,
    redefine=[PAYMENTS_V5],
    add_indexes=[Index("idx_payments_registered_by", "payments", "registered_by")],
)

PAYMENTS_V6 = Table(
    "payments",
    (
        ID,
        Column("client_id", "INTEGER NOT NULL"),
        Column("referencia", "TEXT"),
        Column("data_pagamento"),
        Column("valor", "REAL NOT NULL"),
        Column("created_at"),
        Column("registered_by"),
    ),
    ("UNIQUE (client_id, referencia)",),
)

SCHEMA_V6 = SCHEMA_V5.evolve(
    6,
    redefine=[PAYMENTS_V6],
    drop_indexes=["idx_payments_mes_ano"],
    add_indexes=[Index("idx_payments_referencia", "payments", "referencia")],
)

ATTENDANCES = Table(
    "attendances",
    (
        ID,
        Column("client_id", "INTEGER NOT NULL"),
        Column("notes"),
        Column("created_at"),
        Column("created_by"),
    ),
)

SCHEMA_V7 = SCHEMA_V6.evolve(
    7,
    add=[ATTENDANCES],
    add_indexes=[
        Index("idx_attendances_client_id", "attendances", "client_id"),
        Index("idx_attendances_created_at", "attendances", "created_at"),
    ],
)

SCHEMA_V8 = SCHEMA_V7.evolve(8)

SCHEMAS: Tuple[SchemaVersion, ...] = (
    SCHEMA_V1,
    SCHEMA_V2,
    SCHEMA_V3,
    SCHEMA_V4,
    SCHEMA_V5,
    SCHEMA_V6,
    SCHEMA_V7,
    SCHEMA_V8,
)

LATEST = SCHEMAS[-1]
SCHEMA_VERSION = LATEST.version

# Migration bookkeeping, not part of the data table set.
CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT
);
"""

DATA_TABLES: Tuple[str, ...] = tuple(LATEST.table_names)

# Tables owned by the Client aggregate (all carry client_id).
CLIENT_RELATED_TABLES: Tuple[str, ...] = (
    "payments",
    "declarations",
    "documents",
    "attendances",
)

# Cleared by the administrative wipe; settings and users survive it.
TRANSACTIONAL_TABLES: Tuple[str, ...] = (
    "clients",
    "payments",
    "declarations",
    "expenses",
    "documents",
    "attendances",
)

# =============================================================================
# Default data
# =============================================================================

MEMBERSHIP_TEMPLATE = (
    "<p>Declaramos, para os devidos fins, que o(a) Sr(a). {{NOME_ASSOCIADO}}, "
    "portador(a) do RG nº {{RG}} e inscrito(a) no CPF sob o nº {{CPF}}, "
    "encontra-se regularmente filiado(a) a esta entidade sindical, na qualidade "
    "de membro associado(a) desde {{DATA_FILIACAO}}.</p>"
    "<p>Declaramos ainda que, até a presente data, não constam em nossos "
    "registros quaisquer fatos que desabonem sua condição de associado(a).</p>"
    "<p>Por ser expressão da verdade, firmamos a presente declaração.</p>"
)

PAYMENT_STATUS_TEMPLATE = (
    "<p>Declaramos, para os devidos fins, que o(a) Sr(a). {{NOME_ASSOCIADO}}, "
    "inscrito(a) no CPF sob o nº {{CPF}}, associado(a) desta entidade, "
    "encontra-se em dia com suas obrigações financeiras, tendo o último "
    "pagamento registrado referente à competência de "
    "<b>{{MES_ULTIMO_PAGAMENTO}} de {{ANO_ULTIMO_PAGAMENTO}}</b>.</p>"
    "<p>Por ser expressão da verdade, firmamos a presente declaração.</p>"
)

DEFAULT_SETTINGS: Tuple[Tuple[str, object], ...] = (
    ("syndicateName", "SINDICATO DOS TRABALHADORES RURAIS DE INDIAROBA"),
    ("syndicateCnpj", "00.000.000/0001-00"),
    ("syndicateAddress", "Rua da Sede, nº 123, Centro, Indiaroba/SE, CEP 49250-000"),
    ("syndicatePhone", "(79) 99999-9999"),
    ("declarationTemplate", MEMBERSHIP_TEMPLATE),
    ("paymentDeclarationTemplate", PAYMENT_STATUS_TEMPLATE),
    ("syndicateSignature", ""),
)

# (username, password, role). Passwords are stored as given.
DEFAULT_USERS: Tuple[Tuple[str, str, str], ...] = (
    ("admin", "admin", "admin"),
    ("vinicius", "user", "user"),
)
