from __future__ import annotations
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from sind_utils.normalizers import parse_reference


class ClientStatus(str, Enum):
    ATIVO = "Ativo"
    INATIVO = "Inativo"
    SUSPENSO = "Suspenso"


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"


class _Row:
    """Build a dataclass from a store row, ignoring columns it does not declare."""

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in row.items() if k in names})


@dataclass
class Client(_Row):
    id: Optional[int] = None
    nome_completo: Optional[str] = None
    cpf: str = ""
    rg: Optional[str] = None
    endereco: Optional[str] = None
    telefone: Optional[str] = None
    email: Optional[str] = None
    data_filiacao: Optional[str] = None
    status: Optional[str] = ClientStatus.ATIVO.value
    foto: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = (self.nome_completo or "").split()
        return parts[0] if parts else "associado"

    @property
    def is_active(self) -> bool:
        return self.status == ClientStatus.ATIVO.value


@dataclass
class Payment(_Row):
    client_id: int
    referencia: Optional[str]
    valor: float
    data_pagamento: Optional[str] = None
    registered_by: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[str] = None

    @property
    def period(self) -> Optional[Tuple[int, int]]:
        """(year, month) of referencia, or None for rows without a valid one."""
        return parse_reference(self.referencia)


@dataclass
class User(_Row):
    username: str
    password: str
    role: str = UserRole.USER.value
    id: Optional[int] = None
    created_at: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
