from __future__ import annotations

import logging
from typing import List

from storage.base import DataAccess
from storage.errors import ValidationError

from .models import User, UserRole

log = logging.getLogger("users")

# the account seeded on first start; it can never be removed
MAIN_ADMIN = "admin"


def list_users(store: DataAccess) -> List[User]:
    return [User.from_row(row) for row in store.get_all("users")]


def add_user(store: DataAccess, username: str, password: str, role: str = UserRole.USER.value) -> User:
    """
    Create a user. The username is trimmed; username and password are
    required. A name already taken (ignoring case) raises
    UniqueConstraintViolation.
    """
    username = (username or "").strip()
    if not username or not (password or "").strip():
        raise ValidationError("Por favor, preencha o nome de usuário e a senha.", field="username")
    try:
        role = UserRole(role).value
    except ValueError:
        raise ValidationError(f"Perfil inválido: {role!r}.", field="role") from None

    user_id = store.insert("users", {"username": username, "password": password, "role": role})
    log.info("Added user %r (%s)", username, role)
    return User.from_row(store.get_by_id("users", user_id))


def delete_user(store: DataAccess, username: str) -> None:
    row = store.get_user_by_username((username or "").strip())
    if row is None:
        raise ValidationError(f"Usuário {username!r} não encontrado.", field="username")
    if row["username"] == MAIN_ADMIN:
        raise ValidationError(
            "Não é possível excluir o usuário administrador principal.", field="username"
        )
    store.delete("users", row["id"])
    log.info("Deleted user %r", row["username"])
